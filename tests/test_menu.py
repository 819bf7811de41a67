"""
Unit tests for the kiosk menu tree and MenuNavigator.
"""

import pytest

from kiosk.lib.errors import MenuError
from kiosk.lib.menu import (
    Locale,
    MenuAction,
    MenuNavigator,
    MenuNode,
    build_menu,
)

COMMANDS = {"play_file", "play_first", "play_directory", "slideshow", "screensaver"}


def leaf(name, action="play_file", **params):
    return MenuNode((name, name + " (ja)"), action=MenuAction(action, params))


@pytest.fixture
def tree():
    """Six top-level items; the fourth is a submenu ending in a return action."""
    submenu = MenuNode(("Nihongogakko", "日本語学校"), children=[
        leaf("Documental", path="/storage/videos/nihongo.mp4"),
        leaf("Galería de Fotos", "play_directory", path="/storage/images/nihongo"),
        MenuNode(("Volver", "戻る"), action=MenuAction("home")),
    ])
    return MenuNode(("Menú", "メニュー"), children=[
        leaf("Inmigración", path="/storage/videos/inmigracion.mp4"),
        leaf("Kouresha Shakai", path="/storage/videos/kouresha.mp4"),
        leaf("Lenguaje Nikkei", path="/storage/videos/lenguaje.mp4"),
        submenu,
        leaf("Música Nikkei", path="/storage/videos/musica.mp4"),
        leaf("Taiko - Yosakoi", path="/storage/videos/taiko.mp4"),
    ])


@pytest.fixture
def dispatched():
    return []


@pytest.fixture
def nav(tree, dispatched):
    async def dispatch(action):
        dispatched.append((action.name, dict(action.params)))

    return MenuNavigator(tree, dispatch)


class TestMenuNode:
    """The exactly-one-of children/action invariant."""

    def test_both_children_and_action_rejected(self):
        with pytest.raises(MenuError):
            MenuNode(("a", "b"), children=[leaf("x")], action=MenuAction("play_file"))

    def test_neither_children_nor_action_rejected(self):
        with pytest.raises(MenuError):
            MenuNode(("a", "b"))

    def test_label_pair_required(self):
        with pytest.raises(MenuError):
            MenuNode(("only one",), action=MenuAction("play_file"))

    def test_empty_submenu_is_a_submenu(self):
        assert MenuNode(("a", "b"), children=[]).is_submenu

    def test_labels_per_locale(self):
        node = MenuNode(("Música Nikkei", "日系音楽"), action=MenuAction("play_file"))

        assert node.label(Locale.PRIMARY) == "Música Nikkei"
        assert node.label(Locale.SECONDARY) == "日系音楽"

    def test_action_params_are_read_only(self):
        action = MenuAction("play_file", {"path": "/a.mp4"})

        with pytest.raises(TypeError):
            action.params["path"] = "/b.mp4"

    def test_then_must_be_navigation(self):
        with pytest.raises(MenuError):
            MenuAction("play_file", {}, then="play_file")


class TestNavigation:
    """Descend, invoke and return."""

    @pytest.mark.asyncio
    async def test_select_submenu_descends(self, nav, tree):
        await nav.select(3)

        assert nav.current is tree.children[3]
        assert nav.depth == 1
        assert [item.label for item in nav.visible_items(Locale.PRIMARY)] == [
            "Documental", "Galería de Fotos", "Volver"]

    @pytest.mark.asyncio
    async def test_return_goes_back_to_the_same_root(self, nav, tree):
        await nav.select(3)
        await nav.select(2)

        assert nav.current is tree
        assert nav.depth == 0

    @pytest.mark.asyncio
    async def test_invoke_dispatches_and_stays(self, nav, dispatched, tree):
        await nav.select(5)

        assert dispatched == [("play_file", {"path": "/storage/videos/taiko.mp4"})]
        assert nav.current is tree

    @pytest.mark.asyncio
    async def test_invoke_inside_submenu_stays_in_submenu(self, nav, dispatched, tree):
        await nav.select(3)
        await nav.select(1)

        assert dispatched == [("play_directory", {"path": "/storage/images/nihongo"})]
        assert nav.current is tree.children[3]

    @pytest.mark.asyncio
    async def test_then_navigates_after_dispatch(self, dispatched):
        inner = MenuNode(("Sub", "Sub"), children=[
            MenuNode(("Play", "Play"), action=MenuAction("play_file", {"path": "/a.mp4"}, then="home")),
        ])
        root = MenuNode(("Root", "Root"), children=[inner])

        async def dispatch(action):
            dispatched.append(action.name)

        nav = MenuNavigator(root, dispatch)
        await nav.select(0)
        await nav.select(0)

        assert dispatched == ["play_file"]
        assert nav.current is root

    @pytest.mark.asyncio
    async def test_failed_dispatch_leaves_node_unchanged(self, tree):
        async def dispatch(action):
            raise RuntimeError("kodi gone")

        nav = MenuNavigator(tree, dispatch)
        await nav.select(3)

        with pytest.raises(RuntimeError):
            await nav.select(0)
        assert nav.current is tree.children[3]

    @pytest.mark.asyncio
    async def test_back_pops_one_level(self, dispatched):
        deepest = MenuNode(("C", "C"), children=[MenuNode(("Back", "Back"), action=MenuAction("back"))])
        middle = MenuNode(("B", "B"), children=[deepest])
        root = MenuNode(("A", "A"), children=[middle])

        async def dispatch(action):
            dispatched.append(action.name)

        nav = MenuNavigator(root, dispatch)
        await nav.select(0)
        await nav.select(0)
        await nav.select(0)

        assert nav.current is middle
        assert dispatched == []

    def test_home_at_root_is_a_no_op(self, nav, tree):
        nav.home()

        assert nav.current is tree

    @pytest.mark.asyncio
    async def test_invalid_index(self, nav):
        with pytest.raises(MenuError):
            await nav.select(6)
        with pytest.raises(MenuError):
            await nav.select(-1)

    @pytest.mark.asyncio
    async def test_node_from_another_menu_rejected(self, nav, tree):
        with pytest.raises(MenuError):
            await nav.activate(tree.children[3].children[0])

    def test_root_must_be_submenu(self):
        async def dispatch(action):
            pass

        with pytest.raises(MenuError):
            MenuNavigator(leaf("x"), dispatch)

    @pytest.mark.asyncio
    async def test_visible_item_select(self, nav, tree):
        items = nav.visible_items(Locale.SECONDARY)

        assert items[3].kind == "submenu"
        assert items[3].label == "日本語学校"
        await items[3].select()
        assert nav.current is tree.children[3]


class TestBuildMenu:
    """Building the tree from the config "menu" list."""

    def test_build_nested_menu(self):
        root = build_menu([
            {"label": ["Inmigración a Paraguay", "パラグアイへの移住"], "color": "#b03a2e",
             "children": [
                 {"label": ["Documental", "ドキュメンタリー"], "action": "play_first",
                  "params": {"directory": "/storage/videos/"}},
                 {"label": ["Volver", "戻る"], "action": "home"},
             ]},
            {"label": "Taiko - Yosakoi", "action": "play_file", "params": {"path": "/t.mp4"}},
        ], COMMANDS)

        assert len(root.children) == 2
        assert root.children[0].is_submenu
        assert root.children[0].color == "#b03a2e"
        assert root.children[0].children[1].action.is_navigation
        assert root.children[1].labels == ("Taiko - Yosakoi", "Taiko - Yosakoi")

    def test_dict_labels(self):
        root = build_menu([{"label": {"primary": "Música", "secondary": "音楽"}, "action": "screensaver"}],
                          COMMANDS)

        assert root.children[0].labels == ("Música", "音楽")

    def test_unknown_action_rejected(self):
        with pytest.raises(MenuError, match="launch_rocket"):
            build_menu([{"label": "x", "action": "launch_rocket"}], COMMANDS)

    def test_entry_with_both_rejected(self):
        with pytest.raises(MenuError, match="menu/0"):
            build_menu([{"label": "x", "action": "play_file", "children": []}], COMMANDS)

    def test_missing_label_rejected(self):
        with pytest.raises(MenuError):
            build_menu([{"action": "play_file"}], COMMANDS)

    def test_menu_must_be_a_list(self):
        with pytest.raises(MenuError):
            build_menu({"label": "x"}, COMMANDS)

    def test_empty_menu(self):
        assert build_menu(None).children == ()


class TestLocale:

    @pytest.mark.parametrize("value,expected", [
        ("primary", Locale.PRIMARY),
        ("SECONDARY", Locale.SECONDARY),
        ("es", Locale.PRIMARY),
        ("ja", Locale.SECONDARY),
    ])
    def test_parse(self, value, expected):
        assert Locale.parse(value, {"primary": "es", "secondary": "ja"}) is expected

    def test_unknown_locale(self):
        with pytest.raises(MenuError):
            Locale.parse("fr", {"primary": "es", "secondary": "ja"})
