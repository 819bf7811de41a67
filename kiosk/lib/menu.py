# Kodi Kiosk
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Kiosk menu: an immutable tree of MenuNodes plus the navigation state machine.

Every node carries a label pair (one per locale), an optional accent colour
and exactly one of children (a submenu) or an action (a leaf).  The tree is
built once from config and never rebuilt; the only mutable navigation state
is the stack of nodes from the root to the current node.

Transitions:
    descend  selecting a submenu node makes it the current node
    home     the return action, straight back to the root
    back     pop one level (same as home on a two-level menu)
    invoke   run a leaf's command; the current node stays put unless the
             action asks for a transition afterwards ("then")

Config format (config.json "menu", top-to-bottom as on screen):

    [
      {"label": ["Inmigración a Paraguay", "パラグアイへの移住"], "color": "#b03a2e",
       "children": [
         {"label": ["Documental", "ドキュメンタリー"], "action": "play_first",
          "params": {"directory": "/storage/videos/", "media": "video"}},
         {"label": ["Volver", "戻る"], "action": "home"}
       ]},
      {"label": ["Protector de pantalla", "スクリーンセーバー"], "action": "screensaver"}
    ]
"""

import functools
import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping

from .errors import MenuError

logger = logging.getLogger(__name__)

NAVIGATION_ACTIONS = frozenset({"home", "back"})

DEFAULT_ROOT_LABELS = ("Menú", "メニュー")


class Locale(Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"

    @classmethod
    def parse(cls, value: str, codes: Mapping[str, str] | None = None) -> "Locale":
        """Accept "primary"/"secondary" or a configured language code ("es", "ja")."""
        value = str(value).strip().lower()
        for locale in cls:
            if value == locale.value:
                return locale
        for key, code in (codes or {}).items():
            if value == str(code).lower() and key in cls._value2member_map_:
                return cls(key)
        raise MenuError(f"unknown locale '{value}'")


@dataclass(frozen=True, eq=False)
class MenuAction:
    name: str
    params: Mapping[str, Any] = field(default_factory=dict)
    then: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))
        if self.then is not None and self.then not in NAVIGATION_ACTIONS:
            raise MenuError(f"action '{self.name}': 'then' must be one of {sorted(NAVIGATION_ACTIONS)}")

    @property
    def is_navigation(self) -> bool:
        return self.name in NAVIGATION_ACTIONS


@dataclass(frozen=True, eq=False)
class MenuNode:
    """One screen (submenu) or one button (leaf) of the kiosk menu.  Compared by identity."""

    labels: tuple[str, str]
    children: tuple["MenuNode", ...] | None = None
    action: MenuAction | None = None
    color: str | None = None

    def __post_init__(self):
        if (self.children is None) == (self.action is None):
            raise MenuError(f"menu node '{self.labels[0] if self.labels else '?'}' "
                            "must have exactly one of children or action")
        if len(self.labels) != 2:
            raise MenuError(f"menu node needs one label per locale, got {self.labels!r}")
        object.__setattr__(self, "labels", tuple(self.labels))
        if self.children is not None:
            object.__setattr__(self, "children", tuple(self.children))

    @property
    def is_submenu(self) -> bool:
        return self.children is not None

    def label(self, locale: Locale) -> str:
        return self.labels[0] if locale is Locale.PRIMARY else self.labels[1]


@dataclass
class MenuItem:
    """A visible child of the current node, as handed to the presentation layer."""

    index: int
    label: str
    color: str | None
    kind: str                                   # submenu | action | navigation
    select: Callable[[], Awaitable[MenuNode]] = field(repr=False)

    def to_dict(self) -> dict:
        return {"index": self.index, "label": self.label, "color": self.color, "kind": self.kind}


Dispatcher = Callable[[MenuAction], Awaitable[Any]]


class MenuNavigator:
    """Tracks the current node and runs selections against it."""

    def __init__(self, root: MenuNode, dispatch: Dispatcher):
        if not root.is_submenu:
            raise MenuError("menu root must be a submenu node")
        self.root = root
        self._dispatch = dispatch
        self._stack: list[MenuNode] = [root]

    @property
    def current(self) -> MenuNode:
        return self._stack[-1]

    @property
    def depth(self) -> int:
        return len(self._stack) - 1

    # ── Transitions ──

    def descend(self, node: MenuNode):
        if not node.is_submenu:
            raise MenuError(f"'{node.labels[0]}' is not a submenu")
        if not any(child is node for child in self.current.children):
            raise MenuError(f"'{node.labels[0]}' is not a child of the current menu")
        self._stack.append(node)
        logger.info("Menu: -> %s (depth %d)", node.labels[0], self.depth)

    def home(self):
        del self._stack[1:]
        logger.info("Menu: -> root")

    def back(self):
        if len(self._stack) > 1:
            self._stack.pop()
        logger.info("Menu: <- %s (depth %d)", self.current.labels[0], self.depth)

    def _navigate(self, name: str):
        if name == "home":
            self.home()
        elif name == "back":
            self.back()

    async def select(self, index: int) -> MenuNode:
        """Activate the *index*-th child of the current node.  Returns the new current node."""
        children = self.current.children
        if not 0 <= index < len(children):
            raise MenuError(f"no menu item {index} (current menu has {len(children)})")
        return await self.activate(children[index])

    async def activate(self, node: MenuNode) -> MenuNode:
        if not any(child is node for child in self.current.children):
            raise MenuError(f"'{node.labels[0]}' is not on the current menu")
        if node.is_submenu:
            self.descend(node)
            return self.current

        action = node.action
        if action.is_navigation:
            self._navigate(action.name)
            return self.current

        logger.info("Menu: invoke %s %s", action.name, dict(action.params))
        await self._dispatch(action)
        if action.then:
            self._navigate(action.then)
        return self.current

    # ── Presentation ──

    def visible_items(self, locale: Locale) -> list[MenuItem]:
        items = []
        for index, node in enumerate(self.current.children):
            if node.is_submenu:
                kind = "submenu"
            elif node.action.is_navigation:
                kind = "navigation"
            else:
                kind = "action"
            items.append(MenuItem(index, node.label(locale), node.color, kind,
                                  functools.partial(self.activate, node)))
        return items


# ── Building from config ──

def _parse_labels(raw, where: str) -> tuple[str, str]:
    if isinstance(raw, str):
        return (raw, raw)
    if isinstance(raw, dict) and raw.get("primary"):
        primary = str(raw["primary"])
        return (primary, str(raw.get("secondary", primary)))
    if isinstance(raw, (list, tuple)) and len(raw) == 2:
        return (str(raw[0]), str(raw[1]))
    if isinstance(raw, (list, tuple)) and len(raw) == 1:
        return (str(raw[0]), str(raw[0]))
    raise MenuError(f"{where}: label must be a string, a [primary, secondary] pair or a dict")


def _build_node(entry: dict, where: str, commands) -> MenuNode:
    if not isinstance(entry, dict):
        raise MenuError(f"{where}: menu entry must be an object")
    labels = _parse_labels(entry.get("label"), where)

    children = None
    if "children" in entry:
        raw_children = entry["children"]
        if not isinstance(raw_children, list):
            raise MenuError(f"{where}: 'children' must be a list")
        children = [_build_node(child, f"{where}/{i}", commands) for i, child in enumerate(raw_children)]

    action = None
    if "action" in entry:
        name = entry["action"]
        if commands is not None and name not in NAVIGATION_ACTIONS and name not in commands:
            raise MenuError(f"{where}: unknown action '{name}'")
        action = MenuAction(name, entry.get("params") or {}, entry.get("then"))

    try:
        return MenuNode(labels, children, action, entry.get("color"))
    except MenuError as e:
        raise MenuError(f"{where}: {e}") from e


def build_menu(entries: list | None, commands=None, root_labels=DEFAULT_ROOT_LABELS) -> MenuNode:
    """Build the root node from the config "menu" list.

    *commands* is the set of command names leaves may use (navigation names
    are always allowed); None skips the check.
    """
    if entries is None:
        entries = []
    if not isinstance(entries, list):
        raise MenuError("menu config must be a list")
    children = [_build_node(entry, f"menu/{i}", commands) for i, entry in enumerate(entries)]
    root = MenuNode(tuple(root_labels), children=children)
    logger.info("Menu built: %d top-level items", len(children))
    return root
