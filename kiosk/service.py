#!/usr/bin/env python3
# Kodi Kiosk
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Kodi Kiosk service (kodi-kiosk)

Owns the Kodi session, the command orchestrator, the player state
synchronizer and the menu, and exposes them to the kiosk UI: HTTP endpoints
for menu selections, locale, transport and volume, plus a push WebSocket
that sends a fresh state snapshot whenever anything changes.

Command failures are logged and answered with {"status": "error"}; the menu
and player state stay as they were so the visitor can simply tap again.

Port: 8780
"""

import asyncio
import json
import logging
import math

from aiohttp import web

from .lib.config import cfg
from .lib.errors import CommandError, ConnectError, KioskError, MenuError
from .lib.menu import Locale, MenuAction, MenuNavigator, build_menu
from .lib.orchestrator import CommandOrchestrator
from .lib.player_state import DEFAULT_COOLDOWN, PlayerStateSynchronizer
from .lib.session import DEFAULT_PORT, KodiSession
from .lib.watchdog import watchdog_loop

logger = logging.getLogger("kiosk-service")

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
KIOSK_PORT = 8780
DEFAULT_KODI_HOST = "192.168.1.109"
DEFAULT_LOCALES = {"primary": "es", "secondary": "ja"}

# Commands a menu leaf may name (besides the "home"/"back" navigation actions)
KIOSK_COMMANDS = frozenset(CommandOrchestrator.COMMANDS) | {"screensaver"}


# ---------------------------------------------------------------------------
# Kiosk
# ---------------------------------------------------------------------------
class KioskService:
    def __init__(self, session=None, menu=None):
        self.session = session or KodiSession(
            cfg("kodi", "host", default=DEFAULT_KODI_HOST),
            int(cfg("kodi", "port", default=DEFAULT_PORT)),
        )
        self.orchestrator = CommandOrchestrator(self.session, cfg("volume", "presets", default={}))
        self.player_state = PlayerStateSynchronizer(
            self.session, float(cfg("player", "cooldown", default=DEFAULT_COOLDOWN)))
        if menu is None:
            menu = build_menu(cfg("menu"), KIOSK_COMMANDS)
        self.navigator = MenuNavigator(menu, self.run_action)

        self.locale_codes = cfg("locales", default=DEFAULT_LOCALES)
        self.locale = Locale.PRIMARY
        self.screensaver = cfg("screensaver", default={})
        self.reconnect_attempts = int(cfg("kodi", "reconnect_attempts", default=5))
        self.reconnect_on_close = bool(cfg("kodi", "reconnect_on_close", default=False))

        self.volume: int | None = None
        self.muted = False
        self._ws_clients: set[web.WebSocketResponse] = set()
        self._running = False
        self._reconnecting = False
        self._reconnect_task: asyncio.Task | None = None

    # ── Lifecycle ──

    async def start(self):
        self.player_state.attach()
        self.player_state.add_listener(self._on_player_state)
        self.session.subscribe("Application.OnVolumeChanged", self._on_volume_changed)
        self.session.on_close(self._on_session_close)
        self._running = True

        if await self.reconnect():
            logger.info("Kiosk started (Kodi %s, %d menu items)",
                        self.session.url, len(self.navigator.root.children))
        else:
            logger.error("Kiosk started without Kodi — POST /kiosk/reconnect to retry")

    async def stop(self):
        self._running = False
        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self.player_state.detach()
        await self.session.close()
        for ws in list(self._ws_clients):
            await ws.close()
        self._ws_clients.clear()
        logger.info("Kiosk stopped")

    async def reconnect(self) -> bool:
        """Explicit reconnect with backoff.  Returns False if Kodi stayed unreachable."""
        self._reconnecting = True
        try:
            await self.session.reconnect(attempts=self.reconnect_attempts)
        except ConnectError as e:
            logger.error("Kodi unreachable: %s", e)
            return False
        finally:
            self._reconnecting = False
        await self._refresh_volume()
        await self._broadcast_state("connection")
        return True

    def _on_session_close(self):
        if not (self._running and self.reconnect_on_close) or self._reconnecting:
            return
        logger.info("Kodi session closed — reconnecting (kodi.reconnect_on_close)")
        self._reconnect_task = asyncio.ensure_future(self.reconnect())

    # ── Actions ──

    async def run_action(self, action: MenuAction):
        """Dispatcher for menu leaves."""
        if action.name == "screensaver":
            return await self.start_screensaver()
        return await self.orchestrator.execute(action.name, action.params)

    async def start_screensaver(self):
        pictures = (self.screensaver or {}).get("pictures")
        if not pictures:
            raise CommandError("screensaver", KioskError("no screensaver pictures configured"))
        await self.orchestrator.play_slideshow(
            pictures,
            self.screensaver.get("music"),
            shuffled=bool(self.screensaver.get("shuffled", True)),
            repeat_all=True,
        )

    async def select(self, index: int) -> bool:
        """Top-level handler for a menu tap.  Command failures are logged, never raised."""
        try:
            await self.navigator.select(index)
            return True
        except CommandError as e:
            logger.error("Menu action failed: %s", e)
            return False
        finally:
            await self._broadcast_state("menu")

    async def guarded(self, coro) -> bool:
        """Await an orchestrator call, logging a CommandError instead of raising it."""
        try:
            await coro
            return True
        except CommandError as e:
            logger.error("%s", e)
            return False

    def set_locale(self, value: str) -> Locale:
        self.locale = Locale.parse(value, self.locale_codes)
        logger.info("Locale -> %s (%s)", self.locale.value, self.locale_codes.get(self.locale.value))
        self._schedule_broadcast("locale")
        return self.locale

    # ── State for the UI ──

    def menu_view(self, locale: Locale | None = None) -> dict:
        locale = locale or self.locale
        current = self.navigator.current
        return {
            "title": current.label(locale),
            "depth": self.navigator.depth,
            "color": current.color,
            "items": [item.to_dict() for item in self.navigator.visible_items(locale)],
        }

    def snapshot(self) -> dict:
        return {
            "player": self.player_state.snapshot(),
            "session": self.session.state.value,
            "locale": self.locale.value,
            "language": self.locale_codes.get(self.locale.value),
            "menu": self.menu_view(),
            "volume": {"level": self.volume, "muted": self.muted},
        }

    async def _refresh_volume(self):
        try:
            props = await self.orchestrator.get_volume()
        except CommandError as e:
            logger.debug("Could not read Kodi volume: %s", e)
            return
        self.volume, self.muted = props["volume"], props["muted"]

    def _on_player_state(self):
        self._schedule_broadcast("player")

    def _on_volume_changed(self, params: dict):
        data = params.get("data") or {}
        self.volume = data.get("volume", self.volume)
        self.muted = bool(data.get("muted", self.muted))
        self._schedule_broadcast("volume")

    # ── WebSocket push ──

    def _schedule_broadcast(self, reason: str):
        """Fire-and-forget broadcast for synchronous callers (listeners, locale)."""
        if self._ws_clients:
            asyncio.ensure_future(self._broadcast_state(reason))

    async def _broadcast_state(self, reason: str):
        if not self._ws_clients:
            return
        message = json.dumps({"type": "state_update", "reason": reason, "data": self.snapshot()})
        disconnected = set()
        for ws in self._ws_clients:
            try:
                await ws.send_str(message)
            except Exception:
                disconnected.add(ws)
        self._ws_clients -= disconnected
        logger.debug("Broadcast state (%s) to %d clients", reason, len(self._ws_clients))


KIOSK_KEY = web.AppKey("kiosk", KioskService)
WATCHDOG_KEY = web.AppKey("watchdog", asyncio.Task)


# ---------------------------------------------------------------------------
# HTTP handlers
# ---------------------------------------------------------------------------
async def _read_json(request: web.Request) -> dict | None:
    try:
        data = await request.json()
    except (json.JSONDecodeError, Exception):
        return None
    return data if isinstance(data, dict) else None


def _status(ok: bool, **extra) -> web.Response:
    return web.json_response({"status": "ok" if ok else "error", **extra})


async def handle_menu(request: web.Request) -> web.Response:
    """GET /kiosk/menu — visible children of the current node."""
    kiosk = request.app[KIOSK_KEY]
    locale = None
    if "locale" in request.query:
        try:
            locale = Locale.parse(request.query["locale"], kiosk.locale_codes)
        except MenuError as e:
            return web.json_response({"error": str(e)}, status=400)
    return web.json_response(kiosk.menu_view(locale))


async def handle_select(request: web.Request) -> web.Response:
    """POST /kiosk/select — visitor tapped a menu item."""
    kiosk = request.app[KIOSK_KEY]
    data = await _read_json(request)
    if data is None:
        return web.json_response({"error": "invalid json"}, status=400)
    index = data.get("index")
    if not isinstance(index, int) or isinstance(index, bool):
        return web.json_response({"error": "missing or invalid 'index'"}, status=400)
    try:
        ok = await kiosk.select(index)
    except MenuError as e:
        return web.json_response({"error": str(e)}, status=400)
    return _status(ok, menu=kiosk.menu_view())


async def handle_locale(request: web.Request) -> web.Response:
    """POST /kiosk/locale — switch label language."""
    kiosk = request.app[KIOSK_KEY]
    data = await _read_json(request)
    if data is None or "locale" not in data:
        return web.json_response({"error": "missing 'locale'"}, status=400)
    try:
        locale = kiosk.set_locale(data["locale"])
    except MenuError as e:
        return web.json_response({"error": str(e)}, status=400)
    return _status(True, locale=locale.value, menu=kiosk.menu_view())


async def handle_status(request: web.Request) -> web.Response:
    """GET /kiosk/status — full state snapshot."""
    return web.json_response(request.app[KIOSK_KEY].snapshot())


async def handle_transport(request: web.Request) -> web.Response:
    """POST /kiosk/transport — on-screen pause / stop buttons."""
    kiosk = request.app[KIOSK_KEY]
    data = await _read_json(request)
    action = (data or {}).get("action")
    if action in ("pause", "play_pause", "toggle_pause"):
        ok = await kiosk.guarded(kiosk.orchestrator.toggle_pause())
    elif action == "stop":
        ok = await kiosk.guarded(kiosk.orchestrator.stop())
    else:
        return web.json_response({"error": "action must be 'pause' or 'stop'"}, status=400)
    return _status(ok)


async def handle_volume(request: web.Request) -> web.Response:
    """POST /kiosk/volume — set Kodi's application volume (0-100)."""
    kiosk = request.app[KIOSK_KEY]
    data = await _read_json(request)
    volume = (data or {}).get("volume")
    if (volume is None or isinstance(volume, bool) or not isinstance(volume, (int, float))
            or not math.isfinite(volume)):
        return web.json_response({"error": "missing or invalid 'volume'"}, status=400)
    ok = await kiosk.guarded(kiosk.orchestrator.set_volume(volume))
    if ok:
        kiosk.volume = max(0, min(100, int(volume)))
    return _status(ok, volume=kiosk.volume)


async def handle_mute(request: web.Request) -> web.Response:
    """POST /kiosk/mute — toggle mute."""
    kiosk = request.app[KIOSK_KEY]
    return _status(await kiosk.guarded(kiosk.orchestrator.toggle_mute()))


async def handle_screensaver(request: web.Request) -> web.Response:
    """POST /kiosk/screensaver — start the picture slideshow with its music bed."""
    kiosk = request.app[KIOSK_KEY]
    return _status(await kiosk.guarded(kiosk.start_screensaver()))


async def handle_reconnect(request: web.Request) -> web.Response:
    """POST /kiosk/reconnect — operator-triggered reconnect with backoff."""
    kiosk = request.app[KIOSK_KEY]
    ok = await kiosk.reconnect()
    return _status(ok, session=kiosk.session.state.value)


async def handle_ws(request: web.Request) -> web.WebSocketResponse:
    """GET /ws — push-only state feed for the kiosk UI."""
    kiosk = request.app[KIOSK_KEY]
    ws = web.WebSocketResponse()
    await ws.prepare(request)

    kiosk._ws_clients.add(ws)
    logger.info("WebSocket client connected (%d total)", len(kiosk._ws_clients))
    try:
        await ws.send_json({"type": "state_update", "reason": "client_connect",
                            "data": kiosk.snapshot()})
        async for msg in ws:
            pass  # push-only
    finally:
        kiosk._ws_clients.discard(ws)
        logger.info("WebSocket client disconnected (%d remaining)", len(kiosk._ws_clients))
    return ws


# ---------------------------------------------------------------------------
# App lifecycle
# ---------------------------------------------------------------------------
async def on_startup(app: web.Application):
    kiosk = app[KIOSK_KEY]
    await kiosk.start()
    grace = float(cfg("service", "watchdog_grace", default=300))
    app[WATCHDOG_KEY] = asyncio.create_task(
        watchdog_loop(lambda: kiosk.session.is_open, grace=grace))


async def on_cleanup(app: web.Application):
    task = app.get(WATCHDOG_KEY)
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    await app[KIOSK_KEY].stop()


@web.middleware
async def cors_middleware(request, handler):
    if request.method == "OPTIONS":
        resp = web.Response()
    else:
        resp = await handler(request)
    resp.headers["Access-Control-Allow-Origin"] = "*"
    resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return resp


def create_app(kiosk: KioskService | None = None) -> web.Application:
    app = web.Application(middlewares=[cors_middleware])
    app[KIOSK_KEY] = kiosk or KioskService()
    app.router.add_get("/kiosk/menu", handle_menu)
    app.router.add_post("/kiosk/select", handle_select)
    app.router.add_post("/kiosk/locale", handle_locale)
    app.router.add_get("/kiosk/status", handle_status)
    app.router.add_post("/kiosk/transport", handle_transport)
    app.router.add_post("/kiosk/volume", handle_volume)
    app.router.add_post("/kiosk/mute", handle_mute)
    app.router.add_post("/kiosk/screensaver", handle_screensaver)
    app.router.add_post("/kiosk/reconnect", handle_reconnect)
    app.router.add_get("/ws", handle_ws)
    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    port = int(cfg("service", "port", default=KIOSK_PORT))
    web.run_app(create_app(), host="0.0.0.0", port=port, print=lambda msg: logger.info(msg))


if __name__ == "__main__":
    main()
