# Kodi Kiosk
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
KodiSession: the single JSON-RPC control channel to the Kodi player.

Kodi speaks JSON-RPC 2.0 over a WebSocket (default port 9090):

    → {"jsonrpc": "2.0", "id": 7, "method": "Player.GetActivePlayers"}
    ← {"jsonrpc": "2.0", "id": 7, "result": [{"playerid": 1, "type": "video"}]}
    ← {"jsonrpc": "2.0", "method": "Player.OnPause",
       "params": {"data": {...}, "sender": "xbmc"}}

Responses are correlated with their request by id; messages without an id
are push notifications and go to every handler subscribed to that method.

Usage:
    session = await connect("192.168.1.109", 9090)
    session.subscribe("Player.OnStop", on_stop)
    session.on_close(on_disconnect)
    players = await session.call("Player.GetActivePlayers")

There is no automatic reconnection.  reconnect() is an explicit operation
(exponential backoff, 1s doubling up to 30s);
subscriptions and lifecycle listeners survive it.
"""

import asyncio
import itertools
import json
import logging
from enum import Enum
from typing import Any, Callable

import websockets
from websockets.exceptions import WebSocketException

from .errors import ConnectError, RemoteError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9090
RECONNECT_BACKOFF = 1       # seconds, doubled after every failed attempt
RECONNECT_MAX_BACKOFF = 30

NotificationHandler = Callable[[dict], None]


class SessionState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"


class KodiSession:
    """One live WebSocket connection to a Kodi instance."""

    def __init__(self, host: str, port: int = DEFAULT_PORT):
        self.host = host
        self.port = port
        self.state = SessionState.CLOSED
        self._ws = None
        self._listen_task: asyncio.Task | None = None
        self._connect_lock = asyncio.Lock()
        self._ids = itertools.count(1)
        # request id -> (method, future)
        self._pending: dict[int, tuple[str, asyncio.Future]] = {}
        self._subscriptions: dict[str, list[NotificationHandler]] = {}
        self._open_listeners: list[Callable[[], None]] = []
        self._close_listeners: list[Callable[[], None]] = []
        self._error_listeners: list[Callable[[BaseException], None]] = []

    def __repr__(self) -> str:
        return f"<KodiSession({self.host}:{self.port}) [{self.state.value}]>"

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}/jsonrpc"

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.OPEN and self._ws is not None

    # ── Subscriptions ──

    def subscribe(self, name: str, handler: NotificationHandler):
        """Run *handler(params)* for every *name* notification.  Returns an unsubscribe function."""
        self._subscriptions.setdefault(name, []).append(handler)
        logger.debug("Subscribed %s to %s", getattr(handler, "__qualname__", handler), name)
        return lambda: self.unsubscribe(name, handler)

    def unsubscribe(self, name: str, handler: NotificationHandler):
        handlers = self._subscriptions.get(name, [])
        if handler in handlers:
            handlers.remove(handler)

    def on_open(self, callback: Callable[[], None]):
        self._open_listeners.append(callback)

    def on_close(self, callback: Callable[[], None]):
        self._close_listeners.append(callback)

    def on_error(self, callback: Callable[[BaseException], None]):
        self._error_listeners.append(callback)

    # ── Connection lifecycle ──

    async def open(self) -> "KodiSession":
        """Open the channel.  Raises ConnectError if Kodi is unreachable."""
        async with self._connect_lock:
            if self.is_open:
                return self

            self.state = SessionState.CONNECTING
            logger.info("Connecting to Kodi at %s", self.url)
            try:
                # Kodi's server does not answer pings reliably, keepalive stays off
                ws = await websockets.connect(self.url, ping_interval=None, max_size=None)
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                self.state = SessionState.ERRORED
                logger.warning("Kodi connection to %s failed: %s", self.url, e)
                raise ConnectError(self.host, self.port, str(e)) from e

            self._ws = ws
            self.state = SessionState.OPEN
            self._listen_task = asyncio.create_task(self._listen(ws))
            logger.info("Kodi session open (%s)", self.url)
            self._fire(self._open_listeners)
            return self

    async def close(self):
        """Close the channel.  Pending calls fail with TransportError."""
        ws = self._ws
        if ws is None:
            self.state = SessionState.CLOSED
            return
        logger.info("Closing Kodi session (%s)", self.url)
        try:
            await ws.close()
        except Exception as e:
            logger.debug("Error while closing Kodi socket: %s", e)
        if self._listen_task:
            await self._listen_task
            self._listen_task = None

    async def reconnect(self, attempts: int = 5, backoff: float = RECONNECT_BACKOFF,
                        max_backoff: float = RECONNECT_MAX_BACKOFF, force: bool = False) -> "KodiSession":
        """Replace the channel, retrying with exponential backoff.

        An open session is left alone unless *force* is set.  attempts=0
        retries until it succeeds.  Raises the last ConnectError once
        *attempts* have failed.
        """
        if self.is_open and not force:
            logger.debug("reconnect: %s already open", self.url)
            return self
        if self._ws is not None:
            await self.close()

        delay = backoff
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.open()
            except ConnectError as e:
                if attempts and attempt >= attempts:
                    logger.error("Giving up on %s after %d attempts: %s", self.url, attempt, e)
                    raise
                logger.warning("Reconnect attempt %d failed (%s), retrying in %.0fs",
                               attempt, e.reason or e, delay)
                await asyncio.sleep(delay)
                delay = min(delay * 2, max_backoff)

    # ── Requests ──

    async def call(self, method: str, params: dict | None = None) -> Any:
        """Send a JSON-RPC request and wait for its response.

        Raises RemoteError when Kodi answers with an error object and
        TransportError when the channel is not open or drops mid-call.
        """
        ws = self._ws
        if ws is None or self.state is not SessionState.OPEN:
            raise TransportError(f"{method}: session to {self.url} is {self.state.value}")

        request_id = next(self._ids)
        request = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            request["params"] = params

        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = (method, future)
        try:
            try:
                await ws.send(json.dumps(request))
            except (OSError, WebSocketException) as e:
                raise TransportError(f"{method}: send failed ({e})") from e
            logger.debug("-> %s #%d %s", method, request_id, params or "")
            return await future
        finally:
            self._pending.pop(request_id, None)

    # ── Internal ──

    async def _listen(self, ws):
        """Read every message until the socket ends, then tear the session down."""
        error: BaseException | None = None
        try:
            async for message in ws:
                self._handle_message(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e
        finally:
            if self._ws is ws:
                self._teardown(error)

    def _handle_message(self, message):
        try:
            data = json.loads(message)
        except (TypeError, ValueError):
            logger.warning("Invalid JSON from Kodi: %.200r", message)
            return
        if not isinstance(data, dict):
            logger.warning("Unexpected message from Kodi: %.200r", message)
            return

        request_id = data.get("id")
        if request_id is not None and ("result" in data or "error" in data):
            entry = self._pending.pop(request_id, None)
            if entry is None:
                logger.debug("Response for unknown request #%s", request_id)
                return
            method, future = entry
            if future.done():
                return
            if "error" in data:
                err = data["error"] or {}
                future.set_exception(RemoteError(
                    method, err.get("code"), err.get("message", "unknown error"), err.get("data")))
            else:
                future.set_result(data.get("result"))
            return

        method = data.get("method")
        if method:
            self._dispatch(method, data.get("params") or {})

    def _dispatch(self, method: str, params: dict):
        handlers = self._subscriptions.get(method)
        if not handlers:
            logger.debug("Notification %s (no subscribers)", method)
            return
        for handler in list(handlers):
            try:
                handler(params)
            except Exception as e:
                logger.error("Notification handler for %s failed: %s", method, e)

    def _teardown(self, error: BaseException | None):
        self._ws = None
        self.state = SessionState.ERRORED if error else SessionState.CLOSED

        for method, future in self._pending.values():
            if not future.done():
                reason = f"failed: {error}" if error else "closed"
                future.set_exception(TransportError(f"{method}: channel {reason}"))
        self._pending.clear()

        if error:
            logger.warning("Kodi session to %s failed: %s", self.url, error)
            self._fire(self._error_listeners, error)
        else:
            logger.info("Kodi session to %s closed", self.url)
        self._fire(self._close_listeners)

    def _fire(self, listeners, *args):
        for callback in list(listeners):
            try:
                callback(*args)
            except Exception as e:
                logger.error("Session listener %s failed: %s",
                             getattr(callback, "__qualname__", callback), e)


async def connect(host: str, port: int = DEFAULT_PORT) -> KodiSession:
    """Open a session to Kodi at *host*:*port*.  Raises ConnectError."""
    return await KodiSession(host, port).open()
