"""
Pytest fixtures for the kiosk tests.

FakeKodi stands in for a KodiSession: it answers the JSON-RPC methods the
kiosk uses, keeps a list of active players the way Kodi does, and lets a
test push notifications or drop the connection.
"""

import asyncio
import json

import pytest

from kiosk.lib import config
from kiosk.lib.errors import ConnectError, RemoteError, TransportError
from kiosk.lib.session import SessionState

# Kodi player ids by content type
VIDEO_PLAYER = 1
PICTURE_PLAYER = 2
AUDIO_PLAYER = 0


async def settle(rounds: int = 10):
    """Let scheduled callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeKodi:
    def __init__(self, players=None, directories=None, is_open=True):
        self.host = "kodi.test"
        self.port = 9090
        self.state = SessionState.OPEN if is_open else SessionState.CLOSED
        self.players = list(players or [])
        self.directories = dict(directories or {})
        self.volume = 80
        self.muted = False
        self.calls: list[tuple[str, dict | None]] = []
        self.failures: dict[str, Exception] = {}
        self.stop_failures: set[int] = set()
        self.connect_error = False
        self.reconnects = 0
        self._subscriptions: dict[str, list] = {}
        self._open_listeners = []
        self._close_listeners = []
        self._error_listeners = []

    @property
    def url(self):
        return f"ws://{self.host}:{self.port}/jsonrpc"

    @property
    def is_open(self):
        return self.state is SessionState.OPEN

    def methods(self):
        return [method for method, _ in self.calls]

    # ── KodiSession surface ──

    def subscribe(self, name, handler):
        self._subscriptions.setdefault(name, []).append(handler)
        return lambda: self._subscriptions[name].remove(handler)

    def on_open(self, callback):
        self._open_listeners.append(callback)

    def on_close(self, callback):
        self._close_listeners.append(callback)

    def on_error(self, callback):
        self._error_listeners.append(callback)

    async def reconnect(self, attempts=5, force=False, **kwargs):
        if self.is_open and not force:
            return self
        self.reconnects += 1
        if self.connect_error:
            self.state = SessionState.ERRORED
            raise ConnectError(self.host, self.port, "connection refused")
        self.state = SessionState.OPEN
        for callback in list(self._open_listeners):
            callback()
        return self

    async def close(self):
        if self.state is SessionState.OPEN:
            self.drop()

    async def call(self, method, params=None):
        if not self.is_open:
            raise TransportError(f"{method}: session is {self.state.value}")
        self.calls.append((method, params))
        # Yield like a real round-trip so concurrent calls interleave
        await asyncio.sleep(0)
        if method in self.failures:
            raise self.failures[method]
        handler = getattr(self, "_rpc_" + method.replace(".", "_"), None)
        if handler is None:
            return "OK"
        return handler(params or {})

    # ── Test controls ──

    def notify(self, method, data=None):
        for handler in list(self._subscriptions.get(method, [])):
            handler({"data": data or {}, "sender": "xbmc"})

    def drop(self, error: BaseException | None = None):
        self.state = SessionState.ERRORED if error else SessionState.CLOSED
        if error:
            for callback in list(self._error_listeners):
                callback(error)
        for callback in list(self._close_listeners):
            callback()

    # ── JSON-RPC methods ──

    def _rpc_Player_GetActivePlayers(self, params):
        return [{"playerid": p["playerid"], "type": p["type"]} for p in self.players]

    def _rpc_Player_Stop(self, params):
        playerid = params["playerid"]
        if playerid in self.stop_failures:
            raise RemoteError("Player.Stop", -32100, "Failed to execute method.")
        self.players = [p for p in self.players if p["playerid"] != playerid]
        return "OK"

    def _rpc_Player_Open(self, params):
        item = params["item"]
        if "file" in item:
            player = {"playerid": VIDEO_PLAYER, "type": "video", "item": item["file"]}
        elif "music" in item["directory"]:
            player = {"playerid": AUDIO_PLAYER, "type": "audio", "item": item["directory"]}
        else:
            player = {"playerid": PICTURE_PLAYER, "type": "picture", "item": item["directory"]}
        self.players = [p for p in self.players if p["playerid"] != player["playerid"]] + [player]
        return "OK"

    def _rpc_Files_GetDirectory(self, params):
        files = self.directories.get(params["directory"])
        if files is None:
            raise RemoteError("Files.GetDirectory", -32602, "Invalid params.")
        return {"files": [{"file": f, "filetype": "file", "label": f.rsplit("/", 1)[-1]} for f in files],
                "limits": {"start": 0, "end": len(files), "total": len(files)}}

    def _rpc_Application_SetVolume(self, params):
        self.volume = params["volume"]
        return self.volume

    def _rpc_Application_SetMute(self, params):
        self.muted = not self.muted
        return self.muted

    def _rpc_Application_GetProperties(self, params):
        return {"volume": self.volume, "muted": self.muted}


@pytest.fixture
def kodi():
    """An open fake Kodi session with nothing playing."""
    return FakeKodi(directories={
        "/storage/videos/": ["/storage/videos/documental.mp4", "/storage/videos/taiko.mp4"],
        "/storage/empty/": [],
    })


@pytest.fixture(autouse=True)
def kiosk_config(tmp_path, monkeypatch):
    """Point the config loader at a throwaway config.json for every test."""
    data = {
        "kodi": {"host": "kodi.test", "port": 9090, "reconnect_attempts": 1},
        "player": {"cooldown": 0.01},
        "locales": {"primary": "es", "secondary": "ja"},
        "screensaver": {"pictures": "/storage/images/", "music": "/storage/music/", "shuffled": True},
        "menu": [],
    }
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    monkeypatch.setenv("KIOSK_CONFIG", str(path))
    monkeypatch.delenv("NOTIFY_SOCKET", raising=False)
    config.reload_config()
    yield path
    config._config = None
