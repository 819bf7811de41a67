# Kodi Kiosk
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
CommandOrchestrator: every playback-affecting action goes through here.

Rule: anything that starts playback first stops every active player on the
Kodi side and waits for all of those stops to settle before opening the new
item.  Starts (and stop()) are serialized by one lock, so two back-to-back
play requests can never interleave their stop and open phases.  The set of
active players is re-queried for every command and never cached, since
Kodi can start or stop players through other channels.

Every failed session call surfaces as CommandError(operation, cause).
Nothing is retried.
"""

import asyncio
import inspect
import logging

from .errors import CommandError, KioskError

logger = logging.getLogger(__name__)

# Content kinds that may carry a forced volume level (config volume.presets)
VOLUME_PRESET_KINDS = ("video", "slideshow")


class CommandOrchestrator:
    # menu action name -> method; params are passed as keyword arguments
    COMMANDS = {
        "play_file": "play_file",
        "play_directory": "play_directory",
        "play_first": "play_first",
        "slideshow": "play_slideshow",
        "stop_all": "stop_all",
        "stop": "stop",
        "toggle_pause": "toggle_pause",
        "set_volume": "set_volume",
        "toggle_mute": "toggle_mute",
    }

    def __init__(self, session, volume_presets: dict | None = None):
        self._session = session
        self._playback_lock = asyncio.Lock()
        self.volume_presets = {
            kind: int(level) for kind, level in (volume_presets or {}).items()
            if kind in VOLUME_PRESET_KINDS
        }

    async def _call(self, operation: str, method: str, params: dict | None = None):
        if not self._session.is_open:
            raise CommandError(operation, KioskError(f"session is {self._session.state.value}"))
        try:
            return await self._session.call(method, params)
        except KioskError as e:
            raise CommandError(operation, e) from e

    # ── Active players ──

    async def active_players(self, operation: str = "active_players") -> list[dict]:
        players = await self._call(operation, "Player.GetActivePlayers")
        return list(players or [])

    async def _apply_to_active(self, operation: str, method: str) -> list[CommandError]:
        """Send *method* to every active player concurrently, return the failures."""
        players = await self.active_players(operation)
        if not players:
            return []
        results = await asyncio.gather(
            *(self._call(operation, method, {"playerid": p["playerid"]}) for p in players),
            return_exceptions=True,
        )
        failures = []
        for player, result in zip(players, results):
            if isinstance(result, CommandError):
                logger.warning("%s on player %s failed: %s", method, player.get("playerid"), result.cause)
                failures.append(result)
            elif isinstance(result, BaseException):
                raise result
        return failures

    async def stop_all(self, operation: str = "stop_all"):
        """Stop every active player.  Individual stop failures are logged, not raised.

        *operation* names the orchestrated command in a CommandError raised when
        the active players cannot be queried.
        """
        failures = await self._apply_to_active(operation, "Player.Stop")
        if failures:
            logger.warning("%s: %d player(s) did not stop cleanly", operation, len(failures))

    # ── Orchestrated starts ──

    async def play_file(self, path: str, volume: int | None = None):
        async with self._playback_lock:
            await self.stop_all("play_file")
            await self._apply_preset("play_file", "video", volume)
            await self._open("play_file", {"file": path})
            logger.info("Playing file %s", path)

    async def play_directory(self, path: str, shuffled: bool = False, repeat_all: bool = False,
                             volume: int | None = None):
        async with self._playback_lock:
            await self.stop_all("play_directory")
            await self._apply_preset("play_directory", "slideshow", volume)
            await self._open("play_directory", {"directory": path},
                             self._options(shuffled, repeat_all))
            logger.info("Playing directory %s (shuffled=%s, repeat_all=%s)", path, shuffled, repeat_all)

    async def play_slideshow(self, pictures: str, music: str | None = None, shuffled: bool = False,
                             repeat_all: bool = True, volume: int | None = None):
        """Picture slideshow with an optional music bed.

        The pictures are opened first so the picture player is the one that
        transport controls end up targeting.
        """
        async with self._playback_lock:
            await self.stop_all("slideshow")
            await self._apply_preset("slideshow", "slideshow", volume)
            options = self._options(shuffled, repeat_all)
            await self._open("slideshow", {"directory": pictures}, options)
            if music:
                await self._open("slideshow", {"directory": music}, options)
            logger.info("Slideshow %s (music: %s)", pictures, music or "none")

    async def play_first(self, directory: str, media: str = "video", volume: int | None = None):
        """Play the first *media* file Kodi lists in *directory*."""
        async with self._playback_lock:
            await self.stop_all("play_first")
            files = await self.list_directory(directory, media, operation="play_first")
            if not files or not files[0].get("file"):
                raise CommandError("play_first", LookupError(f"no {media} files in {directory}"))
            await self._apply_preset("play_first", "video", volume)
            await self._open("play_first", {"file": files[0]["file"]})
            logger.info("Playing %s (first %s in %s)", files[0]["file"], media, directory)

    async def _open(self, operation: str, item: dict, options: dict | None = None):
        params = {"item": item}
        if options:
            params["options"] = options
        await self._call(operation, "Player.Open", params)

    def _options(self, shuffled: bool, repeat_all: bool) -> dict:
        options = {}
        if shuffled:
            options["shuffled"] = True
        if repeat_all:
            options["repeat"] = "all"
        return options

    async def _apply_preset(self, operation: str, kind: str, volume: int | None):
        level = volume if volume is not None else self.volume_presets.get(kind)
        if level is None:
            return
        level = _clamp(level)
        logger.info("%s: forcing volume to %d%% (%s preset)", operation, level, kind)
        await self._call(operation, "Application.SetVolume", {"volume": level})

    # ── Transport controls ──

    async def toggle_pause(self):
        failures = await self._apply_to_active("toggle_pause", "Player.PlayPause")
        if failures:
            raise failures[0]

    async def stop(self):
        async with self._playback_lock:
            failures = await self._apply_to_active("stop", "Player.Stop")
        if failures:
            raise failures[0]

    # ── Volume (not gated by stop_all) ──

    async def set_volume(self, level: int):
        level = _clamp(level)
        await self._call("set_volume", "Application.SetVolume", {"volume": level})
        return level

    async def toggle_mute(self):
        return await self._call("toggle_mute", "Application.SetMute", {"mute": "toggle"})

    async def get_volume(self) -> dict:
        result = await self._call("get_volume", "Application.GetProperties",
                                  {"properties": ["volume", "muted"]})
        return {"volume": result.get("volume", 0), "muted": bool(result.get("muted"))}

    # ── Library ──

    async def list_directory(self, path: str, media: str = "files", operation: str = "list_directory") -> list[dict]:
        result = await self._call(operation, "Files.GetDirectory",
                                  {"directory": path, "media": media})
        return list((result or {}).get("files") or [])

    # ── Menu dispatch ──

    async def execute(self, command: str, params: dict | None = None):
        """Run a named menu command, e.g. execute("play_file", {"path": "/storage/a.mp4"})."""
        name = self.COMMANDS.get(command)
        if name is None:
            raise CommandError(command, KioskError(f"unknown command '{command}'"))
        method = getattr(self, name)
        params = params or {}
        try:
            inspect.signature(method).bind(**params)
        except TypeError as e:
            raise CommandError(command, e) from e
        try:
            return await method(**params)
        except (TypeError, ValueError, OverflowError) as e:
            # Params that bind but carry unusable values (e.g. a volume of "loud")
            raise CommandError(command, e) from e


def _clamp(level) -> int:
    return max(0, min(100, int(level)))
