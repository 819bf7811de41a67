# Kodi Kiosk
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
PlayerStateSynchronizer: local view of what Kodi is doing.

Driven purely by push notifications, never by polling.  The four player
notifications map onto one event type and one transition function:

    Player.OnPause    -> PAUSED
    Player.OnResume   -> PLAYING
    Player.OnAVStart  -> PLAYING
    Player.OnStop     -> STOPPED

The mapping ignores the previous status.  Events are applied in arrival
order, last write wins.

Entering STOPPED starts a fire-and-forget cool-down; only once it has
elapsed with the player still stopped does the synchronizer report itself
quiescent.  A slideshow that stops and immediately restarts therefore never
looks idle, and the status change itself is never delayed.

The synchronizer also owns the connectivity flag: a closed or failed
session clears it (logged, never fatal), the next successful open sets it.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN = 2.0  # seconds


class PlayerStatus(Enum):
    UNKNOWN = "unknown"
    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"


class PlayerEvent(Enum):
    PAUSE = "Player.OnPause"
    RESUME = "Player.OnResume"
    AV_START = "Player.OnAVStart"
    STOP = "Player.OnStop"

    @classmethod
    def from_notification(cls, method: str) -> "PlayerEvent | None":
        try:
            return cls(method)
        except ValueError:
            return None


_TRANSITIONS = {
    PlayerEvent.PAUSE: PlayerStatus.PAUSED,
    PlayerEvent.RESUME: PlayerStatus.PLAYING,
    PlayerEvent.AV_START: PlayerStatus.PLAYING,
    PlayerEvent.STOP: PlayerStatus.STOPPED,
}


def transition(status: PlayerStatus, event: PlayerEvent) -> PlayerStatus:
    """Next status for *event*.  Total over PlayerEvent and independent of *status*."""
    return _TRANSITIONS[event]


class PlayerStateSynchronizer:
    def __init__(self, session, cooldown: float = DEFAULT_COOLDOWN):
        self._session = session
        self.cooldown = cooldown
        self.status = PlayerStatus.UNKNOWN
        self.connected = bool(getattr(session, "is_open", False))
        self.quiescent = False
        self._cooldown_task: asyncio.Task | None = None
        self._listeners: list[Callable[[], None]] = []
        self._unsubscribe: list[Callable[[], None]] = []

    def attach(self):
        """Subscribe to the session's player notifications and lifecycle events."""
        for event in PlayerEvent:
            self._unsubscribe.append(self._session.subscribe(
                event.value, lambda params, event=event: self.apply(event, params)))
        self._session.on_open(self._on_session_open)
        self._session.on_close(self._on_session_close)
        self._session.on_error(self._on_session_error)

    def detach(self):
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        self._cancel_cooldown()

    # ── Derived state for the presentation layer ──

    @property
    def controls_visible(self) -> bool:
        return self.connected and self.status in (PlayerStatus.PLAYING, PlayerStatus.PAUSED)

    def snapshot(self) -> dict:
        return {
            "status": self.status.value,
            "controls_visible": self.controls_visible,
            "quiescent": self.quiescent,
            "connected": self.connected,
        }

    # ── Listeners ──

    def add_listener(self, callback: Callable[[], None]):
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify_listeners(self):
        for callback in list(self._listeners):
            try:
                callback()
            except Exception as e:
                logger.error("Player state listener error: %s", e)

    # ── Notifications ──

    def handle_notification(self, method: str, params: dict | None = None) -> bool:
        """Apply a raw notification by name.  Returns False for names this component ignores."""
        event = PlayerEvent.from_notification(method)
        if event is None:
            return False
        self.apply(event, params)
        return True

    def apply(self, event: PlayerEvent, params: dict | None = None):
        old = self.status
        self.status = transition(old, event)
        logger.info("Player %s: %s -> %s", event.name, old.value, self.status.value)

        self._cancel_cooldown()
        self.quiescent = False
        if self.status is PlayerStatus.STOPPED:
            self._start_cooldown()
        self._notify_listeners()

    def _start_cooldown(self):
        if self.cooldown <= 0:
            self.quiescent = True
            return
        try:
            self._cooldown_task = asyncio.get_running_loop().create_task(self._cooldown())
        except RuntimeError:
            # No running loop (synchronous caller): settle immediately
            self.quiescent = True

    def _cancel_cooldown(self):
        if self._cooldown_task and not self._cooldown_task.done():
            self._cooldown_task.cancel()
        self._cooldown_task = None

    async def _cooldown(self):
        await asyncio.sleep(self.cooldown)
        if self.status is PlayerStatus.STOPPED:
            self.quiescent = True
            logger.debug("Player quiescent after %.1fs cool-down", self.cooldown)
            self._notify_listeners()

    # ── Session lifecycle ──

    def _on_session_open(self):
        self.connected = True
        logger.info("Kodi connection established")
        self._notify_listeners()

    def _on_session_close(self):
        if not self.connected:
            return
        self.connected = False
        # Kodi may come back restarted and idle; nothing is known until the next event
        self._cancel_cooldown()
        self.status = PlayerStatus.UNKNOWN
        self.quiescent = False
        logger.warning("Kodi connection closed — interaction suspended until reconnect")
        self._notify_listeners()

    def _on_session_error(self, error: BaseException):
        logger.error("Kodi transport error: %s", error)
