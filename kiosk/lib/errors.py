# Kodi Kiosk
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Error taxonomy for the kiosk core.

    KioskError
      ├── ConnectError     control channel could not be established
      ├── TransportError   channel closed or errored after (or before) open
      ├── RemoteError      Kodi rejected a specific JSON-RPC call
      ├── CommandError     wraps any of the above with the orchestrated operation
      └── MenuError        invalid menu node or menu configuration
"""


class KioskError(Exception):
    """Base class for everything the kiosk core raises."""


class ConnectError(KioskError, ConnectionError):
    """The WebSocket control channel to Kodi could not be opened."""

    def __init__(self, host: str, port: int, reason: str = ""):
        self.host = host
        self.port = port
        self.reason = reason
        super().__init__(f"cannot connect to {host}:{port}" + (f" ({reason})" if reason else ""))


class TransportError(KioskError):
    """The control channel is not open, or dropped while a call was pending."""


class RemoteError(KioskError):
    """Kodi answered a request with a JSON-RPC error object."""

    def __init__(self, method: str, code: int | None, message: str, data=None):
        self.method = method
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"{method}: {message} (code {code})")


class CommandError(KioskError):
    def __init__(self, operation: str, cause: BaseException):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")


class MenuError(KioskError, ValueError):
    """A menu node or menu config entry violates the node invariant."""
