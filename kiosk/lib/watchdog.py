"""Systemd watchdog heartbeat for the kiosk service.

Sends WATCHDOG=1 to the systemd notify socket while the kiosk is healthy.
The kiosk counts as unhealthy once its Kodi session has been down for
longer than *grace* seconds; the heartbeat then stops and systemd restarts
the unit (WatchdogSec= in the unit file).  Silently no-ops when
NOTIFY_SOCKET is unset (dev mode).

Usage:
    from .watchdog import watchdog_loop
    asyncio.create_task(watchdog_loop(lambda: session.is_open))
"""

import asyncio
import logging
import os
import socket
import time
from typing import Callable

logger = logging.getLogger(__name__)


def sd_notify(msg: str) -> bool:
    """Send a notification message to the systemd notify socket."""
    addr = os.environ.get("NOTIFY_SOCKET")
    if not addr:
        return False
    if addr[0] == "@":
        addr = "\0" + addr[1:]
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
    try:
        sock.sendto(msg.encode(), addr)
        return True
    except OSError as e:
        logger.debug("sd_notify failed: %s", e)
        return False
    finally:
        sock.close()


async def watchdog_loop(is_healthy: Callable[[], bool] | None = None,
                        interval: float = 20, grace: float = 300):
    """Pet the watchdog every *interval* seconds while healthy.  Call as asyncio.create_task().

    Sends READY=1 first so systemd knows startup finished (Type=notify).
    """
    sd_notify("READY=1")
    logger.info("Watchdog started (interval=%ss, grace=%ss)", interval, grace)
    unhealthy_since: float | None = None
    while True:
        if is_healthy is None or is_healthy():
            if unhealthy_since is not None:
                logger.info("Kiosk healthy again, watchdog resumed")
            unhealthy_since = None
            sd_notify("WATCHDOG=1")
        else:
            now = time.monotonic()
            if unhealthy_since is None:
                unhealthy_since = now
            if now - unhealthy_since < grace:
                sd_notify("WATCHDOG=1")
            else:
                logger.error("Kodi unreachable for %.0fs — withholding watchdog, systemd will restart us",
                             now - unhealthy_since)
                sd_notify("STATUS=Kodi unreachable")
        await asyncio.sleep(interval)
