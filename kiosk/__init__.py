"""
Kodi Kiosk: touch-screen front end for a museum kiosk driving a remote Kodi player.

The service (service.py) owns one Kodi session and exposes the menu and the
player state to the kiosk UI.  Run with ``python -m kiosk``.
"""

__version__ = "0.1.0"
