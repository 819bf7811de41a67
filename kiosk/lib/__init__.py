"""
Kiosk core: everything between the touch screen and the Kodi player.

  session.py       KodiSession, the single JSON-RPC WebSocket channel
  orchestrator.py  CommandOrchestrator, stop-all-then-open sequencing
  player_state.py  PlayerStateSynchronizer, notification-driven status
  menu.py          MenuNode tree and MenuNavigator state machine
  errors.py        ConnectError / TransportError / RemoteError / CommandError
  config.py        cfg() JSON config loader
  watchdog.py      systemd watchdog heartbeat
"""
