# Kodi Kiosk
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Shared configuration loader for the kiosk.

Loads a single JSON config file per kiosk.  Search order:
  1. $KIOSK_CONFIG                    (explicit override, e.g. from systemd)
  2. /etc/kodi-kiosk/config.json      (deployed file)
  3. config.json                      (CWD, for local dev)
  4. ../../config/default.json        (repo fallback, ships the museum menu)

Usage:
    from .config import cfg

    kodi_host = cfg("kodi", "host", default="192.168.1.109")
    cooldown  = cfg("player", "cooldown", default=2.0)
    menu      = cfg("menu")  # returns the whole list
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

_config: dict | None = None

_SEARCH_PATHS = [
    "/etc/kodi-kiosk/config.json",
    "config.json",
    os.path.join(os.path.dirname(__file__), "..", "..", "config", "default.json"),
]


def _search_paths() -> list[str]:
    override = os.getenv("KIOSK_CONFIG")
    return ([override] if override else []) + _SEARCH_PATHS


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    kodi = config.get("kodi") or {}
    if not kodi.get("host"):
        logger.warning("Config %s: missing kodi.host — using built-in default", path)
    menu = config.get("menu")
    if not menu:
        logger.warning("Config %s: missing 'menu' section — kiosk will show an empty menu", path)
    elif not isinstance(menu, list):
        logger.error("Config %s: 'menu' must be a list of entries, got %s", path, type(menu).__name__)
    presets = (config.get("volume") or {}).get("presets") or {}
    for kind, level in presets.items():
        if not isinstance(level, (int, float)) or not 0 <= level <= 100:
            logger.warning("Config %s: volume preset '%s' out of range: %r", path, kind, level)
    saver = config.get("screensaver") or {}
    if saver and not saver.get("pictures"):
        logger.warning("Config %s: screensaver section without 'pictures' — screensaver disabled", path)


def _read(path: str) -> dict | None:
    """Parsed config at *path*, or None if it is absent or unusable."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except json.JSONDecodeError as e:
        logger.error("Invalid JSON in %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        logger.error("Config %s: top level must be an object, got %s", path, type(data).__name__)
        return None
    return data


def load_config() -> dict:
    """First readable file on the search path, parsed once and cached."""
    global _config
    if _config is None:
        for path in _search_paths():
            data = _read(path)
            if data is not None:
                logger.info("Config loaded from %s", path)
                _validate(data, path)
                _config = data
                break
        else:
            logger.warning("No kiosk config found, running with built-in defaults")
            _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """One config value, or *default* when the section or key is missing.

    cfg("menu")                             → config["menu"]
    cfg("kodi", "host")                     → config["kodi"]["host"]
    cfg("player", "cooldown", default=2.0)  → 2.0 without a player.cooldown
    """
    section_value = load_config().get(section)
    if key is None:
        return default if section_value is None else section_value
    if not isinstance(section_value, dict):
        return default
    return section_value.get(key, default)


def reload_config() -> dict:
    """Drop the cached config and read it again (tests, hot reload)."""
    global _config
    _config = None
    return load_config()
