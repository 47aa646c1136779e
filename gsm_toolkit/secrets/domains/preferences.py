"""Preferences manager for gsm-toolkit.

Preferences live in the XDG config directory:
~/.config/gsm-toolkit/preferences.json

The only preference read by the library is "config_path", which points the
config loader at a YAML file outside the default location.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

PREFERENCES_DIR = Path.home() / ".config" / "gsm-toolkit"
PREFERENCES_FILE = PREFERENCES_DIR / "preferences.json"


def _read_all() -> Dict[str, Any]:
    """Read the preferences file; a missing or unreadable file counts as empty."""
    if not PREFERENCES_FILE.exists():
        return {}

    try:
        with open(PREFERENCES_FILE, 'r') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Ignoring unreadable preferences file {PREFERENCES_FILE}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.error(f"Ignoring preferences file {PREFERENCES_FILE}: expected a JSON object")
        return {}
    return data


def _write_all(preferences: Dict[str, Any]) -> None:
    PREFERENCES_DIR.mkdir(parents=True, exist_ok=True)
    with open(PREFERENCES_FILE, 'w') as f:
        json.dump(preferences, f, indent=2)


def get_preference(key: str) -> Optional[str]:
    return _read_all().get(key)


def set_preference(key: str, value: str) -> None:
    """
    Store a preference, creating the preferences file if needed.

    Args:
        key: Preference key
        value: Preference value
    """
    preferences = _read_all()
    preferences[key] = value
    _write_all(preferences)
    logger.info(f"Preference '{key}' set to: {value}")


def clear_preference(key: str) -> bool:
    """
    Remove a preference.

    Returns:
        True if the key was present
    """
    preferences = _read_all()
    if key not in preferences:
        logger.debug(f"Preference '{key}' not set, nothing to clear")
        return False

    del preferences[key]
    _write_all(preferences)
    logger.info(f"Preference '{key}' cleared")
    return True
