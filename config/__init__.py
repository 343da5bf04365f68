"""Process-wide settings, read once from settings.conf."""
from typing import Dict, Any, Optional
from .lib.load_settings_conf import load_settings_conf, SettingsError, DEFAULTS
import os

__all__ = ['get_settings', 'reset_settings', 'SettingsError', 'DEFAULTS']

# Environment variable naming the directory that holds settings.conf
SETTINGS_DIR_ENV = 'CLASSIFIEDS_SETTINGS_DIR'

_settings: Optional[Dict[str, Any]] = None

def get_settings(settings_path: Optional[str] = None) -> Dict[str, Any]:
    """Return the loaded settings, reading settings.conf on first use.

    Args:
        settings_path: Optional directory containing settings.conf. Falls back to
                       $CLASSIFIEDS_SETTINGS_DIR, then the current directory.

    Raises:
        SettingsError: If settings.conf is missing or invalid
    """
    global _settings

    if _settings is None or settings_path:
        path = settings_path or os.environ.get(SETTINGS_DIR_ENV, '.')
        try:
            _settings = load_settings_conf(path)
        except SettingsError as e:
            raise SettingsError(f"Could not load settings from {path}:\n{e}") from e
    return _settings

def reset_settings() -> None:
    """Forget cached settings so the next get_settings() reloads them."""
    global _settings
    _settings = None
