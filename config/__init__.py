"""Configuration module for loading and managing engine settings"""
from typing import Dict, Any, Optional
from .lib.load_settings_conf import load_settings_conf, validate_settings, SettingsError, DEFAULTS
import os

__all__ = ['get_settings', 'reset_settings', 'validate_settings', 'SettingsError', 'DEFAULTS']

# Directory holding settings.conf, overridable for deployments
SETTINGS_PATH_ENV = 'AUCTION_SETTINGS_PATH'

_settings: Optional[Dict[str, Any]] = None

def get_settings() -> Dict[str, Any]:
    """Return the validated settings, loading them on first use."""
    global _settings

    if _settings is None:
        try:
            _settings = load_settings_conf(os.environ.get(SETTINGS_PATH_ENV, '.'))
        except SettingsError as e:
            # Re-raise the error but provide more context
            raise SettingsError(
                f"Configuration Error\n"
                "=================\n\n"
                f"{str(e)}\n\n"
                "Please ensure settings.conf is properly configured.\n"
                "See settings.conf.example for the available settings."
            )
    return _settings

def reset_settings() -> None:
    """Forget cached settings so the next get_settings() re-reads the file."""
    global _settings
    _settings = None
