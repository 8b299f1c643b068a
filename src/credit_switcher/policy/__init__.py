"""Switcher configuration models and loader exports."""

from .loader import ConfigLoadError, ConfigLoader, LoadedConfig, config_search_paths, state_path_for
from .models import FallbackRules, LicensingPolicy, NotificationPolicy, RestorePolicy, SwitcherConfig

__all__ = [
    "ConfigLoadError",
    "ConfigLoader",
    "FallbackRules",
    "LicensingPolicy",
    "LoadedConfig",
    "NotificationPolicy",
    "RestorePolicy",
    "SwitcherConfig",
    "config_search_paths",
    "state_path_for",
]
