"""
crucible configuration.

Settings come from ``CRUCIBLE_*`` environment variables or a ``.env`` file
and provide the defaults for run options (stage, password, state store,
destroy strategy). Explicit options passed to ``crucible.app`` always win.
"""

from crucible.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
