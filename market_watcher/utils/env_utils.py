"""
Small readers for the process environment.

Only two switches are read outside pydantic-settings: ``MARKET_WATCHER_CONFIG``
(alternate YAML path) and ``DEBUG_SCHEDULE`` (fire every minute).
"""

import os
from typing import Optional

TRUTHY_VALUES = frozenset({"true", "1", "yes", "on"})


def _read(name: str) -> Optional[str]:
    raw = os.environ.get(name)
    if raw is None:
        return None
    return raw.strip()


def get_bool_env(env_var_name: str, default: bool = False) -> bool:
    """
    Interpret an environment switch such as ``DEBUG_SCHEDULE``.

    Unset falls back to ``default``. Any value outside ``TRUTHY_VALUES``
    (case-insensitive) counts as off, including the empty string.
    """
    raw = _read(env_var_name)
    if raw is None:
        return default
    return raw.lower() in TRUTHY_VALUES


def get_str_env(env_var_name: str, default: str = "") -> str:
    """Return the variable's value, or ``default`` when it is unset or blank."""
    raw = _read(env_var_name)
    return raw if raw else default
