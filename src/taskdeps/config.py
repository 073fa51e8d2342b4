"""Load optional engine configuration from `<state_dir>/config.yaml`."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from .constants import (
    CONFIG_FILE,
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_CONFLICT_RETRIES,
    ENV_LOCK_TIMEOUT,
    ENV_LOG_LEVEL,
    ENV_MAX_CONFLICT_RETRIES,
)
from .io_utils import _load_yaml_with_error

VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class EngineConfig:
    """Runtime knobs for the store and service."""

    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    max_conflict_retries: int = DEFAULT_MAX_CONFLICT_RETRIES
    log_level: str = DEFAULT_LOG_LEVEL


def _setting(data: Mapping[str, Any], section: str, key: str) -> Any:
    """Return ``data[section][key]``, or None when either level is missing or not a mapping."""
    block = data.get(section) if isinstance(data, Mapping) else None
    return block.get(key) if isinstance(block, Mapping) else None


def _as_positive_float(raw: Any) -> Optional[float]:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def _as_positive_int(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None
    return value if value >= 1 else None


def _as_log_level(raw: Any) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    level = raw.strip().upper()
    return level if level in VALID_LOG_LEVELS else None


def config_from_dict(data: dict[str, Any], env: Optional[Mapping[str, str]] = None) -> EngineConfig:
    """Build an :class:`EngineConfig` from a parsed config mapping.

    Invalid values fall back to the defaults. Environment variables win over
    the file.

    Args:
        data: Parsed ``config.yaml`` contents.
        env: Environment mapping; defaults to ``os.environ``.

    Returns:
        The resolved configuration.
    """
    env = os.environ if env is None else env

    lock_timeout = _as_positive_float(_setting(data, "store", "lock_timeout"))
    retries = _as_positive_int(_setting(data, "service", "max_conflict_retries"))
    log_level = _as_log_level(_setting(data, "logging", "level"))

    env_timeout = _as_positive_float(env.get(ENV_LOCK_TIMEOUT))
    env_retries = _as_positive_int(env.get(ENV_MAX_CONFLICT_RETRIES))
    env_level = _as_log_level(env.get(ENV_LOG_LEVEL))

    return EngineConfig(
        lock_timeout=env_timeout or lock_timeout or DEFAULT_LOCK_TIMEOUT,
        max_conflict_retries=env_retries or retries or DEFAULT_MAX_CONFLICT_RETRIES,
        log_level=env_level or log_level or DEFAULT_LOG_LEVEL,
    )


def load_engine_config(
    state_dir: Path,
    env: Optional[Mapping[str, str]] = None,
) -> tuple[EngineConfig, str | None]:
    """Load the optional engine config file.

    Args:
        state_dir: Directory holding the store and its config.
        env: Environment mapping; defaults to ``os.environ``.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing or
        unreadable, the defaults (plus env overrides) are returned.
    """
    path = state_dir / CONFIG_FILE
    data, err = _load_yaml_with_error(path, {})
    if err:
        return config_from_dict({}, env), err
    return config_from_dict(data, env), None
