"""Tests for engine configuration loading (config.py)."""

from __future__ import annotations

from pathlib import Path

import pytest

from taskdeps.config import EngineConfig, config_from_dict, load_engine_config
from taskdeps.constants import DEFAULT_LOCK_TIMEOUT, DEFAULT_MAX_CONFLICT_RETRIES


def test_defaults_when_file_missing(tmp_path: Path) -> None:
    config, err = load_engine_config(tmp_path, env={})
    assert err is None
    assert config == EngineConfig()
    assert config.lock_timeout == DEFAULT_LOCK_TIMEOUT
    assert config.max_conflict_retries == DEFAULT_MAX_CONFLICT_RETRIES
    assert config.log_level == "INFO"


def test_reads_config_file(tmp_path: Path) -> None:
    (tmp_path / "config.yaml").write_text(
        "store:\n  lock_timeout: 2.5\nservice:\n  max_conflict_retries: 5\nlogging:\n  level: debug\n",
        encoding="utf-8",
    )
    config, err = load_engine_config(tmp_path, env={})
    assert err is None
    assert config == EngineConfig(lock_timeout=2.5, max_conflict_retries=5, log_level="DEBUG")


def test_env_overrides_file(tmp_path: Path) -> None:
    (tmp_path / "config.yaml").write_text("store:\n  lock_timeout: 2.5\n", encoding="utf-8")
    env = {
        "TASKDEPS_LOCK_TIMEOUT": "0.5",
        "TASKDEPS_MAX_CONFLICT_RETRIES": "7",
        "TASKDEPS_LOG_LEVEL": "warning",
    }
    config, _ = load_engine_config(tmp_path, env=env)
    assert config.lock_timeout == 0.5
    assert config.max_conflict_retries == 7
    assert config.log_level == "WARNING"


@pytest.mark.parametrize(
    "data",
    [
        {"store": {"lock_timeout": -1}},
        {"store": {"lock_timeout": "soon"}},
        {"service": {"max_conflict_retries": 0}},
        {"service": {"max_conflict_retries": True}},
        {"logging": {"level": "LOUD"}},
        {"store": "not-a-mapping"},
    ],
)
def test_invalid_values_fall_back_to_defaults(data: dict) -> None:
    assert config_from_dict(data, env={}) == EngineConfig()


def test_unparseable_file_reports_error(tmp_path: Path) -> None:
    (tmp_path / "config.yaml").write_text("store: [broken", encoding="utf-8")
    config, err = load_engine_config(tmp_path, env={"TASKDEPS_MAX_CONFLICT_RETRIES": "2"})
    assert err is not None
    assert config.max_conflict_retries == 2
    assert config.lock_timeout == DEFAULT_LOCK_TIMEOUT
