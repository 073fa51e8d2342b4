"""Tests for the loguru sink setup (logging_setup.py)."""

from __future__ import annotations

import io

import pytest
from loguru import logger

from taskdeps.logging_setup import configure_logging


@pytest.fixture
def sink():
    buf = io.StringIO()
    yield buf
    # Leave loguru with a plain stderr handler for the rest of the session.
    configure_logging("INFO")


def test_level_filters_messages(sink: io.StringIO) -> None:
    configure_logging("warning", sink=sink)
    logger.info("quiet detail")
    logger.warning("store lock slow")
    out = sink.getvalue()
    assert "quiet detail" not in out
    assert "store lock slow" in out
    assert "WARNING" in out


def test_reconfigure_replaces_previous_sink(sink: io.StringIO) -> None:
    first = io.StringIO()
    configure_logging("DEBUG", sink=first)
    configure_logging("DEBUG", sink=sink)
    logger.debug("after swap")
    assert "after swap" not in first.getvalue()
    assert sink.getvalue().count("after swap") == 1


def test_foreign_sinks_survive_reconfigure(sink: io.StringIO) -> None:
    configure_logging("INFO", sink=sink)
    extra: list[str] = []
    handler_id = logger.add(lambda msg: extra.append(str(msg)), level="INFO", format="{message}")
    try:
        configure_logging("INFO", sink=sink)
        logger.info("still captured")
    finally:
        logger.remove(handler_id)
    assert any("still captured" in line for line in extra)
