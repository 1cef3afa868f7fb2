"""Pytest configuration and fixtures for epubkit tests.

Test isolation strategy:
- Settings are cached process-wide; every test starts with a clean cache
  and EPUBKIT_* variables removed from the environment
- Log assertions use log_sink, which swaps the structlog configuration for
  a capturing one and restores it afterwards
"""

import os

import pytest
import structlog

from epubkit.config import clear_settings_cache


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Drop EPUBKIT_* variables and clear the settings cache around each test."""
    for key in list(os.environ):
        if key.startswith("EPUBKIT_"):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def log_sink():
    """Configure structlog to capture events into a list.

    Returns a list that will contain all emitted log event dicts.
    After the test, structlog is reset to normal.
    """
    events: list[dict] = []
    original_config = structlog.get_config()

    def capture_processor(logger, method_name, event_dict):
        event_dict = event_dict.copy()
        event_dict.setdefault("log_level", method_name)
        events.append(event_dict)
        raise structlog.DropEvent

    structlog.configure(
        processors=[capture_processor],
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    yield events

    # Restore original configuration
    structlog.configure(**original_config)
