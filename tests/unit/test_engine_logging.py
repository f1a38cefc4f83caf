"""Unit tests for logging configuration."""

import logging

import pytest

from suitecal.api.middleware import request_id_var
from suitecal.engine_logging import CorrelationIdFilter, configure_logging, get_logging_status

pytestmark = pytest.mark.unit


@pytest.fixture
def restore_logging():
    """Save and restore root and suitecal logger state around a test."""
    root = logging.getLogger()
    engine = logging.getLogger("suitecal")
    saved = (root.level, list(root.handlers), engine.level)
    saved_filters = {h: list(h.filters) for h in root.handlers}
    yield root
    root.setLevel(saved[0])
    root.handlers[:] = saved[1]
    for handler, filters in saved_filters.items():
        handler.filters[:] = filters
    engine.setLevel(saved[2])


class TestConfigureLogging:
    def test_debug_mode(self, restore_logging):
        configure_logging(debug_mode=True)
        status = get_logging_status()
        assert status["suitecal"] == "DEBUG"
        assert status["aiohttp.access"] == "WARNING"

    def test_env_debug_flag(self, restore_logging, monkeypatch):
        monkeypatch.setenv("SUITECAL_DEBUG", "yes")
        configure_logging()
        assert logging.getLogger("suitecal").level == logging.DEBUG

    def test_force_debug_wins_over_env(self, restore_logging, monkeypatch):
        monkeypatch.setenv("SUITECAL_DEBUG", "1")
        configure_logging(force_debug=False)
        assert logging.getLogger("suitecal").level == logging.INFO

    def test_env_log_level_sets_root(self, restore_logging, monkeypatch):
        monkeypatch.setenv("SUITECAL_LOG_LEVEL", "warning")
        configure_logging()
        assert restore_logging.level == logging.WARNING

    def test_filter_is_added_once(self, restore_logging):
        configure_logging()
        configure_logging()
        for handler in restore_logging.handlers:
            assert sum(isinstance(f, CorrelationIdFilter) for f in handler.filters) <= 1


class TestCorrelationIdFilter:
    def test_record_gets_current_request_id(self):
        token = request_id_var.set("req-123")
        try:
            record = logging.LogRecord("suitecal", logging.INFO, __file__, 1, "hello", None, None)
            assert CorrelationIdFilter().filter(record) is True
            assert record.request_id == "req-123"
        finally:
            request_id_var.reset(token)
