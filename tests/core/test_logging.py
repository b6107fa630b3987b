"""Tests for coordspine.core.logging."""

from __future__ import annotations

import structlog

from coordspine.core.logging import LogContext, bind_context, clear_context, configure_logging, get_logger


class TestConfigureLogging:
    def test_json_renderer(self):
        configure_logging(level="DEBUG", json_format=True, service="svc")
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_console_renderer(self):
        configure_logging(level="INFO", json_format=False)
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)

    def test_get_logger_returns_bindable(self):
        logger = get_logger(__name__)
        assert hasattr(logger, "bind")


class TestContext:
    def teardown_method(self):
        clear_context()

    def test_log_context_binds_and_unbinds(self):
        with LogContext(job_name="nightly"):
            assert structlog.contextvars.get_contextvars()["job_name"] == "nightly"
        assert "job_name" not in structlog.contextvars.get_contextvars()

    def test_clear_context(self):
        bind_context(owner_id="a")
        clear_context()
        assert structlog.contextvars.get_contextvars() == {}
