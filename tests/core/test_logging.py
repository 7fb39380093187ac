"""Tests for syncspine.core.logging."""

import logging

import structlog

from syncspine.core.logging import LogContext, bind_context, clear_context, configure_logging, get_logger


class TestLogging:
    def test_configure_and_log(self, caplog):
        caplog.set_level(logging.DEBUG)
        configure_logging(level="DEBUG", json_format=True, service="syncspine-test")
        get_logger("syncspine.test").info("connected", attempt=3)
        assert '"event": "connected"' in caplog.text
        assert '"attempt": 3' in caplog.text

    def test_bind_and_clear_context(self):
        clear_context()
        bind_context(origin_id="client-a")
        assert structlog.contextvars.get_contextvars() == {"origin_id": "client-a"}
        clear_context()
        assert structlog.contextvars.get_contextvars() == {}

    def test_log_context_unbinds_on_exit(self):
        clear_context()
        with LogContext(scope="chat"):
            assert structlog.contextvars.get_contextvars()["scope"] == "chat"
        assert "scope" not in structlog.contextvars.get_contextvars()
