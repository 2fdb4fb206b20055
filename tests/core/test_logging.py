"""Tests for structured logging module."""

from __future__ import annotations

import logging

import pytest
import structlog

from contacts.core.logging import (
    _NOISE_LOGGERS,
    CredentialRedactionFilter,
    configure_logging,
)

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    root = logging.getLogger()
    root.handlers.clear()
    root.filters.clear()
    root.setLevel(logging.WARNING)


def _record(msg: str, *args) -> logging.LogRecord:
    return logging.LogRecord("test", logging.INFO, __file__, 1, msg, args, None)


# ---------------------------------------------------------------------------
# configure_logging()
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_text_format_installs_console_renderer(self):
        configure_logging(fmt="text")
        root = logging.getLogger()
        assert len(root.handlers) == 1
        formatter = root.handlers[0].formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
        assert isinstance(formatter.processors[-1], structlog.dev.ConsoleRenderer)

    def test_json_format_installs_json_renderer(self):
        configure_logging(fmt="json")
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter.processors[-1], structlog.processors.JSONRenderer)

    def test_reconfiguring_does_not_duplicate_handlers(self):
        configure_logging()
        configure_logging()
        root = logging.getLogger()
        assert len(root.handlers) == 1
        redaction = [f for f in root.filters if isinstance(f, CredentialRedactionFilter)]
        assert len(redaction) == 1

    def test_noise_loggers_suppressed(self):
        configure_logging(level="DEBUG")
        for name in _NOISE_LOGGERS:
            assert logging.getLogger(name).level >= logging.WARNING

    def test_log_level_applied(self):
        configure_logging(level="debug")
        assert logging.getLogger().level == logging.DEBUG


# ---------------------------------------------------------------------------
# CredentialRedactionFilter
# ---------------------------------------------------------------------------


class TestCredentialRedactionFilter:
    def test_bearer_token_redacted(self):
        record = _record("Authorization: Bearer %s", "ya29.secret-token")

        assert CredentialRedactionFilter().filter(record) is True
        assert record.getMessage() == "Authorization: Bearer [REDACTED]"
        assert record.args == ()

    @pytest.mark.parametrize(
        "param", ["access_token", "refresh_token", "client_secret", "code", "code_verifier"]
    )
    def test_query_parameters_redacted(self, param):
        record = _record(f"GET /callback?{param}=s3cr3t&state=abc")

        CredentialRedactionFilter().filter(record)

        assert "s3cr3t" not in record.getMessage()
        assert "state=abc" in record.getMessage()

    def test_json_fields_redacted(self):
        record = _record('payload {"refresh_token": "rtok", "client_id": "cid"}')

        CredentialRedactionFilter().filter(record)

        assert "rtok" not in record.getMessage()
        assert '"client_id": "cid"' in record.getMessage()

    def test_clean_message_untouched(self):
        record = _record("Synced %d contacts", 3)

        CredentialRedactionFilter().filter(record)

        assert record.msg == "Synced %d contacts"
        assert record.args == (3,)

    def test_unrenderable_message_kept(self):
        record = _record("%d contacts", "not-a-number")

        assert CredentialRedactionFilter().filter(record) is True
