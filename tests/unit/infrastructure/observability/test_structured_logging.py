"""Tests for structured logging and correlation ids."""

import asyncio
import json
import logging

import pytest

from tracksync.infrastructure.observability import (
    configure_logging,
    correlation_scope,
    get_correlation_id,
    set_correlation_id,
)
from tracksync.infrastructure.observability.logging import (
    CompactExceptionFormatter,
    CorrelationIdFilter,
    CustomJsonFormatter,
    correlation_id_var,
)


@pytest.fixture(autouse=True)
def clean_correlation_id():
    """Start every test without a correlation id and restore afterwards."""
    token = correlation_id_var.set("")
    yield
    correlation_id_var.reset(token)


def _record(message: str = "hello", exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name="tracksync.test",
        level=logging.WARNING,
        pathname=__file__,
        lineno=42,
        msg=message,
        args=(),
        exc_info=exc_info,
        func="do_work",
    )


class TestCorrelationId:
    """Test correlation ID functionality."""

    def test_set_and_get_correlation_id(self):
        """Test setting and getting correlation ID."""
        assert set_correlation_id("test-123-abc") == "test-123-abc"
        assert get_correlation_id() == "test-123-abc"

    def test_set_correlation_id_generates_uuid_when_none(self):
        """Test that setting None generates a UUID."""
        result = set_correlation_id(None)
        assert len(result) == 36
        assert get_correlation_id() == result

    def test_scope_creates_prefixed_id_and_restores(self):
        """A bare scope gets a fresh id that disappears afterwards."""
        with correlation_scope("export") as cid:
            assert cid.startswith("export-")
            assert get_correlation_id() == cid
        assert get_correlation_id() == ""

    def test_nested_scope_keeps_outer_id(self):
        """An inner operation stays under the caller's id."""
        with correlation_scope("export") as outer, correlation_scope("cover") as inner:
            assert inner == outer

    async def test_concurrent_tasks_do_not_share_ids(self):
        """Each asyncio task gets its own correlation id."""

        async def run(prefix: str) -> tuple[str, str]:
            with correlation_scope(prefix) as cid:
                await asyncio.sleep(0)
                return cid, get_correlation_id()

        (first, seen_first), (second, seen_second) = await asyncio.gather(run("a"), run("b"))

        assert first == seen_first
        assert second == seen_second
        assert first != second


class TestFormatters:
    """Test the JSON and compact formatters."""

    def test_json_formatter_adds_fields(self):
        """JSON lines carry level, logger, location and correlation id."""
        formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
        record = _record()
        record.correlation_id = "export-abc"

        payload = json.loads(formatter.format(record))

        assert payload["message"] == "hello"
        assert payload["level"] == "WARNING"
        assert payload["logger"] == "tracksync.test"
        assert payload["function"] == "do_work"
        assert payload["line"] == 42
        assert payload["correlation_id"] == "export-abc"

    def test_json_formatter_omits_empty_correlation_id(self):
        """No correlation id outside a run."""
        formatter = CustomJsonFormatter("%(message)s")

        payload = json.loads(formatter.format(_record()))

        assert "correlation_id" not in payload

    def test_filter_stamps_current_id(self):
        """The filter copies the context id onto every record."""
        set_correlation_id("sync-1")
        record = _record()

        assert CorrelationIdFilter().filter(record) is True
        assert record.correlation_id == "sync-1"

    def test_compact_formatter_prints_root_cause_first(self):
        """Exception chains render root cause first, one header line each."""
        try:
            try:
                raise ValueError("bad payload")
            except ValueError as inner:
                raise RuntimeError("upload failed") from inner
        except RuntimeError as outer:
            exc_info = (type(outer), outer, outer.__traceback__)

        text = CompactExceptionFormatter().formatException(exc_info)
        lines = [line for line in text.splitlines() if line.startswith("╰─►")]

        assert lines == ["╰─► ValueError: bad payload", "╰─► RuntimeError: upload failed"]


@pytest.fixture
def restore_root_logger():
    """Drop the handler configure_logging installs and restore the root level."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in root.handlers[:]:
        if any(isinstance(f, CorrelationIdFilter) for f in handler.filters):
            root.removeHandler(handler)
    root.setLevel(level)


@pytest.mark.usefixtures("restore_root_logger")
class TestLoggingConfiguration:
    """Test logging configuration."""

    def test_configure_logging_sets_level(self):
        """Test configuring logging with DEBUG level."""
        configure_logging(log_level="DEBUG", json_format=False, app_name="test-app")
        assert logging.getLogger().level == logging.DEBUG

    def test_configure_logging_replaces_handlers(self):
        """Calling configure twice leaves exactly one handler."""
        configure_logging(log_level="INFO", json_format=True, app_name="test-app")
        configure_logging(log_level="INFO", json_format=True, app_name="test-app")

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, CustomJsonFormatter)

    def test_third_party_loggers_are_quieted(self):
        """HTTP client noise is capped at WARNING."""
        configure_logging(log_level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING
