"""Tests for kunde_kernel.logging_config."""

import json
import logging
from io import StringIO

import pytest

from kunde_kernel.exceptions import BatchNotFoundError
from kunde_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Start each test unconfigured; restore the suite's configuration after."""
    reset_logging()
    LogContext.clear()
    yield
    reset_logging()
    LogContext.clear()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _records(stream: StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


class TestStructuredFormatter:
    def test_basic_fields(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.DEBUG, handler=handler)
        get_logger("test").info("batch_parsed", extra={"row_count": 3})
        (record,) = _records(stream)
        assert record["level"] == "INFO"
        assert record["logger"] == "kunde_kernel.test"
        assert record["message"] == "batch_parsed"
        assert record["row_count"] == 3
        assert "ts" in record

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.DEBUG, handler=handler)
        with LogContext.bind(batch_id="b1", tenant_id="t1"):
            get_logger("test").info("inside")
        get_logger("test").info("outside")
        inside, outside = _records(stream)
        assert inside["batch_id"] == "b1"
        assert inside["tenant_id"] == "t1"
        assert "batch_id" not in outside

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.DEBUG, handler=handler)
        try:
            raise BatchNotFoundError("b42")
        except BatchNotFoundError:
            get_logger("test").error("lookup_failed", exc_info=True)
        (record,) = _records(stream)
        assert record["exc_type"] == "BatchNotFoundError"
        assert record["exc_code"] == "BATCH_NOT_FOUND"
        assert record["exc_batch_id"] == "b42"
        assert "traceback" in record


class TestLogContext:
    def test_bind_stringifies_and_skips_none(self):
        from uuid import uuid4

        tenant = uuid4()
        with LogContext.bind(tenant_id=tenant, actor_id=None):
            ctx = LogContext.get_all()
        assert ctx == {"tenant_id": str(tenant)}
        assert LogContext.get_all() == {}

    def test_nested_bind_restores_outer(self):
        with LogContext.bind(batch_id="outer"):
            with LogContext.bind(batch_id="inner"):
                assert LogContext.get_all()["batch_id"] == "inner"
            assert LogContext.get_all()["batch_id"] == "outer"


class TestConfigureLogging:
    def test_idempotent(self):
        reset_logging()
        first, _ = _make_handler()
        second, _ = _make_handler()
        configure_logging(handler=first)
        configure_logging(handler=second)
        handlers = logging.getLogger("kunde_kernel").handlers
        assert first in handlers
        assert second not in handlers

    def test_string_level(self):
        reset_logging()
        handler, stream = _make_handler()
        configure_logging(level="warning", handler=handler)
        get_logger("test").info("dropped")
        get_logger("test").warning("kept")
        assert [r["message"] for r in _records(stream)] == ["kept"]

    def test_logger_namespace(self):
        assert get_logger("ingestion.import").name == "kunde_kernel.ingestion.import"
