"""Tests for the structured logging system (taxflow_kernel/logging_config.py)."""

import json
import logging
from datetime import datetime
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from taxflow_kernel.domain.workflow import WorkflowState
from taxflow_kernel.exceptions import WorkflowNotFoundError
from taxflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture
def stream_logger():
    """A throwaway taxflow logger writing JSON lines to a StringIO."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    logger = get_logger(f"test.{uuid4().hex[:8]}")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    def records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield logger, records
    logger.removeHandler(handler)


class TestStructuredFormatter:
    def test_basic_fields(self, stream_logger):
        logger, records = stream_logger
        logger.info("hello")

        (record,) = records()
        assert record["message"] == "hello"
        assert record["level"] == "INFO"
        assert record["logger"] == logger.name
        assert record["ts"].endswith("+00:00")

    def test_extra_fields_are_top_level(self, stream_logger):
        logger, records = stream_logger
        workflow_id = uuid4()
        logger.info(
            "workflow_transitioned",
            extra={
                "workflow_id": workflow_id,
                "to_state": WorkflowState.APPROVED,
                "amount": Decimal("1230.00"),
                "at": datetime(2026, 2, 1, 12, 0),
            },
        )

        (record,) = records()
        assert record["workflow_id"] == str(workflow_id)
        assert record["to_state"] == "approved"
        assert record["amount"] == "1230.00"
        assert record["at"] == "2026-02-01T12:00:00"
        assert "args" not in record

    def test_exception_details(self, stream_logger):
        logger, records = stream_logger
        try:
            raise WorkflowNotFoundError("wf-1")
        except WorkflowNotFoundError:
            logger.exception("lookup_failed")

        (record,) = records()
        assert record["exc_type"] == "WorkflowNotFoundError"
        assert record["exc_code"] == "WORKFLOW_NOT_FOUND"
        assert record["exc_workflow_id"] == "wf-1"
        assert "Traceback" in record["traceback"]


class TestLogContext:
    def test_context_fields_are_included(self, stream_logger):
        logger, records = stream_logger
        LogContext.set(tenant_id="tenant-1", correlation_id="req-9")
        logger.info("with_context")

        (record,) = records()
        assert record["tenant_id"] == "tenant-1"
        assert record["correlation_id"] == "req-9"

    def test_bind_restores_previous_values(self):
        LogContext.set(tenant_id="outer")
        with LogContext.bind(tenant_id="inner", workflow_id=uuid4()):
            assert LogContext.get_all()["tenant_id"] == "inner"
            assert "workflow_id" in LogContext.get_all()
        assert LogContext.get_all() == {"tenant_id": "outer"}

    def test_clear(self):
        LogContext.set(task_id="t-1")
        LogContext.clear()
        assert LogContext.get_all() == {}


class TestConfigureLogging:
    def test_namespace(self):
        assert get_logger("services.retry_queue").name == "taxflow.services.retry_queue"

    def test_configure_is_idempotent(self):
        root = logging.getLogger("taxflow")
        reset_logging()
        try:
            first, second = logging.NullHandler(), logging.NullHandler()
            configure_logging(handler=first)
            configure_logging(handler=second)
            assert root.handlers == [first]
            assert root.propagate is False
        finally:
            reset_logging()
            configure_logging(level=logging.DEBUG)

    def test_level_name_from_config(self):
        root = logging.getLogger("taxflow")
        reset_logging()
        try:
            assert configure_logging(level="warning", handler=logging.NullHandler()) is True
            assert root.level == logging.WARNING
            assert configure_logging(level="debug") is False
            assert root.level == logging.WARNING
        finally:
            reset_logging()
            configure_logging(level=logging.DEBUG)


class TestEncoderFallback:
    def test_unknown_types_render_as_strings(self, stream_logger):
        logger, records = stream_logger

        class Opaque:
            def __str__(self):
                return "opaque-value"

        logger.info("odd_extra", extra={"thing": Opaque(), "nested": {"amount": Decimal("1.50")}})

        (record,) = records()
        assert record["thing"] == "opaque-value"
        assert record["nested"] == {"amount": "1.50"}
