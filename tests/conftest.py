"""
Pytest fixtures for the taxflow test suite.

Provides:
- In-memory SQLite engine and sessions over the real ORM models
- DeterministicClock pinned to a naive timestamp (SQLite stores naive)
- Fake collaborators for every port the step handlers use
- Ready-wired WorkflowEngine / RetryQueueService / TemplateService
- Structured log capture
"""

import json
import logging
from datetime import datetime
from decimal import Decimal
from io import StringIO
from typing import Any, Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import taxflow_kernel.models  # noqa: F401
from taxflow_kernel.db.base import Base
from taxflow_kernel.db.engine import enable_sqlite_savepoints
from taxflow_kernel.domain.backoff import BackoffPolicy
from taxflow_kernel.domain.clock import DeterministicClock
from taxflow_kernel.domain.definitions import build_default_registry
from taxflow_kernel.domain.dtos import RetryTask
from taxflow_kernel.domain.ports import InvoiceRef, SubmissionReceipt, ValidationReport
from taxflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from taxflow_kernel.services.retry_queue import RetryQueueService
from taxflow_kernel.services.step_dispatch import StepDispatcher
from taxflow_kernel.services.template_service import TemplateService
from taxflow_kernel.services.workflow_engine import WorkflowEngine
from taxflow_kernel.steps.base import StepCollaborators

TENANT = "tenant-1"
OTHER_TENANT = "tenant-2"
COMPANY = "company-1"
CUSTOMER = "customer-1"
VALID_NIP = "5260250995"

T0 = datetime(2026, 2, 1, 12, 0, 0)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture taxflow logs as parsed JSON dicts.

    Usage:
        def test_something(captured_logs, workflow_engine):
            ...
            logs = captured_logs()
            assert any(r["message"] == "workflow_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("taxflow")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(eng)
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    s = session_factory()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(T0)


@pytest.fixture
def registry():
    return build_default_registry()


# =============================================================================
# Fake collaborators
# =============================================================================


class FakeInvoiceCreator:
    def __init__(self):
        self.calls: list[dict[str, Any]] = []
        self.error: Exception | None = None

    def create_invoice(self, tenant_id: str, data: dict[str, Any]) -> InvoiceRef:
        self.calls.append(data)
        if self.error is not None:
            raise self.error
        return InvoiceRef(id="INV-1", number="FV/1/2026")


def sample_invoice(number: str = "FV/1/2026") -> dict[str, Any]:
    return {
        "id": "INV-1",
        "number": number,
        "date": "2026-02-01",
        "dueDate": None,
        "company": {"name": "Seller Sp. z o.o.", "nip": VALID_NIP, "address": "Warszawa"},
        "buyer": {"name": "Buyer S.A.", "nip": "7740001454", "address": "Krakow"},
        "items": [
            {
                "description": "Consulting",
                "quantity": Decimal("2"),
                "unitPrice": Decimal("500.00"),
                "vatRate": 23,
                "gtu": None,
                "netAmount": Decimal("1000.00"),
                "vatAmount": Decimal("230.00"),
                "grossAmount": Decimal("1230.00"),
            }
        ],
        "totalNet": Decimal("1000.00"),
        "totalVat": Decimal("230.00"),
        "totalGross": Decimal("1230.00"),
        "paymentMethod": None,
    }


class FakeInvoiceLookup:
    def __init__(self):
        self.error: Exception | None = None

    def get_invoice_by_id(self, tenant_id: str, invoice_id: str) -> dict[str, Any]:
        if self.error is not None:
            raise self.error
        return sample_invoice()


class FakeInvoiceValidator:
    def __init__(self):
        self.report = ValidationReport(valid=True)

    def validate_invoice(self, tenant_id: str, data: dict[str, Any]) -> ValidationReport:
        return self.report


class FakeInvoiceSubmitter:
    """Fails the first ``failures`` calls, then succeeds."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls: list[dict[str, Any]] = []

    def submit_invoice(self, invoice_dto: dict[str, Any], tenant_id: str) -> SubmissionReceipt:
        self.calls.append(invoice_dto)
        if len(self.calls) <= self.failures:
            raise ConnectionError("KSeF unavailable")
        return SubmissionReceipt(reference_number=f"KSEF-REF-{len(self.calls)}")


class FakeTaxCalculator:
    def calculate(self, tenant_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return {"period": data.get("period"), "vatDue": "230.00"}


class FakeCustomerRegistry:
    def __init__(self):
        self.calls = 0

    def register_customer(self, tenant_id: str, data: dict[str, Any]) -> str:
        self.calls += 1
        return "CUST-1"


class FakeAccessResolver:
    def __init__(self):
        self.tenants = {TENANT, OTHER_TENANT}
        self.companies = {(TENANT, COMPANY)}
        self.customers = {(TENANT, CUSTOMER)}

    def tenant_exists(self, tenant_id: str) -> bool:
        return tenant_id in self.tenants

    def company_belongs_to(self, tenant_id: str, company_id: str) -> bool:
        return (tenant_id, company_id) in self.companies

    def customer_belongs_to(self, tenant_id: str, customer_id: str) -> bool:
        return (tenant_id, customer_id) in self.customers


class RecordingAuditSink:
    def __init__(self):
        self.records: list[tuple[str, str, str, dict[str, Any]]] = []

    def record(self, tenant_id, action, entity_id, details) -> None:
        self.records.append((tenant_id, action, entity_id, details))

    def actions(self) -> list[str]:
        return [r[1] for r in self.records]


class RecordingFailureMarker:
    def __init__(self):
        self.calls: list[tuple[str, str, str]] = []

    def mark_submission_failed(self, tenant_id: str, invoice_number: str, reason: str) -> None:
        self.calls.append((tenant_id, invoice_number, reason))


class RecordingNotifier:
    def __init__(self):
        self.calls: list[tuple[RetryTask, str]] = []

    def notify_terminal_failure(self, task: RetryTask, reason: str) -> None:
        self.calls.append((task, reason))


@pytest.fixture
def invoice_creator():
    return FakeInvoiceCreator()


@pytest.fixture
def invoice_lookup():
    return FakeInvoiceLookup()


@pytest.fixture
def invoice_validator():
    return FakeInvoiceValidator()


@pytest.fixture
def invoice_submitter():
    return FakeInvoiceSubmitter()


@pytest.fixture
def customer_registry():
    return FakeCustomerRegistry()


@pytest.fixture
def access_resolver():
    return FakeAccessResolver()


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def failure_marker():
    return RecordingFailureMarker()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def collaborators(
    invoice_creator, invoice_lookup, invoice_validator, invoice_submitter, customer_registry,
) -> StepCollaborators:
    return StepCollaborators(
        invoice_creator=invoice_creator,
        invoice_lookup=invoice_lookup,
        invoice_validator=invoice_validator,
        invoice_submitter=invoice_submitter,
        tax_calculator=FakeTaxCalculator(),
        customer_registry=customer_registry,
        submission_timeout_seconds=5.0,
    )


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def no_jitter_backoff() -> BackoffPolicy:
    return BackoffPolicy(rng=lambda: 0.0)


@pytest.fixture
def retry_queue(session, clock, no_jitter_backoff, failure_marker, notifier) -> RetryQueueService:
    return RetryQueueService(
        session,
        clock,
        backoff=no_jitter_backoff,
        failure_marker=failure_marker,
        notifier=notifier,
    )


@pytest.fixture
def dispatcher(collaborators) -> StepDispatcher:
    return StepDispatcher(collaborators)


@pytest.fixture
def workflow_engine(
    session, registry, dispatcher, clock, access_resolver, retry_queue, audit_sink,
) -> WorkflowEngine:
    return WorkflowEngine(
        session,
        registry,
        dispatcher,
        clock,
        access=access_resolver,
        retry_queue=retry_queue,
        audit=audit_sink,
    )


@pytest.fixture
def template_service(session, registry, clock) -> TemplateService:
    return TemplateService(session, registry, clock)
