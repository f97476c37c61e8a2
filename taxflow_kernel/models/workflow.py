"""
ORM models for workflow instances and workflow templates.

Contract:
    WorkflowInstanceModel persists one running workflow: state, the opaque
    data bag and per-step runtime records.  WorkflowTemplateModel persists
    reusable step-list templates.  Both expose ``to_dto()``.

Architecture: taxflow_kernel/models. Imports from taxflow_kernel.db.base only
    (plus domain DTOs inside the conversion methods).

Invariants enforced:
    - ``version`` is the SQLAlchemy version_id_col: every UPDATE is
      conditional on the version that was read, and a lost race raises
      StaleDataError at flush.
    - ``data`` and ``steps`` are plain JSON columns; writers always assign a
      new object so the change is detected.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from taxflow_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from taxflow_kernel.domain.dtos import WorkflowInstance, WorkflowTemplate


class WorkflowInstanceModel(TrackedBase):
    """Persistent workflow instance (optimistic version column)."""

    __tablename__ = "workflow_instances"

    __table_args__ = (
        Index("ix_workflow_instances_tenant_state", "tenant_id", "state"),
        Index("ix_workflow_instances_tenant_type", "tenant_id", "type"),
        Index("ix_workflow_instances_template", "template_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    state: Mapped[str] = mapped_column(String(50), nullable=False)
    trigger: Mapped[str] = mapped_column(String(50), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    steps: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    company_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    customer_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    template_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> WorkflowInstance:
        from taxflow_kernel.domain.dtos import StepRuntime, WorkflowInstance
        from taxflow_kernel.domain.workflow import (
            WorkflowState,
            WorkflowTrigger,
            WorkflowType,
        )

        return WorkflowInstance(
            id=self.id,
            tenant_id=self.tenant_id,
            type=WorkflowType(self.type),
            state=WorkflowState(self.state),
            trigger=WorkflowTrigger(self.trigger),
            data=dict(self.data or {}),
            steps=tuple(StepRuntime.from_json(s) for s in (self.steps or [])),
            company_id=self.company_id,
            customer_id=self.customer_id,
            template_id=self.template_id,
            version=self.version,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class WorkflowTemplateModel(TrackedBase):
    """Reusable workflow template (soft-deleted via ``is_active``)."""

    __tablename__ = "workflow_templates"

    __table_args__ = (
        Index("ix_workflow_templates_tenant_type", "tenant_id", "type"),
        Index("ix_workflow_templates_tenant_active", "tenant_id", "is_active"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    steps: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    default_settings: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self) -> WorkflowTemplate:
        from taxflow_kernel.domain.dtos import TemplateStep, WorkflowTemplate
        from taxflow_kernel.domain.workflow import WorkflowType

        return WorkflowTemplate(
            id=self.id,
            tenant_id=self.tenant_id,
            name=self.name,
            type=WorkflowType(self.type),
            steps=tuple(TemplateStep.from_json(s) for s in (self.steps or [])),
            default_settings=dict(self.default_settings or {}),
            description=self.description,
            version=self.version,
            is_active=self.is_active,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
