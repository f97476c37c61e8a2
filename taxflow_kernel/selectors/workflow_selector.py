"""
WorkflowSelector -- read-only queries over workflow instances.

Responsibility:
    Point lookups by id (tenant-scoped), filtered listing, and per-state
    counts.  Used by the engine for listing and by the template service for
    usage statistics and the in-use check.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select

from taxflow_kernel.domain.dtos import WorkflowInstance
from taxflow_kernel.domain.workflow import (
    TERMINAL_STATES,
    WorkflowState,
    WorkflowType,
)
from taxflow_kernel.models.workflow import WorkflowInstanceModel
from taxflow_kernel.selectors.base import BaseSelector


class WorkflowSelector(BaseSelector[WorkflowInstanceModel]):
    """Read-side access to workflow instances."""

    def get(self, workflow_id: UUID, tenant_id: str | None = None) -> WorkflowInstance | None:
        stmt = select(WorkflowInstanceModel).where(WorkflowInstanceModel.id == workflow_id)
        if tenant_id is not None:
            stmt = stmt.where(WorkflowInstanceModel.tenant_id == tenant_id)
        model = self.session.execute(stmt).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def list(
        self,
        tenant_id: str,
        *,
        workflow_type: WorkflowType | None = None,
        state: WorkflowState | None = None,
        company_id: str | None = None,
        customer_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WorkflowInstance]:
        """Newest first."""
        stmt = select(WorkflowInstanceModel).where(
            WorkflowInstanceModel.tenant_id == tenant_id
        )
        if workflow_type is not None:
            stmt = stmt.where(WorkflowInstanceModel.type == WorkflowType(workflow_type).value)
        if state is not None:
            stmt = stmt.where(WorkflowInstanceModel.state == WorkflowState(state).value)
        if company_id is not None:
            stmt = stmt.where(WorkflowInstanceModel.company_id == company_id)
        if customer_id is not None:
            stmt = stmt.where(WorkflowInstanceModel.customer_id == customer_id)
        stmt = stmt.order_by(
            WorkflowInstanceModel.created_at.desc(),
            WorkflowInstanceModel.id,
        ).limit(limit).offset(offset)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def count_by_state(
        self, tenant_id: str, *, template_id: UUID | None = None
    ) -> dict[str, int]:
        stmt = (
            select(WorkflowInstanceModel.state, func.count())
            .where(WorkflowInstanceModel.tenant_id == tenant_id)
            .group_by(WorkflowInstanceModel.state)
        )
        if template_id is not None:
            stmt = stmt.where(WorkflowInstanceModel.template_id == template_id)
        return {state: count for state, count in self.session.execute(stmt).all()}

    def count_active_for_template(self, tenant_id: str, template_id: UUID) -> int:
        """Instances referencing the template that are not yet terminal."""
        terminal = [s.value for s in TERMINAL_STATES]
        stmt = (
            select(func.count())
            .select_from(WorkflowInstanceModel)
            .where(
                WorkflowInstanceModel.tenant_id == tenant_id,
                WorkflowInstanceModel.template_id == template_id,
                WorkflowInstanceModel.state.not_in(terminal),
            )
        )
        return self.session.execute(stmt).scalar_one()

    def last_created_at_for_template(
        self, tenant_id: str, template_id: UUID
    ) -> datetime | None:
        stmt = select(func.max(WorkflowInstanceModel.created_at)).where(
            WorkflowInstanceModel.tenant_id == tenant_id,
            WorkflowInstanceModel.template_id == template_id,
        )
        return self.session.execute(stmt).scalar_one_or_none()
