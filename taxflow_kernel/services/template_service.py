"""
TemplateService -- CRUD for reusable workflow templates.

Responsibility:
    Validates and persists templates, soft-deletes them, clones them and
    reports how many workflow instances were started from each.  Also
    lists the system default templates derived from the registry.

Architecture position:
    Services layer.  Owns WorkflowTemplateModel writes; reads instances
    through WorkflowSelector.  Flushes only.

Invariants enforced:
    - ``version`` starts at 1 and increases by one whenever ``steps`` change.
    - Delete is soft (``is_active = False``) and refused while any
      non-terminal instance references the template.
    - Every template is tenant-scoped; another tenant's template is
      reported as not found.
"""

from __future__ import annotations

import copy
from collections.abc import Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from taxflow_kernel.domain.clock import Clock
from taxflow_kernel.domain.definitions import WorkflowRegistry
from taxflow_kernel.domain.dtos import (
    DefaultTemplate,
    TemplateStep,
    TemplateUsageStats,
    WorkflowTemplate,
)
from taxflow_kernel.domain.workflow import WorkflowState, WorkflowType
from taxflow_kernel.exceptions import (
    TemplateInUseError,
    TemplateNotFoundError,
    TemplateValidationError,
)
from taxflow_kernel.logging_config import get_logger
from taxflow_kernel.models.workflow import WorkflowTemplateModel
from taxflow_kernel.selectors.workflow_selector import WorkflowSelector
from taxflow_kernel.services.base import BaseService

logger = get_logger("services.template_service")

_UNSET: Any = object()


class TemplateService(BaseService[WorkflowTemplateModel]):
    """Workflow template management."""

    def __init__(self, session: Session, registry: WorkflowRegistry, clock: Clock):
        super().__init__(session)
        self._registry = registry
        self._clock = clock
        self._selector = WorkflowSelector(session)

    def create_template(
        self,
        tenant_id: str,
        name: str,
        workflow_type: WorkflowType | str,
        steps: Sequence[TemplateStep | dict[str, Any]],
        *,
        description: str | None = None,
        default_settings: dict[str, Any] | None = None,
    ) -> WorkflowTemplate:
        step_list = [_coerce_step(s) for s in steps]
        type_value = self._validate(name, workflow_type, step_list)

        now = self._clock.now()
        model = WorkflowTemplateModel(
            tenant_id=tenant_id,
            name=name.strip(),
            description=description,
            type=type_value,
            steps=[s.to_json() for s in step_list],
            default_settings=dict(default_settings or {}),
            version=1,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "template_created",
            extra={
                "template_id": str(model.id),
                "tenant_id": tenant_id,
                "workflow_type": type_value,
                "step_count": len(step_list),
            },
        )
        return model.to_dto()

    def get_template(self, tenant_id: str, template_id: UUID) -> WorkflowTemplate:
        return self._get(tenant_id, template_id).to_dto()

    def list_templates(
        self,
        tenant_id: str,
        *,
        workflow_type: WorkflowType | str | None = None,
        is_active: bool | None = True,
    ) -> list[WorkflowTemplate]:
        stmt = select(WorkflowTemplateModel).where(
            WorkflowTemplateModel.tenant_id == tenant_id
        )
        if workflow_type is not None:
            stmt = stmt.where(WorkflowTemplateModel.type == WorkflowType(workflow_type).value)
        if is_active is not None:
            stmt = stmt.where(WorkflowTemplateModel.is_active.is_(is_active))
        stmt = stmt.order_by(WorkflowTemplateModel.name, WorkflowTemplateModel.id)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def update_template(
        self,
        tenant_id: str,
        template_id: UUID,
        *,
        name: str | None = None,
        description: str | None = _UNSET,
        steps: Sequence[TemplateStep | dict[str, Any]] | None = None,
        default_settings: dict[str, Any] | None = None,
        is_active: bool | None = None,
    ) -> WorkflowTemplate:
        """Partial update; only the keyword arguments passed are changed."""
        model = self._get(tenant_id, template_id)

        new_name = model.name if name is None else name
        step_list = (
            [TemplateStep.from_json(s) for s in model.steps or []]
            if steps is None
            else [_coerce_step(s) for s in steps]
        )
        self._validate(new_name, model.type, step_list)

        model.name = new_name.strip()
        if description is not _UNSET:
            model.description = description
        if default_settings is not None:
            model.default_settings = dict(default_settings)
        if is_active is not None:
            model.is_active = is_active
        if steps is not None:
            new_steps = [s.to_json() for s in step_list]
            if new_steps != list(model.steps or []):
                model.steps = new_steps
                model.version = model.version + 1
        model.updated_at = self._clock.now()
        self.session.flush()

        logger.info(
            "template_updated",
            extra={"template_id": str(model.id), "version": model.version},
        )
        return model.to_dto()

    def delete_template(self, tenant_id: str, template_id: UUID) -> WorkflowTemplate:
        model = self._get(tenant_id, template_id)
        active = self._selector.count_active_for_template(tenant_id, model.id)
        if active > 0:
            logger.warning(
                "template_delete_refused",
                extra={"template_id": str(model.id), "active_workflows": active},
            )
            raise TemplateInUseError(str(model.id), active)

        model.is_active = False
        model.updated_at = self._clock.now()
        self.session.flush()
        logger.info("template_deleted", extra={"template_id": str(model.id)})
        return model.to_dto()

    def clone_template(
        self, tenant_id: str, template_id: UUID, new_name: str
    ) -> WorkflowTemplate:
        """Copy steps and settings into a new active template at version 1."""
        source = self._get(tenant_id, template_id)
        clone = self.create_template(
            tenant_id,
            new_name,
            source.type,
            [TemplateStep.from_json(s) for s in source.steps or []],
            description=source.description,
            default_settings=dict(source.default_settings or {}),
        )
        logger.info(
            "template_cloned",
            extra={"source_template_id": str(source.id), "template_id": str(clone.id)},
        )
        return clone

    def get_usage_stats(self, tenant_id: str, template_id: UUID) -> TemplateUsageStats:
        model = self._get(tenant_id, template_id)
        by_state = self._selector.count_by_state(tenant_id, template_id=model.id)
        return TemplateUsageStats(
            template_id=model.id,
            template_name=model.name,
            total_workflows=sum(by_state.values()),
            workflows_by_state=by_state,
            last_used=self._selector.last_created_at_for_template(tenant_id, model.id),
        )

    def get_default_templates(self) -> list[DefaultTemplate]:
        """One system template per registered workflow type, steps in definition order."""
        defaults = []
        for definition in self._registry:
            description, settings = _SYSTEM_TEMPLATES.get(
                definition.type, (definition.description, {})
            )
            defaults.append(
                DefaultTemplate(
                    key=f"default_{definition.type.value}",
                    name=f"Default {definition.name}",
                    type=definition.type,
                    steps=tuple(
                        TemplateStep(
                            id=step.id,
                            name=step.name,
                            state=step.belongs_to_state.value,
                            description=step.description,
                        )
                        for step in definition.steps
                    ),
                    default_settings=copy.deepcopy(settings),
                    description=description,
                )
            )
        return defaults

    # -------------------------------------------------------------------------

    def _get(self, tenant_id: str, template_id: UUID) -> WorkflowTemplateModel:
        model = self.session.execute(
            select(WorkflowTemplateModel).where(
                WorkflowTemplateModel.id == template_id,
                WorkflowTemplateModel.tenant_id == tenant_id,
            )
        ).scalar_one_or_none()
        if model is None:
            raise TemplateNotFoundError(str(template_id))
        return model

    def _validate(
        self,
        name: str | None,
        workflow_type: WorkflowType | str,
        steps: list[TemplateStep],
    ) -> str:
        errors: list[str] = []
        if not (name or "").strip():
            errors.append("name is required")

        type_value = getattr(workflow_type, "value", workflow_type)
        if type_value not in self._registry:
            errors.append(f"unsupported workflow type: {type_value}")

        if not steps:
            errors.append("at least one step is required")
        seen: set[str] = set()
        for index, step in enumerate(steps):
            if not step.id:
                errors.append(f"step {index}: id is required")
            elif step.id in seen:
                errors.append(f"duplicate step id: {step.id}")
            else:
                seen.add(step.id)
            if not step.name:
                errors.append(f"step {index}: name is required")
            if step.state is not None and step.state not in _STATE_VALUES:
                errors.append(f"step {index}: unknown state {step.state}")

        if errors:
            logger.warning("template_validation_failed", extra={"errors": errors})
            raise TemplateValidationError(errors)
        return str(type_value)


_STATE_VALUES = frozenset(s.value for s in WorkflowState)

_SYSTEM_TEMPLATES: dict[WorkflowType, tuple[str, dict[str, Any]]] = {
    WorkflowType.INVOICE_CREATION: (
        "Standard workflow for creating and submitting invoices",
        {
            "requireApproval": True,
            "autoSubmitKSeF": True,
            "validationRules": ["nip_format", "tax_rates", "gtu_codes"],
        },
    ),
    WorkflowType.TAX_CALCULATION: (
        "Standard workflow for tax calculations",
        {
            "includeHistoricalData": True,
            "applyOptimizations": True,
            "generateReport": True,
        },
    ),
    WorkflowType.KSEF_SUBMISSION: (
        "Standard workflow for KSeF invoice submissions",
        {
            "environment": "test",
            "retryOnFailure": True,
            "maxRetries": 3,
            "notifyOnFailure": True,
        },
    ),
    WorkflowType.CUSTOMER_ONBOARDING: (
        "Standard workflow for customer onboarding",
        {
            "requireApproval": True,
            "autoConfigureTaxSettings": True,
            "sendWelcomeEmail": True,
            "complianceChecks": ["nip_validation", "gdpr_consent"],
        },
    ),
}


def _coerce_step(step: TemplateStep | dict[str, Any]) -> TemplateStep:
    if isinstance(step, TemplateStep):
        return step
    return TemplateStep.from_json(step)
