"""Default audit sink: one structured log line per audit record."""

from __future__ import annotations

from typing import Any

from taxflow_kernel.logging_config import get_logger

logger = get_logger("audit")


class LoggingAuditSink:
    """AuditSink that writes ``audit_record`` events to the taxflow log."""

    def record(
        self,
        tenant_id: str,
        action: str,
        entity_id: str,
        details: dict[str, Any],
    ) -> None:
        logger.info(
            "audit_record",
            extra={
                "audit_tenant_id": tenant_id,
                "audit_action": action,
                "audit_entity_id": entity_id,
                "audit_details": details,
            },
        )
