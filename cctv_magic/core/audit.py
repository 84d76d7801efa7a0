"""Audit log for critical actions (payments, terminal video states)."""

from typing import Any

from cctv_magic.core.logging import get_logger
from cctv_magic.models.audit_log import AuditLog

log = get_logger(__name__)


async def log_event(
    user_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Append to audit_logs; audit failures never abort the business action."""
    try:
        await AuditLog(
            user_id=user_id,
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata=metadata or {},
        ).insert()
    except Exception:
        log.exception("audit_write_failed", event_type=event_type, entity_id=entity_id)
