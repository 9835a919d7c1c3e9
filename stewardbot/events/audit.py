"""Audit log subscriber — persists every SystemEvent to the audit_log table.

Registered as a global subscriber. Never raises: a failed audit write is
logged and the conversation carries on.
"""

from __future__ import annotations

import logging

from stewardbot.db.engine import async_session_factory
from stewardbot.models.audit import AuditLog
from stewardbot.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


async def audit_on_event(event: SystemEvent) -> None:
    """Write one SystemEvent to audit_log."""
    try:
        async with async_session_factory() as db:
            db.add(
                AuditLog(
                    event_type=event.event_type.value,
                    identity=event.identity,
                    inspector_id=event.inspector_id,
                    work_order_id=event.work_order_id,
                    data={**event.data, "source_module": event.source_module},
                )
            )
            await db.commit()
    except Exception:
        logger.exception(
            "Failed to persist audit event: %s (identity=%s)",
            event.event_type.value,
            event.identity,
        )
