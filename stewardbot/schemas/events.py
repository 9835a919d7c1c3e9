"""SystemEvent schema — the event type emitted by the conversation engine.

Subscribers (the audit logger, for now) consume these asynchronously so a slow
subscriber never delays a reply to the inspector.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Messages
    MESSAGE_RECEIVED = "message.received"
    MESSAGE_SENT = "message.sent"
    MESSAGE_DUPLICATE = "message.duplicate"

    # Session lifecycle
    SESSION_STARTED = "session.started"
    SESSION_RESET = "session.reset"
    INSPECTOR_IDENTIFIED = "session.inspector_identified"

    # Jobs
    JOB_CONFIRMING = "job.confirming"
    JOB_STARTED = "job.started"
    JOB_CONFLICT = "job.conflict"
    JOB_COMPLETED = "job.completed"

    # Evidence and findings
    MEDIA_BUFFERED = "media.buffered"
    TASK_COMMITTED = "task.committed"
    TASK_COMMIT_FAILED = "task.commit_failed"
    LOCATION_COMMITTED = "location.committed"

    # System
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"
    SYSTEM_ERROR = "system.error"


class SystemEvent(BaseModel):
    """Immutable record of something that happened in a conversation."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Context (optional, system events have no conversation)
    identity: str | None = None
    inspector_id: str | None = None
    work_order_id: str | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    # Metadata
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
