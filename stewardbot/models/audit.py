"""AuditLog model — append-only trail of every SystemEvent."""

from __future__ import annotations

from typing import Any

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from stewardbot.models.base import Base, TimestampMixin


class AuditLog(TimestampMixin, Base):
    """Immutable audit trail entry."""

    __tablename__ = "audit_log"

    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Context (nullable: not every event relates to a conversation or job)
    identity: Mapped[str | None] = mapped_column(String(100), index=True, comment="Chat identity (phone)")
    inspector_id: Mapped[str | None] = mapped_column(String(100))
    work_order_id: Mapped[str | None] = mapped_column(String(100), index=True)

    data: Mapped[dict[str, Any] | None] = mapped_column(JSONB)

    def __repr__(self) -> str:
        return f"<AuditLog event={self.event_type} identity={self.identity}>"
