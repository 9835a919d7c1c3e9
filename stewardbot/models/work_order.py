"""WorkOrder model — one scheduled inspection visit at a property."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stewardbot.models.base import Base, TimestampMixin
from stewardbot.models.enums import WorkOrderStatus

if TYPE_CHECKING:
    from stewardbot.models.checklist import ChecklistItem
    from stewardbot.models.inspector import Inspector


class WorkOrder(TimestampMixin, Base):
    """A scheduled inspection job assigned to an inspector."""

    __tablename__ = "work_orders"

    inspector_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("inspectors.id"), index=True
    )

    # Denormalized contract details shown to the inspector
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    property_address: Mapped[str] = mapped_column(String(500), nullable=False)
    postal_code: Mapped[str | None] = mapped_column(String(20))

    scheduled_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    scheduled_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    actual_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    actual_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    status: Mapped[str] = mapped_column(
        String(20), default=WorkOrderStatus.SCHEDULED.value, nullable=False, index=True
    )
    remarks: Mapped[str | None] = mapped_column(Text)

    inspector: Mapped[Inspector | None] = relationship("Inspector", back_populates="work_orders")
    items: Mapped[list[ChecklistItem]] = relationship(
        "ChecklistItem", back_populates="work_order", order_by="ChecklistItem.position"
    )

    def __repr__(self) -> str:
        return f"<WorkOrder id={self.id} status={self.status}>"
