"""Checklist tree for a work order: items (locations) → sub-locations → tasks.

The tree is created by the admin application when a contract's checklist is
instantiated; the chat engine only reads it and updates completion status.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stewardbot.models.base import Base, TimestampMixin
from stewardbot.models.enums import ChecklistStatus

if TYPE_CHECKING:
    from stewardbot.models.entry import ItemEntry
    from stewardbot.models.work_order import WorkOrder


class ChecklistItem(TimestampMixin, Base):
    """A top-level location in the walk (e.g. "Living Room")."""

    __tablename__ = "checklist_items"

    work_order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("work_orders.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ChecklistStatus.PENDING.value, nullable=False)
    condition: Mapped[str | None] = mapped_column(String(30))
    entered_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    work_order: Mapped[WorkOrder] = relationship("WorkOrder", back_populates="items")
    sub_locations: Mapped[list[ChecklistLocation]] = relationship(
        "ChecklistLocation", back_populates="item", order_by="ChecklistLocation.position"
    )
    tasks: Mapped[list[ChecklistTask]] = relationship(
        "ChecklistTask", back_populates="item", order_by="ChecklistTask.position"
    )
    entries: Mapped[list[ItemEntry]] = relationship("ItemEntry", back_populates="item")

    def __repr__(self) -> str:
        return f"<ChecklistItem id={self.id} name={self.name} status={self.status}>"


class ChecklistLocation(TimestampMixin, Base):
    """A sub-location inside an item (e.g. "Ceiling", "Window")."""

    __tablename__ = "checklist_locations"

    item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("checklist_items.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ChecklistStatus.PENDING.value, nullable=False)

    item: Mapped[ChecklistItem] = relationship("ChecklistItem", back_populates="sub_locations")
    tasks: Mapped[list[ChecklistTask]] = relationship("ChecklistTask", back_populates="location")

    def __repr__(self) -> str:
        return f"<ChecklistLocation id={self.id} name={self.name}>"


class ChecklistTask(TimestampMixin, Base):
    """A single thing to check, optionally scoped to a sub-location."""

    __tablename__ = "checklist_tasks"

    item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("checklist_items.id"), nullable=False, index=True
    )
    location_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("checklist_locations.id"), index=True
    )
    inspector_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("inspectors.id"))
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ChecklistStatus.PENDING.value, nullable=False)
    condition: Mapped[str | None] = mapped_column(String(30))

    item: Mapped[ChecklistItem] = relationship("ChecklistItem", back_populates="tasks")
    location: Mapped[ChecklistLocation | None] = relationship("ChecklistLocation", back_populates="tasks")

    def __repr__(self) -> str:
        return f"<ChecklistTask id={self.id} name={self.name} status={self.status}>"
