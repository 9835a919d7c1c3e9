"""Inspector model — a field inspector who may run jobs through the chat channel."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stewardbot.models.base import Base, TimestampMixin
from stewardbot.models.enums import InspectorStatus

if TYPE_CHECKING:
    from stewardbot.models.work_order import WorkOrder


class Inspector(TimestampMixin, Base):
    """A registered inspector."""

    __tablename__ = "inspectors"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    mobile_phone: Mapped[str | None] = mapped_column(String(30), index=True, comment="E.164, e.g. +6591234567")
    status: Mapped[str] = mapped_column(
        String(20), default=InspectorStatus.ACTIVE.value, nullable=False
    )

    work_orders: Mapped[list[WorkOrder]] = relationship("WorkOrder", back_populates="inspector")

    def __repr__(self) -> str:
        return f"<Inspector id={self.id} name={self.name}>"
