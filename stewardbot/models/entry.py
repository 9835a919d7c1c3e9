"""ItemEntry and ItemEntryMedia — what an inspector recorded for a task or location.

Entries are written only at confirmation points. ``commit_key`` makes the write
idempotent: replaying the same confirmation updates the existing entry instead
of creating a second one.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stewardbot.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from stewardbot.models.checklist import ChecklistItem


class ItemEntry(TimestampMixin, Base):
    """One inspector's recorded finding for a task (or a whole location)."""

    __tablename__ = "item_entries"

    item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("checklist_items.id"), nullable=False, index=True
    )
    task_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("checklist_tasks.id"), index=True
    )
    location_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("checklist_locations.id")
    )
    inspector_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("inspectors.id"))

    condition: Mapped[str | None] = mapped_column(String(30))
    remarks: Mapped[str | None] = mapped_column(Text)
    cause: Mapped[str | None] = mapped_column(Text)
    resolution: Mapped[str | None] = mapped_column(Text)

    commit_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    item: Mapped[ChecklistItem] = relationship("ChecklistItem", back_populates="entries")
    media: Mapped[list[ItemEntryMedia]] = relationship(
        "ItemEntryMedia", back_populates="entry", lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<ItemEntry id={self.id} task={self.task_id} condition={self.condition}>"


class ItemEntryMedia(TimestampMixin, Base):
    """A photo or video attached to an entry."""

    __tablename__ = "item_entry_media"
    __table_args__ = (UniqueConstraint("entry_id", "storage_key", name="uq_item_entry_media_key"),)

    entry_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("item_entries.id"), nullable=False, index=True
    )
    url: Mapped[str] = mapped_column(String(1000), nullable=False)
    storage_key: Mapped[str] = mapped_column(String(500), nullable=False)
    media_type: Mapped[str] = mapped_column(String(10), nullable=False)
    caption: Mapped[str | None] = mapped_column(Text)

    entry: Mapped[ItemEntry] = relationship("ItemEntry", back_populates="media")

    def __repr__(self) -> str:
        return f"<ItemEntryMedia id={self.id} type={self.media_type}>"
