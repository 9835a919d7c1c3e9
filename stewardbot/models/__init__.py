"""SQLAlchemy ORM models for the durable inspection store.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from stewardbot.models.audit import AuditLog
from stewardbot.models.base import Base
from stewardbot.models.checklist import ChecklistItem, ChecklistLocation, ChecklistTask
from stewardbot.models.entry import ItemEntry, ItemEntryMedia
from stewardbot.models.enums import (
    CONDITION_BY_NUMBER,
    CONDITION_LABELS,
    ChecklistStatus,
    Condition,
    InspectorStatus,
    MediaType,
    WorkOrderStatus,
)
from stewardbot.models.inspector import Inspector
from stewardbot.models.work_order import WorkOrder

__all__ = [
    "AuditLog",
    "Base",
    "CONDITION_BY_NUMBER",
    "CONDITION_LABELS",
    "ChecklistItem",
    "ChecklistLocation",
    "ChecklistStatus",
    "ChecklistTask",
    "Condition",
    "Inspector",
    "InspectorStatus",
    "ItemEntry",
    "ItemEntryMedia",
    "MediaType",
    "WorkOrder",
    "WorkOrderStatus",
]
