"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization. Values match the durable
store's native enum labels.
"""

from __future__ import annotations

from enum import Enum


class InspectorStatus(str, Enum):
    """Whether an inspector may log in through the chat channel."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class WorkOrderStatus(str, Enum):
    """Lifecycle of a scheduled inspection visit."""

    SCHEDULED = "SCHEDULED"
    STARTED = "STARTED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class ChecklistStatus(str, Enum):
    """Completion status shared by checklist items, sub-locations and tasks."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class Condition(str, Enum):
    """Recorded condition of a checklist task.

    The inspector picks one by number; see ``CONDITION_BY_NUMBER``.
    """

    GOOD = "GOOD"
    FAIR = "FAIR"
    UNSATISFACTORY = "UNSATISFACTORY"
    UN_OBSERVABLE = "UN_OBSERVABLE"
    NOT_APPLICABLE = "NOT_APPLICABLE"


CONDITION_BY_NUMBER: dict[int, Condition] = {
    1: Condition.GOOD,
    2: Condition.FAIR,
    3: Condition.UNSATISFACTORY,
    4: Condition.UN_OBSERVABLE,
    5: Condition.NOT_APPLICABLE,
}

CONDITION_LABELS: dict[Condition, str] = {
    Condition.GOOD: "Good",
    Condition.FAIR: "Fair",
    Condition.UNSATISFACTORY: "Un-Satisfactory",
    Condition.UN_OBSERVABLE: "Un-Observable",
    Condition.NOT_APPLICABLE: "Not Applicable",
}


class MediaType(str, Enum):
    """Kind of evidence attached to an entry."""

    PHOTO = "photo"
    VIDEO = "video"
