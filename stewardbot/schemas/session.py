"""Chat session document — the per-inspector conversational state kept in Redis.

One document per conversation identity. It is read at the start of every
inbound message, updated through the SessionMerger and expires after the
configured idle window. Nothing in here is durable: findings only reach the
relational store when a task or location entry is confirmed.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from stewardbot.models.enums import Condition, MediaType

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class JobStatus(str, Enum):
    """Progress of the job attached to the session."""

    NONE = "none"
    CONFIRMING = "confirming"
    STARTED = "started"


class TaskStage(str, Enum):
    """Sub-stage of the task flow. Moves strictly forward."""

    CONDITION = "condition"
    MEDIA = "media"
    REMARKS = "remarks"
    CONFIRM = "confirm"
    CAUSE = "cause"
    RESOLUTION = "resolution"


TASK_STAGE_ORDER: dict[TaskStage, int] = {stage: index for index, stage in enumerate(TaskStage)}


class MenuKind(str, Enum):
    """The menu or prompt last shown to the inspector."""

    IDENTIFY = "identify"
    JOBS = "jobs"
    JOB_CONFIRM = "job_confirm"
    LOCATIONS = "locations"
    SUB_LOCATIONS = "sub_locations"
    TASKS = "tasks"
    LOCATION_REMARKS = "location_remarks"
    TASK = "task"


# ---------------------------------------------------------------------------
# References and cursors
# ---------------------------------------------------------------------------


class InspectorRef(BaseModel):
    id: str
    name: str
    phone: str | None = None


class JobRef(BaseModel):
    id: str | None = None
    status: JobStatus = JobStatus.NONE
    customer_name: str | None = None
    property_address: str | None = None


class Cursor(BaseModel):
    """Currently selected location or sub-location."""

    id: str
    name: str
    commit_key: str | None = Field(default=None, description="Idempotency key for a pending location entry")


class TaskCursor(BaseModel):
    id: str
    name: str
    item_id: str
    location_id: str | None = None
    commit_key: str = Field(default_factory=lambda: uuid.uuid4().hex)


class MenuOption(BaseModel):
    """One numbered line of a menu, as it was shown."""

    id: str
    number: int
    label: str


# ---------------------------------------------------------------------------
# Task draft: one variant per task stage
# ---------------------------------------------------------------------------


class _Draft(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ConditionDraft(_Draft):
    stage: Literal["condition"] = "condition"


class MediaDraft(_Draft):
    stage: Literal["media"] = "media"
    condition: Condition


class RemarksDraft(_Draft):
    stage: Literal["remarks"] = "remarks"
    condition: Condition


class ConfirmDraft(_Draft):
    stage: Literal["confirm"] = "confirm"
    condition: Condition
    remarks: str | None = None
    commit_failed: bool = False


class _UnsatisfactoryDraft(_Draft):
    """Cause and resolution are only collected for Un-Satisfactory findings."""

    condition: Condition = Condition.UNSATISFACTORY

    @field_validator("condition")
    @classmethod
    def _must_be_unsatisfactory(cls, v: Condition) -> Condition:
        if v != Condition.UNSATISFACTORY:
            msg = f"{cls.__name__} requires condition UNSATISFACTORY, got {v.value}"
            raise ValueError(msg)
        return v


class CauseDraft(_UnsatisfactoryDraft):
    stage: Literal["cause"] = "cause"
    remarks: str | None = None


class ResolutionDraft(_UnsatisfactoryDraft):
    stage: Literal["resolution"] = "resolution"
    remarks: str | None = None
    cause: str
    resolution: str | None = None
    commit_failed: bool = False


TaskDraft = Annotated[
    ConditionDraft | MediaDraft | RemarksDraft | ConfirmDraft | CauseDraft | ResolutionDraft,
    Field(discriminator="stage"),
]


# ---------------------------------------------------------------------------
# Media upload buffer
# ---------------------------------------------------------------------------


class PendingMediaUpload(BaseModel):
    """A photo or video already in object storage but not yet attached to an entry."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    url: str
    storage_key: str
    media_type: MediaType
    task_ref: str | None = None
    location_ref: str | None = None
    job_ref: str | None = Field(default=None, description="Job the evidence was captured for")
    uploaded_at: datetime
    condition: Condition | None = None
    caption: str | None = None

    @model_validator(mode="after")
    def _exactly_one_ref(self) -> PendingMediaUpload:
        if (self.task_ref is None) == (self.location_ref is None):
            msg = "A buffered upload must reference exactly one of task_ref or location_ref"
            raise ValueError(msg)
        return self


# ---------------------------------------------------------------------------
# Session document
# ---------------------------------------------------------------------------


class ChatSession(BaseModel):
    """Per-identity conversational state.

    Unknown keys in a stored document are ignored so older documents keep
    loading after fields are retired.
    """

    model_config = ConfigDict(extra="ignore")

    identity: str

    inspector: InspectorRef | None = None
    job: JobRef = Field(default_factory=JobRef)

    location: Cursor | None = None
    sub_location: Cursor | None = None
    task: TaskCursor | None = None
    task_draft: TaskDraft | None = None

    pending_media_uploads: list[PendingMediaUpload] = Field(default_factory=list)

    last_menu: MenuKind | None = None
    last_jobs_snapshot: list[MenuOption] = Field(default_factory=list)
    last_options_snapshot: list[MenuOption] = Field(default_factory=list)

    # Duplicate delivery detection
    recent_message_ids: list[str] = Field(default_factory=list)
    last_reply: str | None = None

    created_at: datetime | None = None
    last_updated_at: datetime | None = None
    identified_at: datetime | None = None

    @property
    def is_new(self) -> bool:
        """True when nothing has been written for this identity yet (or it expired)."""
        return self.created_at is None

    @property
    def task_flow_stage(self) -> TaskStage | None:
        if self.task_draft is None:
            return None
        return TaskStage(self.task_draft.stage)

    @property
    def pending_remarks(self) -> str | None:
        return getattr(self.task_draft, "remarks", None)

    @property
    def pending_cause(self) -> str | None:
        return getattr(self.task_draft, "cause", None)

    @property
    def pending_resolution(self) -> str | None:
        return getattr(self.task_draft, "resolution", None)


SESSION_FIELDS: frozenset[str] = frozenset(ChatSession.model_fields)


def reset_fields() -> dict[str, object]:
    """Partial update clearing job, cursors, drafts and menus.

    Keeps the inspector binding and the media buffer: buffered evidence only
    leaves the session once it has been written to the durable store.
    """
    return {
        "job": JobRef(),
        "location": None,
        "sub_location": None,
        "task": None,
        "task_draft": None,
        "last_menu": None,
        "last_jobs_snapshot": [],
        "last_options_snapshot": [],
    }
