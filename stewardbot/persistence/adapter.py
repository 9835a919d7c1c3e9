"""Persistence adapter — the engine's only view of the durable inspection store.

Controllers depend on the ``PersistenceAdapter`` protocol; the SQL
implementation lives in ``stewardbot.persistence.sql``. Records crossing the
boundary are plain pydantic models with string ids, so nothing ORM-bound
leaks into the session document.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Protocol

from pydantic import BaseModel, Field

from stewardbot.models.enums import Condition, MediaType, WorkOrderStatus

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class PersistenceError(Exception):
    """The durable store could not complete an operation."""


class CommitError(PersistenceError):
    """A task or location entry could not be committed."""


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class InspectorRecord(BaseModel):
    id: str
    name: str
    phone: str | None = None


class DateWindow(BaseModel):
    """Half-open ``[start, end)`` interval, timezone-aware."""

    start: datetime
    end: datetime


class JobRecord(BaseModel):
    id: str
    customer_name: str
    property_address: str
    postal_code: str | None = None
    scheduled_start: datetime
    status: WorkOrderStatus


class LocationRecord(BaseModel):
    """A checklist item (top-level location) of a job."""

    id: str
    name: str
    is_done: bool = False


class SubLocationRecord(BaseModel):
    id: str
    name: str
    is_done: bool = False


class TaskRecord(BaseModel):
    id: str
    name: str
    item_id: str
    location_id: str | None = None
    is_done: bool = False


class MediaItem(BaseModel):
    url: str
    storage_key: str
    media_type: MediaType
    caption: str | None = None


class TaskEntryCommit(BaseModel):
    """Everything recorded for one task, written in a single transaction."""

    commit_key: str = Field(description="Idempotency key; a replay updates the same entry")
    inspector_id: str
    job_id: str
    item_id: str
    task_id: str
    location_id: str | None = None
    condition: Condition
    remarks: str | None = None
    cause: str | None = None
    resolution: str | None = None
    media: list[MediaItem] = Field(default_factory=list)


class LocationEntryCommit(BaseModel):
    """Remarks and evidence for a whole location (no task)."""

    commit_key: str
    inspector_id: str
    job_id: str
    item_id: str
    location_id: str | None = None
    remarks: str | None = None
    media: list[MediaItem] = Field(default_factory=list)


class CommitReceipt(BaseModel):
    entry_id: str
    replayed: bool = False
    media_attached: int = 0


def entry_commit_key(*parts: str | None) -> str:
    """Deterministic commit key, so the same task or location always maps to one entry."""
    return uuid.uuid5(uuid.NAMESPACE_URL, "|".join(p or "" for p in parts)).hex


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class PersistenceAdapter(Protocol):
    """Operations the conversation engine needs from the durable store.

    Read operations raise ``PersistenceError`` on failure; commits raise
    ``CommitError``. Commits are idempotent on ``commit_key``.
    """

    async def find_inspector_by_phone(self, phone: str) -> InspectorRecord | None: ...

    async def find_inspector(self, name: str, phone: str) -> InspectorRecord | None: ...

    async def find_active_jobs(self, inspector_id: str, window: DateWindow) -> list[JobRecord]: ...

    async def get_job(self, job_id: str) -> JobRecord | None: ...

    async def find_started_jobs(self, inspector_id: str) -> list[JobRecord]: ...

    async def start_job(self, job_id: str) -> None: ...

    async def complete_job(self, job_id: str) -> None: ...

    async def list_locations(self, job_id: str) -> list[LocationRecord]: ...

    async def list_sub_locations(self, item_id: str) -> list[SubLocationRecord]: ...

    async def list_tasks(self, item_id: str, location_id: str | None = None) -> list[TaskRecord]: ...

    async def commit_task_entry(self, commit: TaskEntryCommit) -> CommitReceipt: ...

    async def commit_location_entry(self, commit: LocationEntryCommit) -> CommitReceipt: ...


async def bounded_commit(
    operation: Callable[[], Awaitable[CommitReceipt]],
    *,
    timeout: float,
    attempts: int,
) -> CommitReceipt:
    """Run a commit with a per-attempt timeout and a bounded number of attempts.

    Commits are idempotent on their commit key, so repeating one after a
    timeout cannot create a second entry.

    Raises:
        CommitError: When every attempt failed or timed out.
    """
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except (PersistenceError, asyncio.TimeoutError) as exc:
            last_error = exc
            logger.warning("Commit attempt %d/%d failed: %r", attempt, attempts, exc)
    raise CommitError(f"Commit failed after {attempts} attempt(s)") from last_error
