"""SQLAlchemy implementation of the persistence adapter.

Each call opens its own short-lived AsyncSession from the injected factory.
Commits run in one transaction: the entry, its media and the task / item
completion flags are written together or not at all.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stewardbot.models.checklist import ChecklistItem, ChecklistLocation, ChecklistTask
from stewardbot.models.entry import ItemEntry, ItemEntryMedia
from stewardbot.models.enums import ChecklistStatus, InspectorStatus, WorkOrderStatus
from stewardbot.models.inspector import Inspector
from stewardbot.models.work_order import WorkOrder
from stewardbot.persistence.adapter import (
    CommitError,
    CommitReceipt,
    DateWindow,
    InspectorRecord,
    JobRecord,
    LocationEntryCommit,
    LocationRecord,
    MediaItem,
    PersistenceError,
    SubLocationRecord,
    TaskEntryCommit,
    TaskRecord,
)

logger = logging.getLogger(__name__)

_ACTIVE_JOB_STATUSES = (WorkOrderStatus.SCHEDULED.value, WorkOrderStatus.STARTED.value)


def _uuid(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise PersistenceError(f"Malformed id: {value!r}") from exc


def _phone_variants(phone: str) -> list[str]:
    """The stored number may or may not carry the leading '+'."""
    digits = "".join(ch for ch in phone if ch.isdigit())
    return [f"+{digits}", digits]


def _inspector_record(inspector: Inspector) -> InspectorRecord:
    return InspectorRecord(id=str(inspector.id), name=inspector.name, phone=inspector.mobile_phone)


def _job_record(job: WorkOrder) -> JobRecord:
    return JobRecord(
        id=str(job.id),
        customer_name=job.customer_name,
        property_address=job.property_address,
        postal_code=job.postal_code,
        scheduled_start=job.scheduled_start,
        status=WorkOrderStatus(job.status),
    )


class SqlPersistenceAdapter:
    """PersistenceAdapter backed by PostgreSQL."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ── Inspectors ───────────────────────────────────────────────────

    async def find_inspector_by_phone(self, phone: str) -> InspectorRecord | None:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Inspector)
                    .where(Inspector.mobile_phone.in_(_phone_variants(phone)))
                    .where(Inspector.status == InspectorStatus.ACTIVE.value)
                    .limit(1)
                )
                inspector = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceError("Inspector lookup failed") from exc
        return _inspector_record(inspector) if inspector else None

    async def find_inspector(self, name: str, phone: str) -> InspectorRecord | None:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Inspector)
                    .where(func.lower(Inspector.name) == name.strip().lower())
                    .where(Inspector.mobile_phone.in_(_phone_variants(phone)))
                    .where(Inspector.status == InspectorStatus.ACTIVE.value)
                    .limit(1)
                )
                inspector = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceError("Inspector lookup failed") from exc
        return _inspector_record(inspector) if inspector else None

    # ── Jobs ─────────────────────────────────────────────────────────

    async def find_active_jobs(self, inspector_id: str, window: DateWindow) -> list[JobRecord]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(WorkOrder)
                    .where(WorkOrder.inspector_id == _uuid(inspector_id))
                    .where(WorkOrder.status.in_(_ACTIVE_JOB_STATUSES))
                    .where(WorkOrder.scheduled_start >= window.start)
                    .where(WorkOrder.scheduled_start < window.end)
                    .order_by(WorkOrder.scheduled_start.asc())
                )
                return [_job_record(job) for job in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise PersistenceError("Job listing failed") from exc

    async def get_job(self, job_id: str) -> JobRecord | None:
        try:
            async with self._session_factory() as db:
                job = await db.get(WorkOrder, _uuid(job_id))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Job lookup failed for {job_id}") from exc
        return _job_record(job) if job else None

    async def find_started_jobs(self, inspector_id: str) -> list[JobRecord]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(WorkOrder)
                    .where(WorkOrder.inspector_id == _uuid(inspector_id))
                    .where(WorkOrder.status == WorkOrderStatus.STARTED.value)
                )
                return [_job_record(job) for job in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise PersistenceError("Started-job lookup failed") from exc

    async def start_job(self, job_id: str) -> None:
        await self._set_job_status(job_id, WorkOrderStatus.STARTED)

    async def complete_job(self, job_id: str) -> None:
        await self._set_job_status(job_id, WorkOrderStatus.COMPLETED)

    async def _set_job_status(self, job_id: str, status: WorkOrderStatus) -> None:
        try:
            async with self._session_factory() as db:
                job = await db.get(WorkOrder, _uuid(job_id))
                if job is None:
                    raise PersistenceError(f"Unknown job {job_id}")
                now = datetime.now(timezone.utc)
                if status == WorkOrderStatus.STARTED and job.actual_start is None:
                    job.actual_start = now
                if status == WorkOrderStatus.COMPLETED:
                    job.actual_end = now
                job.status = status.value
                await db.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not set job {job_id} to {status.value}") from exc
        logger.info("Job %s → %s", job_id, status.value)

    # ── Checklist tree ───────────────────────────────────────────────

    async def list_locations(self, job_id: str) -> list[LocationRecord]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(ChecklistItem)
                    .where(ChecklistItem.work_order_id == _uuid(job_id))
                    .order_by(ChecklistItem.position.asc(), ChecklistItem.created_at.asc())
                )
                return [
                    LocationRecord(
                        id=str(item.id),
                        name=item.name,
                        is_done=item.status == ChecklistStatus.COMPLETED.value,
                    )
                    for item in result.scalars().all()
                ]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Location listing failed for job {job_id}") from exc

    async def list_sub_locations(self, item_id: str) -> list[SubLocationRecord]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(ChecklistLocation)
                    .where(ChecklistLocation.item_id == _uuid(item_id))
                    .order_by(ChecklistLocation.position.asc(), ChecklistLocation.created_at.asc())
                )
                return [
                    SubLocationRecord(
                        id=str(loc.id),
                        name=loc.name,
                        is_done=loc.status == ChecklistStatus.COMPLETED.value,
                    )
                    for loc in result.scalars().all()
                ]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Sub-location listing failed for item {item_id}") from exc

    async def list_tasks(self, item_id: str, location_id: str | None = None) -> list[TaskRecord]:
        try:
            async with self._session_factory() as db:
                query = select(ChecklistTask).where(ChecklistTask.item_id == _uuid(item_id))
                if location_id is not None:
                    query = query.where(ChecklistTask.location_id == _uuid(location_id))
                result = await db.execute(
                    query.order_by(ChecklistTask.position.asc(), ChecklistTask.created_at.asc())
                )
                return [
                    TaskRecord(
                        id=str(task.id),
                        name=task.name,
                        item_id=str(task.item_id),
                        location_id=str(task.location_id) if task.location_id else None,
                        is_done=task.status == ChecklistStatus.COMPLETED.value,
                    )
                    for task in result.scalars().all()
                ]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Task listing failed for item {item_id}") from exc

    # ── Commits ──────────────────────────────────────────────────────

    async def commit_task_entry(self, commit: TaskEntryCommit) -> CommitReceipt:
        """Write (or replay) the entry for one task and mark the task done."""
        try:
            return await self._commit_task_entry(commit)
        except IntegrityError:
            # A concurrent delivery inserted the same commit_key first.
            logger.info("Commit key %s raced, replaying", commit.commit_key)
            try:
                return await self._commit_task_entry(commit)
            except SQLAlchemyError as exc:
                raise CommitError(f"Task entry commit failed for task {commit.task_id}") from exc
        except SQLAlchemyError as exc:
            raise CommitError(f"Task entry commit failed for task {commit.task_id}") from exc

    async def _commit_task_entry(self, commit: TaskEntryCommit) -> CommitReceipt:
        async with self._session_factory() as db:
            entry, replayed = await self._entry_for_key(db, commit.commit_key)
            if entry is None:
                entry = ItemEntry(commit_key=commit.commit_key)
                db.add(entry)
            entry.item_id = _uuid(commit.item_id)
            entry.task_id = _uuid(commit.task_id)
            entry.location_id = _uuid(commit.location_id) if commit.location_id else None
            entry.inspector_id = _uuid(commit.inspector_id)
            entry.condition = commit.condition.value
            entry.remarks = commit.remarks
            entry.cause = commit.cause
            entry.resolution = commit.resolution
            await db.flush()

            attached = await self._attach_media(db, entry.id, commit.media)

            task = await db.get(ChecklistTask, entry.task_id)
            if task is None:
                raise CommitError(f"Unknown task {commit.task_id}")
            task.status = ChecklistStatus.COMPLETED.value
            task.condition = commit.condition.value
            task.inspector_id = entry.inspector_id
            await db.flush()
            await self._refresh_completion(db, entry.item_id, entry.location_id)

            await db.commit()
            receipt = CommitReceipt(entry_id=str(entry.id), replayed=replayed, media_attached=attached)

        logger.info(
            "Task entry committed: task=%s entry=%s replayed=%s media=%d",
            commit.task_id, receipt.entry_id, replayed, attached,
        )
        return receipt

    async def commit_location_entry(self, commit: LocationEntryCommit) -> CommitReceipt:
        """Write (or replay) location-level remarks and evidence."""
        try:
            return await self._commit_location_entry(commit)
        except IntegrityError:
            logger.info("Commit key %s raced, replaying", commit.commit_key)
            try:
                return await self._commit_location_entry(commit)
            except SQLAlchemyError as exc:
                raise CommitError(f"Location entry commit failed for item {commit.item_id}") from exc
        except SQLAlchemyError as exc:
            raise CommitError(f"Location entry commit failed for item {commit.item_id}") from exc

    async def _commit_location_entry(self, commit: LocationEntryCommit) -> CommitReceipt:
        async with self._session_factory() as db:
            entry, replayed = await self._entry_for_key(db, commit.commit_key)
            if entry is None:
                entry = ItemEntry(commit_key=commit.commit_key)
                db.add(entry)
            entry.item_id = _uuid(commit.item_id)
            entry.location_id = _uuid(commit.location_id) if commit.location_id else None
            entry.inspector_id = _uuid(commit.inspector_id)
            if commit.remarks is not None:
                entry.remarks = commit.remarks
            await db.flush()

            attached = await self._attach_media(db, entry.id, commit.media)
            await db.commit()
            receipt = CommitReceipt(entry_id=str(entry.id), replayed=replayed, media_attached=attached)

        logger.info(
            "Location entry committed: item=%s entry=%s replayed=%s media=%d",
            commit.item_id, receipt.entry_id, replayed, attached,
        )
        return receipt

    async def _entry_for_key(self, db: AsyncSession, commit_key: str) -> tuple[ItemEntry | None, bool]:
        result = await db.execute(select(ItemEntry).where(ItemEntry.commit_key == commit_key))
        entry = result.scalar_one_or_none()
        return entry, entry is not None

    async def _attach_media(self, db: AsyncSession, entry_id: uuid.UUID, media: list[MediaItem]) -> int:
        """Attach media not yet linked to the entry. Returns how many were added."""
        result = await db.execute(
            select(ItemEntryMedia.storage_key).where(ItemEntryMedia.entry_id == entry_id)
        )
        known = set(result.scalars().all())
        added = 0
        for item in media:
            if item.storage_key in known:
                continue
            known.add(item.storage_key)
            db.add(
                ItemEntryMedia(
                    entry_id=entry_id,
                    url=item.url,
                    storage_key=item.storage_key,
                    media_type=item.media_type.value,
                    caption=item.caption,
                )
            )
            added += 1
        return added

    async def _refresh_completion(
        self, db: AsyncSession, item_id: uuid.UUID, location_id: uuid.UUID | None
    ) -> None:
        """Mark the sub-location and item completed once all their tasks are."""
        if location_id is not None:
            pending = await db.scalar(
                select(func.count(ChecklistTask.id))
                .where(ChecklistTask.location_id == location_id)
                .where(ChecklistTask.status != ChecklistStatus.COMPLETED.value)
            )
            if not pending:
                location = await db.get(ChecklistLocation, location_id)
                if location is not None:
                    location.status = ChecklistStatus.COMPLETED.value

        pending = await db.scalar(
            select(func.count(ChecklistTask.id))
            .where(ChecklistTask.item_id == item_id)
            .where(ChecklistTask.status != ChecklistStatus.COMPLETED.value)
        )
        if not pending:
            item = await db.get(ChecklistItem, item_id)
            if item is not None:
                item.status = ChecklistStatus.COMPLETED.value
                item.entered_on = datetime.now(timezone.utc)
