"""Helpers over the session's pending media upload buffer.

The buffer is a plain list on the session document. These functions never
mutate their input; callers merge the returned list back into the session.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from stewardbot.models.enums import Condition
from stewardbot.schemas.messages import Attachment
from stewardbot.schemas.session import PendingMediaUpload


def buffer_attachments(
    buffer: list[PendingMediaUpload],
    attachments: Iterable[Attachment],
    *,
    task_ref: str | None = None,
    location_ref: str | None = None,
    job_ref: str | None = None,
    condition: Condition | None = None,
) -> list[PendingMediaUpload]:
    """Return ``buffer`` with one new entry appended per attachment.

    The same storage key sent twice produces two entries; deduplication
    happens when the buffer is flushed to the durable store.
    """
    now = datetime.now(timezone.utc)
    added = [
        PendingMediaUpload(
            url=att.url,
            storage_key=att.storage_key,
            media_type=att.media_type,
            caption=att.caption,
            task_ref=task_ref,
            location_ref=location_ref,
            job_ref=job_ref,
            condition=condition,
            uploaded_at=now,
        )
        for att in attachments
    ]
    return [*buffer, *added]


def for_task(buffer: list[PendingMediaUpload], task_id: str) -> list[PendingMediaUpload]:
    return [m for m in buffer if m.task_ref == task_id]


def for_location(buffer: list[PendingMediaUpload], location_id: str) -> list[PendingMediaUpload]:
    return [m for m in buffer if m.location_ref == location_id]


def for_job(buffer: list[PendingMediaUpload], job_id: str) -> list[PendingMediaUpload]:
    """Entries captured for ``job_id``. Untagged entries count as belonging to any job."""
    return [m for m in buffer if m.job_ref in (None, job_id)]


def task_bound(buffer: list[PendingMediaUpload]) -> list[PendingMediaUpload]:
    return [m for m in buffer if m.task_ref is not None]


def unique_by_storage_key(uploads: Iterable[PendingMediaUpload]) -> list[PendingMediaUpload]:
    """First occurrence of each storage key, in buffer order."""
    seen: set[str] = set()
    unique: list[PendingMediaUpload] = []
    for upload in uploads:
        if upload.storage_key in seen:
            continue
        seen.add(upload.storage_key)
        unique.append(upload)
    return unique


def without(buffer: list[PendingMediaUpload], removed: Iterable[PendingMediaUpload]) -> list[PendingMediaUpload]:
    """``buffer`` minus the given entries (matched by buffer entry id)."""
    ids = {m.id for m in removed}
    return [m for m in buffer if m.id not in ids]
