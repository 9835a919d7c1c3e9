"""Location walk: locations → sub-locations → tasks, location remarks and job finish.

Every menu stores the options it showed in ``last_options_snapshot`` so the
numbers in the inspector's reply map back to the same rows.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from stewardbot.conversation import replies
from stewardbot.conversation.states import require
from stewardbot.events.bus import emit
from stewardbot.persistence.adapter import (
    CommitError,
    LocationEntryCommit,
    MediaItem,
    PersistenceError,
    bounded_commit,
    entry_commit_key,
)
from stewardbot.schemas.events import EventType, SystemEvent
from stewardbot.schemas.session import (
    ChatSession,
    ConditionDraft,
    Cursor,
    MenuKind,
    MenuOption,
    TaskCursor,
    reset_fields,
)
from stewardbot.session import media_buffer

if TYPE_CHECKING:
    from stewardbot.config import InspectionSettings
    from stewardbot.conversation.router import InputEvent
    from stewardbot.persistence.adapter import PersistenceAdapter
    from stewardbot.schemas.session import PendingMediaUpload
    from stewardbot.session.merger import SessionMerger

logger = logging.getLogger(__name__)


def _done(label: str, is_done: bool) -> str:
    return f"{label} (Done)" if is_done else label


def _remarks_key(session: ChatSession, location: Cursor) -> str:
    return entry_commit_key(
        "remarks",
        session.job.id,
        location.id,
        session.sub_location.id if session.sub_location else None,
        session.inspector.id if session.inspector else None,
    )


def _as_media_items(uploads: list[PendingMediaUpload]) -> list[MediaItem]:
    return [
        MediaItem(url=m.url, storage_key=m.storage_key, media_type=m.media_type, caption=m.caption)
        for m in media_buffer.unique_by_storage_key(uploads)
    ]


class LocationController:
    """Menus of the checklist tree plus location-level evidence."""

    def __init__(
        self,
        persistence: PersistenceAdapter,
        merger: SessionMerger,
        settings: InspectionSettings,
    ) -> None:
        self._persistence = persistence
        self._merger = merger
        self._timeout = settings.inspection_commit_timeout_seconds
        self._attempts = settings.inspection_commit_attempts

    # ── Menus ────────────────────────────────────────────────────────

    async def show_locations(self, session: ChatSession, event: InputEvent | None = None, notice: str | None = None) -> str:
        locations = await self._persistence.list_locations(require(session.job.id, "job"))
        snapshot = [
            MenuOption(id=loc.id, number=index, label=_done(loc.name, loc.is_done))
            for index, loc in enumerate(locations, start=1)
        ]
        await self._merger.merge(
            session.identity,
            {
                "location": None,
                "sub_location": None,
                "last_options_snapshot": snapshot,
                "last_menu": MenuKind.LOCATIONS,
            },
        )
        body = replies.location_menu(snapshot)
        return f"{notice}\n\n{body}" if notice else body

    async def select_location(self, session: ChatSession, event: InputEvent) -> str:
        option = self._option(session, event.number)
        if option is None:
            return await self.show_locations(session, notice=replies.INVALID_OPTION)

        name = option.label.removesuffix(" (Done)")
        session = await self._merger.merge(
            session.identity,
            {"location": Cursor(id=option.id, name=name), "sub_location": None},
        )
        return await self._show_sub_locations_or_tasks(session)

    async def select_sub_location(self, session: ChatSession, event: InputEvent) -> str:
        option = self._option(session, event.number)
        if option is None:
            return await self._show_sub_locations_or_tasks(session, notice=replies.INVALID_OPTION)

        session = await self._merger.merge(
            session.identity,
            {"sub_location": Cursor(id=option.id, name=option.label.removesuffix(" (Done)"))},
        )
        return await self.show_tasks(session)

    async def show_tasks(self, session: ChatSession, event: InputEvent | None = None, notice: str | None = None) -> str:
        location = require(session.location, "location")
        sub_location = session.sub_location
        tasks = await self._persistence.list_tasks(location.id, sub_location.id if sub_location else None)
        snapshot = [
            MenuOption(id=task.id, number=index, label=_done(task.name, task.is_done))
            for index, task in enumerate(tasks, start=1)
        ]
        await self._merger.merge(
            session.identity,
            {"last_options_snapshot": snapshot, "last_menu": MenuKind.TASKS},
        )
        title = f"{location.name} / {sub_location.name}" if sub_location else location.name
        body = replies.task_menu(title, snapshot)
        if not snapshot:
            body = f"{replies.no_tasks(title)}\n\n{body}"
        return f"{notice}\n\n{body}" if notice else body

    async def go_back(self, session: ChatSession, event: InputEvent) -> str:
        """One level up: tasks → sub-locations (if any) → locations."""
        if session.last_menu == MenuKind.TASKS and session.sub_location is not None:
            session = await self._merger.merge(session.identity, {"sub_location": None})
            return await self._show_sub_locations_or_tasks(session)
        return await self.show_locations(session)

    async def _show_sub_locations_or_tasks(self, session: ChatSession, notice: str | None = None) -> str:
        location = require(session.location, "location")
        subs = await self._persistence.list_sub_locations(location.id)
        if not subs:
            return await self.show_tasks(session, notice=notice)

        snapshot = [
            MenuOption(id=sub.id, number=index, label=_done(sub.name, sub.is_done))
            for index, sub in enumerate(subs, start=1)
        ]
        await self._merger.merge(
            session.identity,
            {"last_options_snapshot": snapshot, "last_menu": MenuKind.SUB_LOCATIONS},
        )
        body = replies.sub_location_menu(location.name, snapshot)
        return f"{notice}\n\n{body}" if notice else body

    def _option(self, session: ChatSession, number: int | None) -> MenuOption | None:
        return next((o for o in session.last_options_snapshot if o.number == number), None)

    # ── Tasks ────────────────────────────────────────────────────────

    async def select_task(self, session: ChatSession, event: InputEvent) -> str:
        """Open a task and ask for its condition.

        The commit key is derived from job, task and inspector, so redoing a
        task already marked done updates its entry instead of adding one.
        """
        location = require(session.location, "location")
        inspector = require(session.inspector, "inspector")
        job_id = require(session.job.id, "job")
        option = self._option(session, event.number)
        if option is None:
            return await self.show_tasks(session, notice=replies.INVALID_OPTION)

        name = option.label.removesuffix(" (Done)")
        await self._merger.merge(
            session.identity,
            {
                "task": TaskCursor(
                    id=option.id,
                    name=name,
                    item_id=location.id,
                    location_id=session.sub_location.id if session.sub_location else None,
                    commit_key=entry_commit_key("task", job_id, option.id, inspector.id),
                ),
                "task_draft": ConditionDraft(),
                "last_menu": MenuKind.TASK,
            },
        )
        return replies.condition_prompt(name)

    # ── Location evidence ────────────────────────────────────────────

    async def buffer_media(self, session: ChatSession, event: InputEvent) -> str:
        location = require(session.location, "location")
        buffer = media_buffer.buffer_attachments(
            session.pending_media_uploads,
            event.attachments,
            location_ref=location.id,
            job_ref=session.job.id,
        )
        await self._merger.merge(session.identity, {"pending_media_uploads": buffer})
        await emit(SystemEvent(
            event_type=EventType.MEDIA_BUFFERED,
            identity=session.identity,
            work_order_id=session.job.id,
            data={"location_id": location.id, "count": len(event.attachments)},
            source_module="conversation.locations",
        ))
        return replies.location_media_buffered(location.name, len(event.attachments))

    async def start_remarks(self, session: ChatSession, event: InputEvent) -> str:
        location = require(session.location, "location")
        if location.commit_key is None:
            location = location.model_copy(update={"commit_key": _remarks_key(session, location)})
        await self._merger.merge(
            session.identity,
            {"location": location, "last_menu": MenuKind.LOCATION_REMARKS},
        )
        return replies.location_remarks_prompt(location.name)

    async def cancel_remarks(self, session: ChatSession, event: InputEvent) -> str:
        return await self.show_tasks(session)

    async def save_remarks(self, session: ChatSession, event: InputEvent) -> str:
        """Commit location remarks with the evidence buffered for this location.

        Later remarks for the same location update the same entry.
        """
        location = require(session.location, "location")
        inspector = require(session.inspector, "inspector")
        job_id = require(session.job.id, "job")
        commit_key = location.commit_key or _remarks_key(session, location)
        uploads = media_buffer.for_location(session.pending_media_uploads, location.id)
        media = _as_media_items(uploads)
        commit = LocationEntryCommit(
            commit_key=commit_key,
            inspector_id=inspector.id,
            job_id=job_id,
            item_id=location.id,
            location_id=session.sub_location.id if session.sub_location else None,
            remarks=event.text,
            media=media,
        )

        try:
            receipt = await bounded_commit(
                lambda: self._persistence.commit_location_entry(commit),
                timeout=self._timeout,
                attempts=self._attempts,
            )
        except CommitError:
            logger.exception("Location remarks commit failed for %s", location.id)
            await self._merger.merge(
                session.identity, {"location": location.model_copy(update={"commit_key": commit_key})}
            )
            return replies.commit_failed_location()

        session = await self._merger.merge(
            session.identity,
            {
                "pending_media_uploads": media_buffer.without(session.pending_media_uploads, uploads),
                "location": location.model_copy(update={"commit_key": None}),
            },
        )
        await emit(SystemEvent(
            event_type=EventType.LOCATION_COMMITTED,
            identity=session.identity,
            inspector_id=session.inspector.id if session.inspector else None,
            work_order_id=session.job.id,
            data={"item_id": location.id, "entry_id": receipt.entry_id, "media": receipt.media_attached},
            source_module="conversation.locations",
        ))
        return await self.show_tasks(session, notice=replies.location_remarks_saved(location.name, len(media)))

    # ── Job finish ───────────────────────────────────────────────────

    async def finish_job(self, session: ChatSession, event: InputEvent) -> str:
        """Flush leftover location evidence, complete the job and reset the session.

        Only evidence captured for this job is considered; anything left over
        from another job stays buffered.
        """
        inspector = require(session.inspector, "inspector")
        job_id = require(session.job.id, "job")
        own = media_buffer.for_job(session.pending_media_uploads, job_id)

        waiting = media_buffer.task_bound(own)
        if waiting:
            return replies.job_finish_blocked(len(waiting))

        buffer = list(session.pending_media_uploads)
        for location_id in dict.fromkeys(m.location_ref for m in own if m.location_ref):
            uploads = media_buffer.for_job(media_buffer.for_location(buffer, location_id), job_id)
            media = _as_media_items(uploads)
            # Same evidence → same key, so a retried finish cannot duplicate it.
            commit = LocationEntryCommit(
                commit_key=entry_commit_key(job_id, location_id, *sorted(m.storage_key for m in media)),
                inspector_id=inspector.id,
                job_id=job_id,
                item_id=location_id,
                media=media,
            )
            try:
                await bounded_commit(
                    lambda c=commit: self._persistence.commit_location_entry(c),
                    timeout=self._timeout,
                    attempts=self._attempts,
                )
            except CommitError:
                logger.exception("Flushing location media failed for %s", location_id)
                await self._merger.merge(session.identity, {"pending_media_uploads": buffer})
                return replies.job_finish_failed()
            buffer = media_buffer.without(buffer, uploads)

        try:
            await self._persistence.complete_job(job_id)
        except PersistenceError:
            logger.exception("Completing job %s failed", job_id)
            await self._merger.merge(session.identity, {"pending_media_uploads": buffer})
            return replies.job_finish_failed()

        await self._merger.merge(session.identity, {**reset_fields(), "pending_media_uploads": buffer})
        await emit(SystemEvent(
            event_type=EventType.JOB_COMPLETED,
            identity=session.identity,
            inspector_id=inspector.id,
            work_order_id=job_id,
            source_module="conversation.locations",
        ))
        return replies.job_completed(session.job.property_address)
