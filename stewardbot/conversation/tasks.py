"""Task flow: condition → media → remarks → confirm → (cause → resolution) → commit.

The draft only ever moves forward. Nothing reaches the durable store until
the inspector confirms; a failed commit keeps the draft and the buffered
media so the retry sends the same data under the same commit key.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar

from stewardbot.conversation import replies
from stewardbot.conversation.states import InputKind, SessionStateError, require
from stewardbot.events.bus import emit
from stewardbot.models.enums import CONDITION_BY_NUMBER, Condition
from stewardbot.persistence.adapter import CommitError, MediaItem, TaskEntryCommit, bounded_commit
from stewardbot.schemas.events import EventType, SystemEvent
from stewardbot.schemas.session import (
    CauseDraft,
    ChatSession,
    ConditionDraft,
    ConfirmDraft,
    MediaDraft,
    RemarksDraft,
    ResolutionDraft,
)
from stewardbot.session import media_buffer

if TYPE_CHECKING:
    from stewardbot.config import InspectionSettings
    from stewardbot.conversation.locations import LocationController
    from stewardbot.conversation.router import InputEvent
    from stewardbot.persistence.adapter import PersistenceAdapter
    from stewardbot.session.merger import SessionMerger

logger = logging.getLogger(__name__)

D = TypeVar("D", MediaDraft, RemarksDraft, ConfirmDraft, CauseDraft, ResolutionDraft)

CONDITION_WORDS: dict[str, Condition] = {
    "good": Condition.GOOD,
    "fair": Condition.FAIR,
    "unsatisfactory": Condition.UNSATISFACTORY,
    "un-satisfactory": Condition.UNSATISFACTORY,
    "un satisfactory": Condition.UNSATISFACTORY,
    "poor": Condition.UNSATISFACTORY,
    "unobservable": Condition.UN_OBSERVABLE,
    "un-observable": Condition.UN_OBSERVABLE,
    "un observable": Condition.UN_OBSERVABLE,
    "not applicable": Condition.NOT_APPLICABLE,
    "n/a": Condition.NOT_APPLICABLE,
    "na": Condition.NOT_APPLICABLE,
}


def parse_condition(event: InputEvent) -> Condition | None:
    if event.number is not None:
        return CONDITION_BY_NUMBER.get(event.number)
    return CONDITION_WORDS.get(" ".join(event.text.lower().split()))


def _draft(session: ChatSession, kind: type[D]) -> D:
    draft = session.task_draft
    if not isinstance(draft, kind):
        raise SessionStateError(f"Expected a {kind.__name__}, found {type(draft).__name__}")
    return draft


class TaskController:
    """Drives one task from condition to a committed entry."""

    def __init__(
        self,
        persistence: PersistenceAdapter,
        merger: SessionMerger,
        settings: InspectionSettings,
        locations: LocationController,
    ) -> None:
        self._persistence = persistence
        self._merger = merger
        self._timeout = settings.inspection_commit_timeout_seconds
        self._attempts = settings.inspection_commit_attempts
        self._require_media = settings.inspection_require_task_media
        self._locations = locations

    def _skip_allowed(self, condition: Condition) -> bool:
        return not self._require_media or condition == Condition.NOT_APPLICABLE

    def prompt_for(self, session: ChatSession) -> str:
        """The question for the current task stage."""
        task = require(session.task, "task")
        draft = session.task_draft
        if isinstance(draft, MediaDraft):
            return replies.media_prompt(draft.condition, self._skip_allowed(draft.condition))
        if isinstance(draft, RemarksDraft):
            return replies.remarks_prompt()
        if isinstance(draft, ConfirmDraft):
            count = len(media_buffer.for_task(session.pending_media_uploads, task.id))
            return replies.confirm_prompt(task.name, draft.condition, draft.remarks, count)
        if isinstance(draft, CauseDraft):
            return replies.cause_prompt()
        if isinstance(draft, ResolutionDraft):
            return replies.resolution_prompt()
        return replies.condition_prompt(task.name)

    # ── Stage handlers ───────────────────────────────────────────────

    async def set_condition(self, session: ChatSession, event: InputEvent) -> str:
        condition = parse_condition(event)
        if condition is None:
            return replies.condition_invalid()
        await self._merger.merge(session.identity, {"task_draft": MediaDraft(condition=condition)})
        return replies.media_prompt(condition, self._skip_allowed(condition))

    async def buffer_media(self, session: ChatSession, event: InputEvent) -> str:
        """Buffer task evidence. Advances only from the media stage."""
        task = require(session.task, "task")
        draft = session.task_draft
        buffer = media_buffer.buffer_attachments(
            session.pending_media_uploads,
            event.attachments,
            task_ref=task.id,
            job_ref=session.job.id,
            condition=getattr(draft, "condition", None),
        )
        partial: dict[str, object] = {"pending_media_uploads": buffer}
        if isinstance(draft, MediaDraft):
            partial["task_draft"] = RemarksDraft(condition=draft.condition)
        session = await self._merger.merge(session.identity, partial)

        await emit(SystemEvent(
            event_type=EventType.MEDIA_BUFFERED,
            identity=session.identity,
            work_order_id=session.job.id,
            data={"task_id": task.id, "count": len(event.attachments)},
            source_module="conversation.tasks",
        ))
        total = len(media_buffer.for_task(buffer, task.id))
        return f"{replies.task_media_buffered(len(event.attachments), total)}\n\n{self.prompt_for(session)}"

    async def skip_media(self, session: ChatSession, event: InputEvent) -> str:
        draft = _draft(session, MediaDraft)
        if not self._skip_allowed(draft.condition):
            return replies.media_required()
        await self._merger.merge(session.identity, {"task_draft": RemarksDraft(condition=draft.condition)})
        return replies.remarks_prompt()

    async def set_remarks(self, session: ChatSession, event: InputEvent) -> str:
        return await self._to_confirm(session, event.text)

    async def skip_remarks(self, session: ChatSession, event: InputEvent) -> str:
        return await self._to_confirm(session, None)

    async def _to_confirm(self, session: ChatSession, remarks: str | None) -> str:
        draft = _draft(session, RemarksDraft)
        session = await self._merger.merge(
            session.identity,
            {"task_draft": ConfirmDraft(condition=draft.condition, remarks=remarks)},
        )
        return self.prompt_for(session)

    async def confirm(self, session: ChatSession, event: InputEvent) -> str:
        """Un-Satisfactory findings go on to cause and resolution; others commit now."""
        draft = _draft(session, ConfirmDraft)
        if draft.condition == Condition.UNSATISFACTORY:
            await self._merger.merge(session.identity, {"task_draft": CauseDraft(remarks=draft.remarks)})
            return replies.cause_prompt()
        return await self._commit(session, draft)

    async def hold(self, session: ChatSession, event: InputEvent) -> str:
        return replies.hold_prompt()

    async def set_cause(self, session: ChatSession, event: InputEvent) -> str:
        draft = _draft(session, CauseDraft)
        await self._merger.merge(
            session.identity,
            {"task_draft": ResolutionDraft(remarks=draft.remarks, cause=event.text)},
        )
        return replies.resolution_prompt()

    async def set_resolution(self, session: ChatSession, event: InputEvent) -> str:
        draft = _draft(session, ResolutionDraft)
        retrying = draft.commit_failed and draft.resolution and event.kind == InputKind.AFFIRMATIVE
        if not retrying:
            draft = draft.model_copy(update={"resolution": event.text})
            session = await self._merger.merge(session.identity, {"task_draft": draft})
        return await self._commit(session, draft)

    async def cancel(self, session: ChatSession, event: InputEvent) -> str:
        """Abandon the task before any finding was recorded."""
        task = require(session.task, "task")
        if not isinstance(session.task_draft, ConditionDraft):
            raise SessionStateError("Only a task without a condition can be cancelled")
        dropped = media_buffer.for_task(session.pending_media_uploads, task.id)
        session = await self._merger.merge(
            session.identity,
            {
                "task": None,
                "task_draft": None,
                "pending_media_uploads": media_buffer.without(session.pending_media_uploads, dropped),
            },
        )
        return await self._locations.show_tasks(session, notice=replies.task_cancelled(task.name))

    # ── Commit ───────────────────────────────────────────────────────

    async def _commit(self, session: ChatSession, draft: ConfirmDraft | ResolutionDraft) -> str:
        task = require(session.task, "task")
        inspector = require(session.inspector, "inspector")
        job_id = require(session.job.id, "job")

        uploads = media_buffer.for_task(session.pending_media_uploads, task.id)
        media = [
            MediaItem(url=m.url, storage_key=m.storage_key, media_type=m.media_type, caption=m.caption)
            for m in media_buffer.unique_by_storage_key(uploads)
        ]
        commit = TaskEntryCommit(
            commit_key=task.commit_key,
            inspector_id=inspector.id,
            job_id=job_id,
            item_id=task.item_id,
            task_id=task.id,
            location_id=task.location_id,
            condition=draft.condition,
            remarks=draft.remarks,
            cause=getattr(draft, "cause", None),
            resolution=getattr(draft, "resolution", None),
            media=media,
        )

        try:
            receipt = await bounded_commit(
                lambda: self._persistence.commit_task_entry(commit),
                timeout=self._timeout,
                attempts=self._attempts,
            )
        except CommitError as exc:
            logger.warning("Task %s not saved, keeping draft for retry: %s", task.id, exc)
            await self._merger.merge(
                session.identity, {"task_draft": draft.model_copy(update={"commit_failed": True})}
            )
            await emit(SystemEvent(
                event_type=EventType.TASK_COMMIT_FAILED,
                identity=session.identity,
                inspector_id=inspector.id,
                work_order_id=job_id,
                data={"task_id": task.id, "commit_key": task.commit_key, "error": str(exc)},
                source_module="conversation.tasks",
            ))
            return replies.commit_failed_task(len(uploads))

        session = await self._merger.merge(
            session.identity,
            {
                "pending_media_uploads": media_buffer.without(session.pending_media_uploads, uploads),
                "task": None,
                "task_draft": None,
            },
        )
        await emit(SystemEvent(
            event_type=EventType.TASK_COMMITTED,
            identity=session.identity,
            inspector_id=session.inspector.id if session.inspector else None,
            work_order_id=session.job.id,
            data={
                "task_id": task.id,
                "entry_id": receipt.entry_id,
                "condition": draft.condition.value,
                "replayed": receipt.replayed,
                "media": len(media),
            },
            source_module="conversation.tasks",
        ))
        return await self._locations.show_tasks(session, notice=replies.task_saved(task.name, len(media)))
