"""Conversation orchestrator.

One call per inbound message: load the session, drop duplicate deliveries,
classify the input, route it, run the handler and remember the reply. The
handlers write their own partial updates through the SessionMerger.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from stewardbot.config import InspectionSettings
from stewardbot.conversation import replies
from stewardbot.conversation.identify import IdentifyController
from stewardbot.conversation.jobs import JobController
from stewardbot.conversation.locations import LocationController
from stewardbot.conversation.router import InputEvent, Route, classify, current_stage, route
from stewardbot.conversation.states import RECOVER, TASK_STAGES, InputKind, SessionStateError, Stage
from stewardbot.conversation.tasks import TaskController
from stewardbot.events.bus import emit
from stewardbot.persistence.adapter import PersistenceAdapter
from stewardbot.schemas.events import EventType, SystemEvent
from stewardbot.schemas.messages import InboundMessage, Reply
from stewardbot.schemas.session import ChatSession
from stewardbot.session.merger import SessionMerger

logger = logging.getLogger(__name__)

Handler = Callable[[ChatSession, InputEvent], Awaitable[str]]


class ConversationEngine:
    """Turns inbound messages into replies for every conversation identity."""

    def __init__(
        self,
        merger: SessionMerger,
        persistence: PersistenceAdapter,
        settings: InspectionSettings,
    ) -> None:
        self._merger = merger
        self.locations = LocationController(persistence, merger, settings)
        self.jobs = JobController(persistence, merger, settings, self.locations)
        self.tasks = TaskController(persistence, merger, settings, self.locations)
        self.identify = IdentifyController(persistence, merger, settings, self.jobs)

        self._handlers: dict[str, Handler] = {
            "identify": self.identify.identify,
            "show_jobs": self.jobs.show_menu,
            "select_job": self.jobs.select,
            "confirm_job": self.jobs.confirm,
            "decline_job": self.jobs.decline,
            "select_location": self.locations.select_location,
            "select_sub_location": self.locations.select_sub_location,
            "select_task": self.locations.select_task,
            "go_back": self.locations.go_back,
            "buffer_location_media": self.locations.buffer_media,
            "start_location_remarks": self.locations.start_remarks,
            "save_location_remarks": self.locations.save_remarks,
            "cancel_location_remarks": self.locations.cancel_remarks,
            "finish_job": self.locations.finish_job,
            "set_condition": self.tasks.set_condition,
            "buffer_task_media": self.tasks.buffer_media,
            "skip_media": self.tasks.skip_media,
            "set_remarks": self.tasks.set_remarks,
            "skip_remarks": self.tasks.skip_remarks,
            "confirm_task": self.tasks.confirm,
            "hold_task": self.tasks.hold,
            "set_cause": self.tasks.set_cause,
            "set_resolution": self.tasks.set_resolution,
            "cancel_task": self.tasks.cancel,
            RECOVER: self.recover,
        }

    async def process_message(self, message: InboundMessage) -> Reply:
        """Handle one inbound message and return the reply to send.

        Never raises: unexpected failures are logged and answered with a
        generic message.
        """
        identity = message.conversation_identity
        try:
            session = await self._merger.load(identity)

            if message.message_id and message.message_id in session.recent_message_ids:
                logger.info("Duplicate delivery %s for %s", message.message_id, identity)
                await emit(SystemEvent(
                    event_type=EventType.MESSAGE_DUPLICATE,
                    identity=identity,
                    data={"message_id": message.message_id},
                    source_module="conversation.engine",
                ))
                return Reply(reply_text=session.last_reply or replies.DUPLICATE)

            if session.is_new:
                await emit(SystemEvent(
                    event_type=EventType.SESSION_STARTED,
                    identity=identity,
                    source_module="conversation.engine",
                ))

            event = classify(message)
            target = route(session, event)
            await emit(SystemEvent(
                event_type=EventType.MESSAGE_RECEIVED,
                identity=identity,
                inspector_id=session.inspector.id if session.inspector else None,
                work_order_id=session.job.id,
                data={
                    "kind": event.kind.value,
                    "stage": current_stage(session).value,
                    "handler": target.handler,
                    "attachments": len(event.attachments),
                },
                source_module="conversation.engine",
            ))
            reply_text = await self._dispatch(session, event, target)
        except Exception as exc:
            logger.exception("Error processing message from %s", identity)
            await emit(SystemEvent(
                event_type=EventType.SYSTEM_ERROR,
                identity=identity,
                data={"error": repr(exc)},
                source_module="conversation.engine",
            ))
            reply_text = replies.GENERIC_ERROR

        await self._remember(identity, message.message_id, reply_text)
        await emit(SystemEvent(
            event_type=EventType.MESSAGE_SENT,
            identity=identity,
            data={"length": len(reply_text)},
            source_module="conversation.engine",
        ))
        return Reply(reply_text=reply_text)

    async def _dispatch(self, session: ChatSession, event: InputEvent, target: Route) -> str:
        logger.debug(
            "Routing %s in %s → %s (%s)",
            event.kind.value, current_stage(session).value, target.handler, target.next_stage.value,
        )
        try:
            return await self._handlers[target.handler](session, event)
        except SessionStateError as exc:
            logger.warning("Session for %s out of step in %s: %s", session.identity, current_stage(session).value, exc)
            if session.inspector is None:
                return await self.identify.identify(session, event)
            return await self.jobs.show_menu(session, notice=replies.LOST_PLACE)

    async def _remember(self, identity: str, message_id: str | None, reply_text: str) -> None:
        """Record the message id and reply so a redelivery gets the same answer."""
        try:
            latest = await self._merger.load(identity)
            partial: dict[str, object] = {"last_reply": reply_text}
            if message_id:
                partial["recent_message_ids"] = [*latest.recent_message_ids, message_id]
            await self._merger.merge(identity, partial)
        except Exception:
            logger.exception("Could not record reply for %s", identity)

    async def recover(self, session: ChatSession, event: InputEvent) -> str:
        """Answer unexpected input by repeating what the current stage expects."""
        stage = current_stage(session)
        if stage == Stage.UNIDENTIFIED:
            return await self.identify.identify(session, event)

        if event.kind == InputKind.MEDIA and session.location is None:
            prefix = replies.CHOOSE_LOCATION_FIRST
        elif event.kind == InputKind.NUMBER:
            prefix = replies.INVALID_OPTION
        else:
            prefix = replies.NOT_UNDERSTOOD

        if stage == Stage.JOB_MENU:
            if not session.last_jobs_snapshot:
                return await self.jobs.show_menu(session)
            return f"{prefix}\n\n{replies.job_menu(session.last_jobs_snapshot)}"
        if stage == Stage.JOB_CONFIRM:
            return f"{prefix}\n\n{replies.job_confirm(session.job.customer_name or '', session.job.property_address or '')}"
        if stage in TASK_STAGES:
            return f"{prefix}\n\n{self.tasks.prompt_for(session)}"

        options = session.last_options_snapshot
        if stage == Stage.SUB_LOCATION_MENU and session.location is not None:
            return f"{prefix}\n\n{replies.sub_location_menu(session.location.name, options)}"
        if stage == Stage.TASK_MENU and session.location is not None:
            return f"{prefix}\n\n{replies.task_menu(session.location.name, options)}"
        if stage == Stage.LOCATION_REMARKS and session.location is not None:
            return f"{prefix}\n\n{replies.location_remarks_prompt(session.location.name)}"
        return f"{prefix}\n\n{replies.location_menu(options)}"
