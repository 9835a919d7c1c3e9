"""Job selection and confirmation.

job.status only moves none → confirming → started. Going back to none is an
explicit reset (declining, a scheduling conflict, the 'jobs' command or
completing the job), which also clears cursors and drafts. Buffered media
stays until it has been written to the durable store.
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from stewardbot.conversation import replies
from stewardbot.conversation.states import require
from stewardbot.events.bus import emit
from stewardbot.models.enums import WorkOrderStatus
from stewardbot.persistence.adapter import DateWindow
from stewardbot.schemas.events import EventType, SystemEvent
from stewardbot.schemas.session import ChatSession, JobRef, JobStatus, MenuKind, MenuOption, reset_fields

if TYPE_CHECKING:
    from stewardbot.config import InspectionSettings
    from stewardbot.conversation.locations import LocationController
    from stewardbot.conversation.router import InputEvent
    from stewardbot.persistence.adapter import JobRecord, PersistenceAdapter
    from stewardbot.session.merger import SessionMerger

logger = logging.getLogger(__name__)


def day_window(tz_name: str, now: datetime | None = None) -> DateWindow:
    """Midnight-to-midnight of the current day in ``tz_name``."""
    tz = ZoneInfo(tz_name)
    local_now = (now or datetime.now(tz)).astimezone(tz)
    start = datetime.combine(local_now.date(), time.min, tzinfo=tz)
    return DateWindow(start=start, end=start + timedelta(days=1))


def _job_label(job: JobRecord, tz: ZoneInfo) -> str:
    at = job.scheduled_start.astimezone(tz).strftime("%H:%M")
    started = " (In progress)" if job.status == WorkOrderStatus.STARTED else ""
    return f"{at} {job.customer_name} - {job.property_address}{started}"


class JobController:
    """Shows today's jobs, resolves a selection and starts the job."""

    def __init__(
        self,
        persistence: PersistenceAdapter,
        merger: SessionMerger,
        settings: InspectionSettings,
        locations: LocationController,
    ) -> None:
        self._persistence = persistence
        self._merger = merger
        self._tz_name = settings.inspection_timezone
        self._locations = locations

    async def show_menu(self, session: ChatSession, event: InputEvent | None = None, notice: str | None = None) -> str:
        """List today's jobs and remember the numbering shown."""
        inspector = require(session.inspector, "inspector")
        tz = ZoneInfo(self._tz_name)
        jobs = await self._persistence.find_active_jobs(inspector.id, day_window(self._tz_name))
        snapshot = [
            MenuOption(id=job.id, number=index, label=_job_label(job, tz))
            for index, job in enumerate(jobs, start=1)
        ]

        was_active = session.job.status != JobStatus.NONE
        partial = reset_fields()
        partial.update({"last_jobs_snapshot": snapshot, "last_menu": MenuKind.JOBS})
        await self._merger.merge(session.identity, partial)
        if was_active:
            await emit(SystemEvent(
                event_type=EventType.SESSION_RESET,
                identity=session.identity,
                inspector_id=inspector.id,
                work_order_id=session.job.id,
                data={
                    "from_status": session.job.status.value,
                    "buffered_media": len(session.pending_media_uploads),
                },
                source_module="conversation.jobs",
            ))

        body = replies.job_menu(snapshot) if snapshot else replies.NO_JOBS
        return f"{notice}\n\n{body}" if notice else body

    async def select(self, session: ChatSession, event: InputEvent) -> str:
        """Resolve the number against the last job menu shown, without re-listing."""
        option = next((o for o in session.last_jobs_snapshot if o.number == event.number), None)
        if option is None:
            return f"{replies.INVALID_OPTION}\n\n{replies.job_menu(session.last_jobs_snapshot)}"

        job = await self._persistence.get_job(option.id)
        if job is None:
            return await self.show_menu(session, notice=replies.job_unavailable())

        await self._merger.merge(
            session.identity,
            {
                "job": JobRef(
                    id=job.id,
                    status=JobStatus.CONFIRMING,
                    customer_name=job.customer_name,
                    property_address=job.property_address,
                ),
                "last_menu": MenuKind.JOB_CONFIRM,
            },
        )
        await emit(SystemEvent(
            event_type=EventType.JOB_CONFIRMING,
            identity=session.identity,
            inspector_id=session.inspector.id if session.inspector else None,
            work_order_id=job.id,
            source_module="conversation.jobs",
        ))
        return replies.job_confirm(job.customer_name, job.property_address)

    async def confirm(self, session: ChatSession, event: InputEvent) -> str:
        """Start the selected job unless another job is already in progress."""
        inspector = require(session.inspector, "inspector")
        job_id = require(session.job.id, "job")

        started = await self._persistence.find_started_jobs(inspector.id)
        conflicts = [job for job in started if job.id != job_id]
        if conflicts:
            logger.info("Job %s conflicts with started jobs %s", job_id, [j.id for j in conflicts])
            await emit(SystemEvent(
                event_type=EventType.JOB_CONFLICT,
                identity=session.identity,
                inspector_id=inspector.id,
                work_order_id=job_id,
                data={"started_job_ids": [j.id for j in conflicts]},
                source_module="conversation.jobs",
            ))
            return await self.show_menu(
                session, notice=replies.job_conflict([j.property_address for j in conflicts])
            )

        if any(job.id == job_id for job in started):
            logger.info("Job %s already started, resuming", job_id)
        else:
            await self._persistence.start_job(job_id)

        session = await self._merger.merge(
            session.identity,
            {"job": session.job.model_copy(update={"status": JobStatus.STARTED})},
        )
        await emit(SystemEvent(
            event_type=EventType.JOB_STARTED,
            identity=session.identity,
            inspector_id=session.inspector.id if session.inspector else None,
            work_order_id=job_id,
            source_module="conversation.jobs",
        ))
        return await self._locations.show_locations(
            session, notice=replies.job_started(session.job.property_address or "")
        )

    async def decline(self, session: ChatSession, event: InputEvent) -> str:
        return await self.show_menu(session, notice=replies.job_declined())
