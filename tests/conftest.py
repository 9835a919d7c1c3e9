"""Shared fakes for the conversation tests.

FakeRedis covers the handful of commands the session store and rate limiter
use. FakePersistence is an in-memory inspection store honouring commit-key
idempotency, with switches to make reads or commits fail.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from stewardbot.config import InspectionSettings, SessionSettings
from stewardbot.conversation.engine import ConversationEngine
from stewardbot.models.enums import MediaType, WorkOrderStatus
from stewardbot.persistence.adapter import (
    CommitError,
    CommitReceipt,
    DateWindow,
    InspectorRecord,
    JobRecord,
    LocationEntryCommit,
    LocationRecord,
    SubLocationRecord,
    TaskEntryCommit,
    TaskRecord,
)
from stewardbot.schemas.messages import Attachment, InboundMessage
from stewardbot.session.merger import SessionMerger
from stewardbot.session.store import RedisSessionStore

PHONE = "6591234567"


# ── Redis ────────────────────────────────────────────────────────────


class FakeRedis:
    """Dict-backed stand-in for redis.asyncio.Redis (decode_responses=True)."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail_reads = False
        self.fail_writes = False

    def _down(self, failing: bool) -> None:
        if failing:
            raise RedisConnectionError("Connection refused")

    async def get(self, key: str) -> str | None:
        self._down(self.fail_reads)
        return self.data.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._down(self.fail_writes)
        self.data[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        self._down(self.fail_writes)
        removed = 0
        for key in keys:
            removed += int(self.data.pop(key, None) is not None)
            self.ttls.pop(key, None)
        return removed

    async def incr(self, key: str) -> int:
        self._down(self.fail_writes)
        value = int(self.data.get(key, 0)) + 1
        self.data[key] = str(value)
        return value

    async def expire(self, key: str, seconds: int) -> bool:
        self._down(self.fail_writes)
        self.ttls[key] = seconds
        return True

    async def ttl(self, key: str) -> int:
        self._down(self.fail_reads)
        return self.ttls.get(key, -1)

    def expire_now(self, key: str) -> None:
        """Simulate the idle TTL running out."""
        self.data.pop(key, None)
        self.ttls.pop(key, None)


# ── Durable store ────────────────────────────────────────────────────


class FakePersistence:
    """In-memory inspection store.

    Layout (ids are readable strings):
        inspector insp-1 "Jane Tan" +6591234567
        job-1 (09:00) and job-2 (14:00) today
        job-1 → item-kitchen (tasks: task-sink, task-cabinet)
              → item-bedroom (sub-locations: sub-window, sub-door)
    """

    def __init__(self) -> None:
        today = datetime.now(timezone.utc).replace(hour=1, minute=0, second=0, microsecond=0)
        self.inspectors = {"insp-1": InspectorRecord(id="insp-1", name="Jane Tan", phone="+6591234567")}
        self.jobs = {
            "job-1": JobRecord(
                id="job-1",
                customer_name="Mr Lim",
                property_address="10 Orchard Rd",
                scheduled_start=today,
                status=WorkOrderStatus.SCHEDULED,
            ),
            "job-2": JobRecord(
                id="job-2",
                customer_name="Ms Ong",
                property_address="5 Bukit Timah",
                scheduled_start=today + timedelta(hours=5),
                status=WorkOrderStatus.SCHEDULED,
            ),
        }
        self.locations = {
            "job-1": [
                LocationRecord(id="item-kitchen", name="Kitchen"),
                LocationRecord(id="item-bedroom", name="Bedroom"),
            ],
            "job-2": [],
        }
        self.sub_locations = {
            "item-kitchen": [],
            "item-bedroom": [
                SubLocationRecord(id="sub-window", name="Window"),
                SubLocationRecord(id="sub-door", name="Door"),
            ],
        }
        self.tasks = {
            ("item-kitchen", None): [
                TaskRecord(id="task-sink", name="Sink", item_id="item-kitchen"),
                TaskRecord(id="task-cabinet", name="Cabinet", item_id="item-kitchen"),
            ],
            ("item-bedroom", "sub-window"): [
                TaskRecord(id="task-glass", name="Glass", item_id="item-bedroom", location_id="sub-window"),
            ],
            ("item-bedroom", "sub-door"): [],
        }

        # entry_id → dict of committed fields; media keyed by storage key
        self.entries: dict[str, dict] = {}
        self._entry_by_key: dict[str, str] = {}
        self.commit_calls = 0
        self.commit_failures = 0
        self.completed_jobs: list[str] = []

    # ── reads ──

    async def find_inspector_by_phone(self, phone: str) -> InspectorRecord | None:
        return next((i for i in self.inspectors.values() if i.phone == phone), None)

    async def find_inspector(self, name: str, phone: str) -> InspectorRecord | None:
        return next(
            (i for i in self.inspectors.values() if i.phone == phone and i.name.lower() == name.lower()),
            None,
        )

    async def find_active_jobs(self, inspector_id: str, window: DateWindow) -> list[JobRecord]:
        active = (WorkOrderStatus.SCHEDULED, WorkOrderStatus.STARTED)
        return sorted(
            (j for j in self.jobs.values() if j.status in active),
            key=lambda j: j.scheduled_start,
        )

    async def get_job(self, job_id: str) -> JobRecord | None:
        return self.jobs.get(job_id)

    async def find_started_jobs(self, inspector_id: str) -> list[JobRecord]:
        return [j for j in self.jobs.values() if j.status == WorkOrderStatus.STARTED]

    async def start_job(self, job_id: str) -> None:
        self.jobs[job_id] = self.jobs[job_id].model_copy(update={"status": WorkOrderStatus.STARTED})

    async def complete_job(self, job_id: str) -> None:
        self.jobs[job_id] = self.jobs[job_id].model_copy(update={"status": WorkOrderStatus.COMPLETED})
        self.completed_jobs.append(job_id)

    async def list_locations(self, job_id: str) -> list[LocationRecord]:
        return list(self.locations.get(job_id, []))

    async def list_sub_locations(self, item_id: str) -> list[SubLocationRecord]:
        return list(self.sub_locations.get(item_id, []))

    async def list_tasks(self, item_id: str, location_id: str | None = None) -> list[TaskRecord]:
        return list(self.tasks.get((item_id, location_id), []))

    # ── commits ──

    def _upsert(self, commit_key: str, fields: dict, media: list) -> CommitReceipt:
        self.commit_calls += 1
        if self.commit_failures:
            self.commit_failures -= 1
            raise CommitError("database unavailable")

        replayed = commit_key in self._entry_by_key
        entry_id = self._entry_by_key.setdefault(commit_key, f"entry-{uuid.uuid4().hex[:8]}")
        entry = self.entries.setdefault(entry_id, {"media": {}})
        entry.update(fields)
        added = 0
        for item in media:
            if item.storage_key not in entry["media"]:
                entry["media"][item.storage_key] = item
                added += 1
        return CommitReceipt(entry_id=entry_id, replayed=replayed, media_attached=added)

    async def commit_task_entry(self, commit: TaskEntryCommit) -> CommitReceipt:
        receipt = self._upsert(commit.commit_key, commit.model_dump(exclude={"media"}), commit.media)
        for key, tasks in self.tasks.items():
            self.tasks[key] = [
                t.model_copy(update={"is_done": True}) if t.id == commit.task_id else t for t in tasks
            ]
        return receipt

    async def commit_location_entry(self, commit: LocationEntryCommit) -> CommitReceipt:
        return self._upsert(commit.commit_key, commit.model_dump(exclude={"media"}), commit.media)

    def entries_for_task(self, task_id: str) -> list[dict]:
        return [e for e in self.entries.values() if e.get("task_id") == task_id]


# ── Helpers ──────────────────────────────────────────────────────────


def text(body: str, message_id: str | None = None, identity: str = PHONE) -> InboundMessage:
    return InboundMessage(conversation_identity=identity, raw_text=body, message_id=message_id)


def photo(storage_key: str = "inspections/6591234567/2026/10/a.jpg", identity: str = PHONE) -> InboundMessage:
    return InboundMessage(
        conversation_identity=identity,
        attachments=[
            Attachment(url=f"https://cdn.example.com/{storage_key}", storage_key=storage_key, media_type=MediaType.PHOTO)
        ],
    )


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _mock_emit():
    """Keep the event bus (and its background worker) out of unit tests."""
    modules = ("engine", "identify", "jobs", "locations", "tasks")
    patchers = [patch(f"stewardbot.conversation.{m}.emit", new_callable=AsyncMock) for m in modules]
    mocks = [p.start() for p in patchers]
    yield mocks
    for p in patchers:
        p.stop()


@pytest.fixture()
def redis():
    return FakeRedis()


@pytest.fixture()
def session_settings():
    return SessionSettings(session_ttl_seconds=600, session_key_prefix="test", session_message_history=5)


@pytest.fixture()
def inspection_settings():
    return InspectionSettings(
        inspection_timezone="Asia/Singapore",
        inspection_commit_timeout_seconds=1.0,
        inspection_commit_attempts=2,
        inspection_require_task_media=True,
    )


@pytest.fixture()
def store(redis):
    return RedisSessionStore(redis, key_prefix="test")


@pytest.fixture()
def merger(store, session_settings):
    return SessionMerger(store, session_settings)


@pytest.fixture()
def persistence():
    return FakePersistence()


@pytest.fixture()
def engine(merger, persistence, inspection_settings):
    return ConversationEngine(merger, persistence, inspection_settings)
