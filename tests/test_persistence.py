"""Tests for the persistence adapter helpers and bounded commits."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.schema import CreateIndex, CreateTable

from stewardbot.models import ItemEntry, WorkOrder
from stewardbot.models.enums import Condition, WorkOrderStatus
from stewardbot.persistence.adapter import (
    CommitError,
    CommitReceipt,
    PersistenceError,
    TaskEntryCommit,
    bounded_commit,
    entry_commit_key,
)
from stewardbot.persistence.sql import SqlPersistenceAdapter, _job_record, _phone_variants, _uuid


# ── bounded_commit ───────────────────────────────────────────────────


class TestBoundedCommit:
    @pytest.mark.asyncio()
    async def test_first_attempt_succeeds(self):
        op = AsyncMock(return_value=CommitReceipt(entry_id="e1"))
        receipt = await bounded_commit(op, timeout=1.0, attempts=3)
        assert receipt.entry_id == "e1"
        assert op.await_count == 1

    @pytest.mark.asyncio()
    async def test_retries_after_failure(self):
        op = AsyncMock(side_effect=[PersistenceError("down"), CommitReceipt(entry_id="e1", replayed=True)])
        receipt = await bounded_commit(op, timeout=1.0, attempts=2)
        assert receipt.replayed
        assert op.await_count == 2

    @pytest.mark.asyncio()
    async def test_gives_up_after_attempts(self):
        op = AsyncMock(side_effect=PersistenceError("down"))
        with pytest.raises(CommitError):
            await bounded_commit(op, timeout=1.0, attempts=3)
        assert op.await_count == 3

    @pytest.mark.asyncio()
    async def test_timeout_counts_as_failure(self):
        async def slow() -> CommitReceipt:
            await asyncio.sleep(1)
            return CommitReceipt(entry_id="late")

        with pytest.raises(CommitError):
            await bounded_commit(slow, timeout=0.01, attempts=1)

    @pytest.mark.asyncio()
    async def test_unexpected_errors_propagate(self):
        op = AsyncMock(side_effect=RuntimeError("bug"))
        with pytest.raises(RuntimeError):
            await bounded_commit(op, timeout=1.0, attempts=3)
        assert op.await_count == 1


# ── SQL helpers ──────────────────────────────────────────────────────


class TestHelpers:
    def test_entry_commit_key_is_stable(self):
        key = entry_commit_key("task", "job-1", "task-sink", "insp-1")
        assert key == entry_commit_key("task", "job-1", "task-sink", "insp-1")
        assert key != entry_commit_key("task", "job-1", "task-sink", "insp-2")
        assert len(key) == 32

    def test_entry_commit_key_treats_missing_parts_as_empty(self):
        assert entry_commit_key("remarks", "job-1", "item-1", None) == entry_commit_key("remarks", "job-1", "item-1", "")

    def test_uuid(self):
        value = uuid.uuid4()
        assert _uuid(str(value)) == value

    def test_malformed_uuid(self):
        with pytest.raises(PersistenceError):
            _uuid("job-1")

    def test_phone_variants(self):
        assert _phone_variants("+65 9123 4567") == ["+6591234567", "6591234567"]

    def test_job_record(self):
        job = MagicMock()
        job.id = uuid.uuid4()
        job.customer_name = "Mr Lim"
        job.property_address = "10 Orchard Rd"
        job.postal_code = "238801"
        job.scheduled_start = datetime(2026, 10, 17, 1, 0, tzinfo=timezone.utc)
        job.status = "STARTED"

        record = _job_record(job)
        assert record.id == str(job.id)
        assert record.status == WorkOrderStatus.STARTED


# ── SqlPersistenceAdapter error mapping ──────────────────────────────


def _factory(db: AsyncMock) -> MagicMock:
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=db)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory


def _commit() -> TaskEntryCommit:
    return TaskEntryCommit(
        commit_key=uuid.uuid4().hex,
        inspector_id=str(uuid.uuid4()),
        job_id=str(uuid.uuid4()),
        item_id=str(uuid.uuid4()),
        task_id=str(uuid.uuid4()),
        condition=Condition.GOOD,
    )


class TestSqlAdapter:
    @pytest.mark.asyncio()
    async def test_read_failure_becomes_persistence_error(self):
        db = AsyncMock()
        db.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("gone")))
        adapter = SqlPersistenceAdapter(_factory(db))

        with pytest.raises(PersistenceError):
            await adapter.find_inspector_by_phone("+6591234567")

    @pytest.mark.asyncio()
    async def test_get_job_missing(self):
        db = AsyncMock()
        db.get = AsyncMock(return_value=None)
        adapter = SqlPersistenceAdapter(_factory(db))

        assert await adapter.get_job(str(uuid.uuid4())) is None

    @pytest.mark.asyncio()
    async def test_commit_failure_becomes_commit_error(self):
        db = AsyncMock()
        db.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("gone")))
        adapter = SqlPersistenceAdapter(_factory(db))

        with pytest.raises(CommitError):
            await adapter.commit_task_entry(_commit())

    @pytest.mark.asyncio()
    async def test_commit_key_race_is_replayed_once(self):
        adapter = SqlPersistenceAdapter(MagicMock())
        receipt = CommitReceipt(entry_id="e1", replayed=True)
        adapter._commit_task_entry = AsyncMock(
            side_effect=[IntegrityError("INSERT", {}, Exception("duplicate key")), receipt]
        )

        assert await adapter.commit_task_entry(_commit()) == receipt
        assert adapter._commit_task_entry.await_count == 2


# ── Schema names ─────────────────────────────────────────────────────


class TestSchemaNames:
    """The ORM metadata names constraints the same way the migration does."""

    def test_commit_key_unique_constraint(self):
        ddl = str(CreateTable(ItemEntry.__table__).compile(dialect=postgresql.dialect()))
        assert "CONSTRAINT uq_item_entries_commit_key UNIQUE (commit_key)" in ddl

    def test_column_indexes(self):
        names = {
            str(CreateIndex(index).compile(dialect=postgresql.dialect())).split()[2]
            for index in WorkOrder.__table__.indexes
        }
        assert {"ix_work_orders_status", "ix_work_orders_scheduled_start", "ix_work_orders_inspector_id"} <= names
