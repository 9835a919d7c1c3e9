"""Tests for SessionMerger partial updates."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from stewardbot.models.enums import Condition, MediaType
from stewardbot.schemas.session import (
    ChatSession,
    CauseDraft,
    InspectorRef,
    JobRef,
    JobStatus,
    MenuKind,
    PendingMediaUpload,
)

IDENTITY = "6591234567"


class TestMerge:
    @pytest.mark.asyncio()
    async def test_unrelated_fields_are_preserved(self, merger):
        await merger.merge(IDENTITY, {"inspector": InspectorRef(id="insp-1", name="Jane Tan")})
        await merger.merge(IDENTITY, {"job": JobRef(id="job-1", status=JobStatus.CONFIRMING)})

        session = await merger.load(IDENTITY)
        assert session.inspector.id == "insp-1"
        assert session.job.id == "job-1"
        assert session.job.status == JobStatus.CONFIRMING

    @pytest.mark.asyncio()
    async def test_none_clears_a_field(self, merger):
        await merger.merge(IDENTITY, {"last_menu": MenuKind.TASKS})
        merged = await merger.merge(IDENTITY, {"last_menu": None})
        assert merged.last_menu is None

    @pytest.mark.asyncio()
    async def test_timestamps(self, merger):
        first = await merger.merge(IDENTITY, {"last_menu": MenuKind.JOBS})
        second = await merger.merge(IDENTITY, {"last_menu": MenuKind.LOCATIONS})

        assert first.created_at is not None
        assert second.created_at == first.created_at
        assert second.last_updated_at >= first.last_updated_at

    @pytest.mark.asyncio()
    async def test_every_write_refreshes_ttl(self, merger, store, redis):
        await merger.merge(IDENTITY, {"last_menu": MenuKind.JOBS})
        redis.ttls[store.key_for(IDENTITY)] = 5
        await merger.merge(IDENTITY, {"last_menu": MenuKind.LOCATIONS})
        assert redis.ttls[store.key_for(IDENTITY)] == 600

    @pytest.mark.asyncio()
    async def test_unknown_field_rejected(self, merger):
        with pytest.raises(ValueError, match="Unknown session fields"):
            await merger.merge(IDENTITY, {"favourite_colour": "blue"})

    @pytest.mark.asyncio()
    async def test_identity_cannot_change(self, merger):
        with pytest.raises(ValueError):
            await merger.merge(IDENTITY, {"identity": "6500000000"})

    @pytest.mark.asyncio()
    async def test_invalid_value_rejected(self, merger):
        with pytest.raises(ValueError):
            await merger.merge(IDENTITY, {"task_draft": {"stage": "cause", "condition": "GOOD"}})

    @pytest.mark.asyncio()
    async def test_message_history_is_bounded(self, merger):
        merged = await merger.merge(IDENTITY, {"recent_message_ids": [f"m{i}" for i in range(8)]})
        assert merged.recent_message_ids == ["m3", "m4", "m5", "m6", "m7"]

    @pytest.mark.asyncio()
    async def test_write_failure_returns_merged_state(self, merger, redis):
        redis.fail_writes = True
        merged = await merger.merge(IDENTITY, {"task_draft": CauseDraft(remarks="leak")})
        assert merged.task_draft.condition == Condition.UNSATISFACTORY
        assert merged.pending_remarks == "leak"


class TestReset:
    @pytest.mark.asyncio()
    async def test_reset_keeps_inspector(self, merger):
        await merger.merge(
            IDENTITY,
            {
                "inspector": InspectorRef(id="insp-1", name="Jane Tan"),
                "job": JobRef(id="job-1", status=JobStatus.STARTED),
                "last_menu": MenuKind.TASKS,
            },
        )
        session = await merger.reset(IDENTITY)
        assert session.inspector.id == "insp-1"
        assert session.job.status == JobStatus.NONE
        assert session.job.id is None
        assert session.last_menu is None

    @pytest.mark.asyncio()
    async def test_reset_keeps_buffered_media(self, merger):
        upload = PendingMediaUpload(
            url="https://cdn.example.com/a.jpg",
            storage_key="a.jpg",
            media_type=MediaType.PHOTO,
            task_ref="task-sink",
            job_ref="job-1",
            uploaded_at=datetime.now(timezone.utc),
        )
        await merger.merge(
            IDENTITY,
            {
                "inspector": InspectorRef(id="insp-1", name="Jane Tan"),
                "job": JobRef(id="job-1", status=JobStatus.STARTED),
                "pending_media_uploads": [upload],
            },
        )
        session = await merger.reset(IDENTITY)
        assert session.job.status == JobStatus.NONE
        assert [m.storage_key for m in session.pending_media_uploads] == ["a.jpg"]

    @pytest.mark.asyncio()
    async def test_full_reset_deletes_document(self, merger, store, redis):
        await merger.merge(IDENTITY, {"inspector": InspectorRef(id="insp-1", name="Jane Tan")})
        session = await merger.reset(IDENTITY, keep_identity=False)

        assert session == ChatSession(identity=IDENTITY)
        assert store.key_for(IDENTITY) not in redis.data
