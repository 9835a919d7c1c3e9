"""Tests for input classification and stage routing."""

from __future__ import annotations

import pytest

from stewardbot.conversation.router import InputEvent, classify, current_stage, parse_option_number, route
from stewardbot.conversation.states import RECOVER, STAGE_FOR_TASK_STAGE, TASK_STAGES, InputKind, Stage
from stewardbot.models.enums import Condition, MediaType
from stewardbot.schemas.messages import Attachment, InboundMessage
from stewardbot.schemas.session import (
    CauseDraft,
    ChatSession,
    ConditionDraft,
    ConfirmDraft,
    Cursor,
    InspectorRef,
    JobRef,
    JobStatus,
    MediaDraft,
    MenuKind,
    MenuOption,
    RemarksDraft,
    ResolutionDraft,
    TASK_STAGE_ORDER,
    TaskCursor,
    TaskStage,
)


def _msg(text: str = "", attachments: list[Attachment] | None = None) -> InboundMessage:
    return InboundMessage(conversation_identity="6591234567", raw_text=text, attachments=attachments or [])


def _options(n: int) -> list[MenuOption]:
    return [MenuOption(id=f"opt-{i}", number=i, label=f"Option {i}") for i in range(1, n + 1)]


def _session(**fields) -> ChatSession:
    base = {
        "identity": "6591234567",
        "inspector": InspectorRef(id="insp-1", name="Jane Tan"),
    }
    base.update(fields)
    return ChatSession(**base)


def _started(**fields) -> ChatSession:
    return _session(job=JobRef(id="job-1", status=JobStatus.STARTED), **fields)


# ── parse_option_number ──────────────────────────────────────────────


class TestParseOptionNumber:
    @pytest.mark.parametrize("text,expected", [
        ("3", 3),
        (" 12 ", 12),
        ("[4]", 4),
        ("[ 4 ]", 4),
        ("option 2", 2),
        ("Option 2", 2),
        ("5)", 5),
        ("1.", 1),
    ])
    def test_accepted_forms(self, text, expected):
        assert parse_option_number(text) == expected

    @pytest.mark.parametrize("text", ["", "abc", "123", "3 bedrooms", "1-2 cracks"])
    def test_rejected_forms(self, text):
        assert parse_option_number(text) is None


# ── classify ─────────────────────────────────────────────────────────


class TestClassify:
    def test_attachments_win_over_text(self):
        att = Attachment(url="https://x/a.jpg", storage_key="a.jpg", media_type=MediaType.PHOTO)
        event = classify(_msg("2", [att]))
        assert event.kind == InputKind.MEDIA
        assert event.attachments == (att,)

    def test_empty(self):
        assert classify(_msg("   ")).kind == InputKind.EMPTY

    @pytest.mark.parametrize("text,kind", [
        ("Yes", InputKind.AFFIRMATIVE),
        ("ok!", InputKind.AFFIRMATIVE),
        ("retry", InputKind.AFFIRMATIVE),
        ("No", InputKind.NEGATIVE),
        ("skip", InputKind.SKIP),
        ("Go back", InputKind.BACK),
        ("b", InputKind.BACK),
        ("JOBS", InputKind.JOBS),
        ("my  schedule", InputKind.JOBS),
        ("finish", InputKind.FINISH),
    ])
    def test_keywords(self, text, kind):
        assert classify(_msg(text)).kind == kind

    def test_keywords_only_match_whole_message(self):
        event = classify(_msg("no leaks found, looks ok"))
        assert event.kind == InputKind.TEXT
        assert event.text == "no leaks found, looks ok"

    def test_number(self):
        event = classify(_msg("[2]"))
        assert event.kind == InputKind.NUMBER
        assert event.number == 2


# ── current_stage ────────────────────────────────────────────────────


class TestCurrentStage:
    def test_unidentified(self):
        assert current_stage(ChatSession(identity="1")) == Stage.UNIDENTIFIED

    def test_job_stages(self):
        assert current_stage(_session()) == Stage.JOB_MENU
        assert current_stage(_session(job=JobRef(id="j", status=JobStatus.CONFIRMING))) == Stage.JOB_CONFIRM
        assert current_stage(_started()) == Stage.LOCATION_MENU

    def test_menus(self):
        loc = Cursor(id="item-1", name="Kitchen")
        assert current_stage(_started(location=loc, last_menu=MenuKind.SUB_LOCATIONS)) == Stage.SUB_LOCATION_MENU
        assert current_stage(_started(location=loc, last_menu=MenuKind.TASKS)) == Stage.TASK_MENU
        assert current_stage(_started(location=loc, last_menu=MenuKind.LOCATION_REMARKS)) == Stage.LOCATION_REMARKS

    def test_task_draft_decides(self):
        session = _started(
            task=TaskCursor(id="t", name="Sink", item_id="item-1"),
            task_draft=CauseDraft(),
            last_menu=MenuKind.TASK,
        )
        assert current_stage(session) == Stage.TASK_CAUSE


# ── route ────────────────────────────────────────────────────────────


class TestRoute:
    def test_anything_routes_to_identify_when_unidentified(self):
        session = ChatSession(identity="1")
        for kind in (InputKind.TEXT, InputKind.NUMBER, InputKind.JOBS):
            assert route(session, InputEvent(kind, number=1)).handler == "identify"

    def test_jobs_from_a_menu_resets(self):
        session = _started(location=Cursor(id="item-1", name="Kitchen"), last_menu=MenuKind.TASKS)
        target = route(session, InputEvent(InputKind.JOBS))
        assert target.handler == "show_jobs"
        assert target.next_stage == Stage.JOB_MENU

    @pytest.mark.parametrize("draft,handler", [
        (ConditionDraft(), "set_condition"),
        (RemarksDraft(condition=Condition.GOOD), "set_remarks"),
        (CauseDraft(), "set_cause"),
        (ResolutionDraft(cause="Worn washer"), "set_resolution"),
    ])
    def test_jobs_words_are_text_while_drafting(self, draft, handler):
        session = _started(
            location=Cursor(id="item-1", name="Kitchen"),
            task=TaskCursor(id="t", name="Sink", item_id="item-1"),
            task_draft=draft,
        )
        assert route(session, InputEvent(InputKind.JOBS, text="Schedule")).handler == handler

    def test_jobs_words_are_text_in_location_remarks(self):
        session = _started(location=Cursor(id="item-1", name="Kitchen"), last_menu=MenuKind.LOCATION_REMARKS)
        assert route(session, InputEvent(InputKind.JOBS, text="today")).handler == "save_location_remarks"

    def test_job_number_within_snapshot(self):
        session = _session(last_jobs_snapshot=_options(2))
        assert route(session, InputEvent(InputKind.NUMBER, number=2)).handler == "select_job"
        assert route(session, InputEvent(InputKind.NUMBER, number=3)).handler == RECOVER

    def test_job_number_without_snapshot_relists(self):
        assert route(_session(), InputEvent(InputKind.NUMBER, number=1)).handler == "show_jobs"

    def test_job_confirm_numbers(self):
        session = _session(job=JobRef(id="j", status=JobStatus.CONFIRMING))
        assert route(session, InputEvent(InputKind.NUMBER, number=1)).handler == "confirm_job"
        assert route(session, InputEvent(InputKind.NUMBER, number=2)).handler == "decline_job"
        assert route(session, InputEvent(InputKind.NUMBER, number=3)).handler == RECOVER

    def test_sub_location_go_back_is_n_plus_one(self):
        session = _started(
            location=Cursor(id="item-1", name="Bedroom"),
            last_menu=MenuKind.SUB_LOCATIONS,
            last_options_snapshot=_options(2),
        )
        assert route(session, InputEvent(InputKind.NUMBER, number=2)).handler == "select_sub_location"
        assert route(session, InputEvent(InputKind.NUMBER, number=3)).handler == "go_back"
        assert route(session, InputEvent(InputKind.NUMBER, number=4)).handler == RECOVER

    def test_task_menu_extras(self):
        session = _started(
            location=Cursor(id="item-1", name="Kitchen"),
            last_menu=MenuKind.TASKS,
            last_options_snapshot=_options(2),
        )
        assert route(session, InputEvent(InputKind.NUMBER, number=1)).handler == "select_task"
        assert route(session, InputEvent(InputKind.NUMBER, number=3)).handler == "start_location_remarks"
        back = route(session, InputEvent(InputKind.NUMBER, number=4))
        assert back.handler == "go_back"
        assert back.next_stage == Stage.LOCATION_MENU

    def test_task_menu_back_returns_to_sub_locations(self):
        session = _started(
            location=Cursor(id="item-1", name="Bedroom"),
            sub_location=Cursor(id="sub-1", name="Window"),
            last_menu=MenuKind.TASKS,
        )
        assert route(session, InputEvent(InputKind.BACK)).next_stage == Stage.SUB_LOCATION_MENU

    def test_media_without_location_recovers(self):
        session = _started(last_menu=MenuKind.LOCATIONS)
        assert route(session, InputEvent(InputKind.MEDIA)).handler == RECOVER

    def test_media_with_location_is_buffered_for_location(self):
        session = _started(location=Cursor(id="item-1", name="Kitchen"), last_menu=MenuKind.TASKS)
        assert route(session, InputEvent(InputKind.MEDIA)).handler == "buffer_location_media"

    def test_condition_stage(self):
        session = _started(
            location=Cursor(id="item-1", name="Kitchen"),
            task=TaskCursor(id="t", name="Sink", item_id="item-1"),
            task_draft=ConditionDraft(),
        )
        assert route(session, InputEvent(InputKind.NUMBER, number=3)).handler == "set_condition"
        assert route(session, InputEvent(InputKind.BACK)).handler == "cancel_task"
        assert route(session, InputEvent(InputKind.SKIP)).handler == RECOVER

    def test_confirm_stage_numbers(self):
        session = _started(
            task=TaskCursor(id="t", name="Sink", item_id="item-1"),
            task_draft=ConfirmDraft(condition=Condition.GOOD),
        )
        assert route(session, InputEvent(InputKind.NUMBER, number=1)).handler == "confirm_task"
        assert route(session, InputEvent(InputKind.NUMBER, number=2)).handler == "hold_task"

    def test_task_stages_never_route_backwards(self):
        """From a later task stage no input leads to an earlier task stage handler."""
        earlier = {"set_condition", "skip_media", "set_remarks", "skip_remarks"}
        session = _started(
            task=TaskCursor(id="t", name="Sink", item_id="item-1"),
            task_draft=CauseDraft(),
        )
        for kind in InputKind:
            assert route(session, InputEvent(kind, text="x", number=1)).handler not in earlier


_TASK_STAGE_BY_STAGE = {stage: task_stage for task_stage, stage in STAGE_FOR_TASK_STAGE.items()}

_DRAFTS = [
    ConditionDraft(),
    MediaDraft(condition=Condition.GOOD),
    RemarksDraft(condition=Condition.GOOD),
    ConfirmDraft(condition=Condition.GOOD),
    CauseDraft(),
    ResolutionDraft(cause="Rust"),
]


@pytest.mark.parametrize("draft", _DRAFTS, ids=lambda d: d.stage)
@pytest.mark.parametrize("kind", list(InputKind), ids=lambda k: k.value)
def test_task_stage_is_monotonic(draft, kind):
    session = _started(
        location=Cursor(id="item-1", name="Kitchen"),
        task=TaskCursor(id="t", name="Sink", item_id="item-1"),
        task_draft=draft,
    )
    current = TASK_STAGE_ORDER[TaskStage(draft.stage)]
    target = route(session, InputEvent(kind, text="x", number=1))
    if target.next_stage in TASK_STAGES:
        assert TASK_STAGE_ORDER[_TASK_STAGE_BY_STAGE[target.next_stage]] >= current
