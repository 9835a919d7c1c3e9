"""Input classification and stage routing.

Both functions are pure: they read the session and the message and decide
what should happen, without touching Redis or the durable store.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace

from stewardbot.conversation.states import (
    FREE_TEXT_STAGES,
    RECOVER,
    STAGE_FOR_TASK_STAGE,
    TRANSITIONS,
    UNIVERSAL_TRANSITIONS,
    InputKind,
    Stage,
)
from stewardbot.schemas.messages import Attachment, InboundMessage
from stewardbot.schemas.session import ChatSession, JobStatus, MenuKind, TaskStage

# "3", "[3]", "option 3", "3)" and friends
_OPTION_RE = re.compile(
    r"^\s*(?:\[\s*(\d{1,2})\s*\]|option\s+(\d{1,2})|(\d{1,2}))\s*([).,;-])?\s*$",
    re.IGNORECASE,
)

AFFIRMATIVE_WORDS = frozenset({"yes", "y", "yeah", "yep", "ok", "okay", "sure", "confirm", "correct", "retry", "try again"})
NEGATIVE_WORDS = frozenset({"no", "n", "nope", "not yet", "cancel"})
SKIP_WORDS = frozenset({"skip", "nil", "none", "no remarks"})
BACK_WORDS = frozenset({"back", "go back", "b"})
JOBS_WORDS = frozenset({
    "jobs", "job", "my jobs", "show jobs", "list jobs", "schedule", "my schedule",
    "today", "work orders", "inspections",
})
FINISH_WORDS = frozenset({"finish", "finish job", "complete job", "end job", "job done"})

# Stages where a photo without a task goes to the selected location
_LOCATION_MEDIA_STAGES = frozenset({
    Stage.LOCATION_MENU,
    Stage.SUB_LOCATION_MENU,
    Stage.TASK_MENU,
    Stage.LOCATION_REMARKS,
})

_KEYWORDS: tuple[tuple[frozenset[str], InputKind], ...] = (
    (AFFIRMATIVE_WORDS, InputKind.AFFIRMATIVE),
    (NEGATIVE_WORDS, InputKind.NEGATIVE),
    (SKIP_WORDS, InputKind.SKIP),
    (BACK_WORDS, InputKind.BACK),
    (JOBS_WORDS, InputKind.JOBS),
    (FINISH_WORDS, InputKind.FINISH),
)


@dataclass(frozen=True)
class InputEvent:
    kind: InputKind
    text: str = ""
    number: int | None = None
    attachments: tuple[Attachment, ...] = ()


@dataclass(frozen=True)
class Route:
    handler: str
    next_stage: Stage


def parse_option_number(text: str) -> int | None:
    match = _OPTION_RE.match(text)
    if match is None:
        return None
    return int(match.group(1) or match.group(2) or match.group(3))


def classify(message: InboundMessage) -> InputEvent:
    """Turn a raw inbound message into an InputEvent."""
    text = message.raw_text.strip()
    if message.attachments:
        return InputEvent(InputKind.MEDIA, text=text, attachments=tuple(message.attachments))
    if not text:
        return InputEvent(InputKind.EMPTY)

    number = parse_option_number(text)
    if number is not None:
        return InputEvent(InputKind.NUMBER, text=text, number=number)

    normalized = " ".join(text.lower().rstrip(".!?").split())
    for words, kind in _KEYWORDS:
        if normalized in words:
            return InputEvent(kind, text=text)
    return InputEvent(InputKind.TEXT, text=text)


def current_stage(session: ChatSession) -> Stage:
    """Derive the stage from the session document."""
    if session.inspector is None:
        return Stage.UNIDENTIFIED
    if session.job.status == JobStatus.NONE:
        return Stage.JOB_MENU
    if session.job.status == JobStatus.CONFIRMING:
        return Stage.JOB_CONFIRM
    if session.task_draft is not None:
        return STAGE_FOR_TASK_STAGE[TaskStage(session.task_draft.stage)]
    if session.last_menu == MenuKind.LOCATION_REMARKS:
        return Stage.LOCATION_REMARKS
    if session.last_menu == MenuKind.TASKS:
        return Stage.TASK_MENU
    if session.last_menu == MenuKind.SUB_LOCATIONS:
        return Stage.SUB_LOCATION_MENU
    return Stage.LOCATION_MENU


def route(session: ChatSession, event: InputEvent) -> Route:
    """Pick the handler for ``event`` in the session's current stage.

    Anything the current stage does not accept goes to the recovery handler,
    which re-shows the last menu.
    """
    stage = current_stage(session)

    if stage in FREE_TEXT_STAGES and event.kind in UNIVERSAL_TRANSITIONS:
        # "schedule" is a valid cause or remark
        event = replace(event, kind=InputKind.TEXT)
    elif stage != Stage.UNIDENTIFIED and event.kind in UNIVERSAL_TRANSITIONS:
        return Route(*UNIVERSAL_TRANSITIONS[event.kind])

    if event.kind == InputKind.NUMBER and event.number is not None:
        numbered = _route_number(session, stage, event.number)
        if numbered is not None:
            return numbered

    if event.kind == InputKind.BACK and stage == Stage.TASK_MENU:
        return _task_menu_back(session)

    if event.kind == InputKind.MEDIA and stage in _LOCATION_MEDIA_STAGES and session.location is None:
        return Route(RECOVER, stage)

    target = TRANSITIONS.get(stage, {}).get(event.kind)
    if target is None:
        return Route(RECOVER, stage)
    return Route(*target)


def _task_menu_back(session: ChatSession) -> Route:
    if session.sub_location is not None:
        return Route("go_back", Stage.SUB_LOCATION_MENU)
    return Route("go_back", Stage.LOCATION_MENU)


def _route_number(session: ChatSession, stage: Stage, number: int) -> Route | None:
    """Resolve a numbered reply against the menu that was shown.

    Returns None when the stage treats numbers like any other input.
    """
    options = len(session.last_options_snapshot)

    if stage == Stage.JOB_MENU:
        if not session.last_jobs_snapshot:
            return Route("show_jobs", Stage.JOB_MENU)
        if 1 <= number <= len(session.last_jobs_snapshot):
            return Route("select_job", Stage.JOB_CONFIRM)
        return Route(RECOVER, stage)

    if stage in (Stage.JOB_CONFIRM, Stage.TASK_CONFIRM):
        kind = {1: InputKind.AFFIRMATIVE, 2: InputKind.NEGATIVE}.get(number)
        if kind is None:
            return Route(RECOVER, stage)
        return Route(*TRANSITIONS[stage][kind])

    if stage == Stage.LOCATION_MENU:
        if 1 <= number <= options:
            return Route("select_location", Stage.SUB_LOCATION_MENU)
        return Route(RECOVER, stage)

    if stage == Stage.SUB_LOCATION_MENU:
        if 1 <= number <= options:
            return Route("select_sub_location", Stage.TASK_MENU)
        if number == options + 1:
            return Route("go_back", Stage.LOCATION_MENU)
        return Route(RECOVER, stage)

    if stage == Stage.TASK_MENU:
        if 1 <= number <= options:
            return Route("select_task", Stage.TASK_CONDITION)
        if number == options + 1:
            return Route("start_location_remarks", Stage.LOCATION_REMARKS)
        if number == options + 2:
            return _task_menu_back(session)
        return Route(RECOVER, stage)

    return None
