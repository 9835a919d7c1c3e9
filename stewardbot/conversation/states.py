"""Conversation stages, input kinds and the stage transition table.

The table only says which handler runs for an input in a stage and where the
conversation nominally goes next. Handlers may land somewhere else when the
durable store says so (a scheduling conflict, a failed commit).
"""

from __future__ import annotations

from enum import Enum
from typing import TypeVar

from stewardbot.schemas.session import TaskStage

T = TypeVar("T")


class Stage(str, Enum):
    UNIDENTIFIED = "unidentified"
    JOB_MENU = "job_menu"
    JOB_CONFIRM = "job_confirm"
    LOCATION_MENU = "location_menu"
    SUB_LOCATION_MENU = "sub_location_menu"
    TASK_MENU = "task_menu"
    LOCATION_REMARKS = "location_remarks"
    TASK_CONDITION = "task_condition"
    TASK_MEDIA = "task_media"
    TASK_REMARKS = "task_remarks"
    TASK_CONFIRM = "task_confirm"
    TASK_CAUSE = "task_cause"
    TASK_RESOLUTION = "task_resolution"


class InputKind(str, Enum):
    """Classification of one inbound message."""

    TEXT = "text"
    NUMBER = "number"
    AFFIRMATIVE = "affirmative"
    NEGATIVE = "negative"
    SKIP = "skip"
    BACK = "back"
    JOBS = "jobs"
    FINISH = "finish"
    MEDIA = "media"
    EMPTY = "empty"


STAGE_FOR_TASK_STAGE: dict[TaskStage, Stage] = {
    TaskStage.CONDITION: Stage.TASK_CONDITION,
    TaskStage.MEDIA: Stage.TASK_MEDIA,
    TaskStage.REMARKS: Stage.TASK_REMARKS,
    TaskStage.CONFIRM: Stage.TASK_CONFIRM,
    TaskStage.CAUSE: Stage.TASK_CAUSE,
    TaskStage.RESOLUTION: Stage.TASK_RESOLUTION,
}

TASK_STAGES: frozenset[Stage] = frozenset(STAGE_FOR_TASK_STAGE.values())

# Handler names, resolved to controller methods by the engine.
RECOVER = "recover"

_WORDS = (InputKind.TEXT, InputKind.NUMBER, InputKind.AFFIRMATIVE, InputKind.NEGATIVE)


def _all(kinds: tuple[InputKind, ...], handler: str, stage: Stage) -> dict[InputKind, tuple[str, Stage]]:
    return {kind: (handler, stage) for kind in kinds}


# Transition map: {stage: {input kind: (handler, next stage)}}
# Numbered menu choices are resolved against the shown options by the router.
TRANSITIONS: dict[Stage, dict[InputKind, tuple[str, Stage]]] = {
    Stage.UNIDENTIFIED: _all(
        (*_WORDS, InputKind.SKIP, InputKind.BACK, InputKind.JOBS, InputKind.FINISH),
        "identify",
        Stage.JOB_MENU,
    ),
    Stage.JOB_MENU: {
        **_all((InputKind.TEXT, InputKind.AFFIRMATIVE, InputKind.NEGATIVE, InputKind.BACK), "show_jobs", Stage.JOB_MENU),
        InputKind.NUMBER: ("select_job", Stage.JOB_CONFIRM),
    },
    Stage.JOB_CONFIRM: {
        InputKind.AFFIRMATIVE: ("confirm_job", Stage.LOCATION_MENU),
        InputKind.NEGATIVE: ("decline_job", Stage.JOB_MENU),
        InputKind.BACK: ("decline_job", Stage.JOB_MENU),
    },
    Stage.LOCATION_MENU: {
        InputKind.NUMBER: ("select_location", Stage.SUB_LOCATION_MENU),
        InputKind.FINISH: ("finish_job", Stage.JOB_MENU),
        InputKind.MEDIA: ("buffer_location_media", Stage.LOCATION_MENU),
    },
    Stage.SUB_LOCATION_MENU: {
        InputKind.NUMBER: ("select_sub_location", Stage.TASK_MENU),
        InputKind.BACK: ("go_back", Stage.LOCATION_MENU),
        InputKind.MEDIA: ("buffer_location_media", Stage.SUB_LOCATION_MENU),
    },
    Stage.TASK_MENU: {
        InputKind.NUMBER: ("select_task", Stage.TASK_CONDITION),
        InputKind.BACK: ("go_back", Stage.LOCATION_MENU),
        InputKind.MEDIA: ("buffer_location_media", Stage.TASK_MENU),
    },
    Stage.LOCATION_REMARKS: {
        **_all((*_WORDS, InputKind.FINISH), "save_location_remarks", Stage.TASK_MENU),
        InputKind.SKIP: ("cancel_location_remarks", Stage.TASK_MENU),
        InputKind.BACK: ("cancel_location_remarks", Stage.TASK_MENU),
        InputKind.MEDIA: ("buffer_location_media", Stage.LOCATION_REMARKS),
    },
    Stage.TASK_CONDITION: {
        InputKind.NUMBER: ("set_condition", Stage.TASK_MEDIA),
        InputKind.TEXT: ("set_condition", Stage.TASK_MEDIA),
        InputKind.BACK: ("cancel_task", Stage.TASK_MENU),
        InputKind.MEDIA: ("buffer_task_media", Stage.TASK_CONDITION),
    },
    Stage.TASK_MEDIA: {
        InputKind.MEDIA: ("buffer_task_media", Stage.TASK_REMARKS),
        InputKind.SKIP: ("skip_media", Stage.TASK_REMARKS),
        InputKind.NEGATIVE: ("skip_media", Stage.TASK_REMARKS),
    },
    Stage.TASK_REMARKS: {
        **_all((InputKind.TEXT, InputKind.NUMBER, InputKind.AFFIRMATIVE, InputKind.FINISH), "set_remarks", Stage.TASK_CONFIRM),
        InputKind.SKIP: ("skip_remarks", Stage.TASK_CONFIRM),
        InputKind.NEGATIVE: ("skip_remarks", Stage.TASK_CONFIRM),
        InputKind.MEDIA: ("buffer_task_media", Stage.TASK_REMARKS),
    },
    Stage.TASK_CONFIRM: {
        InputKind.AFFIRMATIVE: ("confirm_task", Stage.TASK_MENU),
        InputKind.NEGATIVE: ("hold_task", Stage.TASK_CONFIRM),
        InputKind.MEDIA: ("buffer_task_media", Stage.TASK_CONFIRM),
    },
    Stage.TASK_CAUSE: {
        **_all((*_WORDS, InputKind.FINISH), "set_cause", Stage.TASK_RESOLUTION),
        InputKind.MEDIA: ("buffer_task_media", Stage.TASK_CAUSE),
    },
    Stage.TASK_RESOLUTION: {
        **_all((*_WORDS, InputKind.FINISH), "set_resolution", Stage.TASK_MENU),
        InputKind.MEDIA: ("buffer_task_media", Stage.TASK_RESOLUTION),
    },
}

# Inputs honoured in every stage once the inspector is identified, except
# the free-text stages below where they are read as ordinary text.
UNIVERSAL_TRANSITIONS: dict[InputKind, tuple[str, Stage]] = {
    InputKind.JOBS: ("show_jobs", Stage.JOB_MENU),
}

FREE_TEXT_STAGES: frozenset[Stage] = TASK_STAGES | {Stage.LOCATION_REMARKS}


class SessionStateError(Exception):
    """A handler ran against a session lacking the state its stage implies."""


def require(value: T | None, what: str) -> T:
    """Return ``value``, raising SessionStateError when the session lacks it."""
    if value is None:
        raise SessionStateError(f"Session has no {what}")
    return value
