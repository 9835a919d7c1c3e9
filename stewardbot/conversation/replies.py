"""Inspector-facing reply texts.

Menus are rendered from MenuOption snapshots so the numbers an inspector sees
are exactly the numbers the router resolves later.
"""

from __future__ import annotations

from stewardbot.models.enums import CONDITION_BY_NUMBER, CONDITION_LABELS, Condition
from stewardbot.schemas.session import MenuOption

GENERIC_ERROR = (
    "Sorry, something went wrong on our side. Please try again in a moment, "
    "or reply 'jobs' to start over."
)

DUPLICATE = "Got it, this message was already handled."

ASK_IDENTITY = (
    "Hello! I couldn't match this number to an inspector.\n\n"
    "Please reply with your full name and phone number, e.g. 'Jane Tan, 91234567'."
)

IDENTITY_NOT_FOUND = (
    "Sorry, I couldn't find an active inspector with those details.\n\n"
    "Please check and reply again as 'Full name, phone number'."
)

IDENTITY_FORMAT = "Please reply as 'Full name, phone number', e.g. 'Jane Tan, 91234567'."

NO_JOBS = "You have no inspection jobs scheduled for today. Reply 'jobs' to check again."

CHOOSE_LOCATION_FIRST = "Please choose a location before sending photos or videos."

INVALID_OPTION = "That number isn't on the list."

NOT_UNDERSTOOD = "Sorry, I didn't catch that."

LOST_PLACE = "Sorry, I lost track of where we were. Please pick the job again."


def _lines(header: str, options: list[MenuOption], extra: list[str], footer: str) -> str:
    body = [f"[{opt.number}] {opt.label}" for opt in options] + extra
    return "\n".join([header, "", *body, "", footer])


def greeting(name: str) -> str:
    return f"Hi {name}, you're signed in."


def job_menu(options: list[MenuOption]) -> str:
    return _lines(
        "Here are your jobs for today:",
        options,
        [],
        "Next: reply with the job number to start.",
    )


def job_unavailable() -> str:
    return "That job is no longer available."


def job_confirm(customer_name: str, property_address: str) -> str:
    return "\n".join([
        "Please confirm this job:",
        f"Customer: {customer_name}",
        f"Address: {property_address}",
        "",
        "[1] Yes, start this job",
        "[2] No, pick another",
    ])


def job_conflict(property_addresses: list[str]) -> str:
    started = "\n".join(f"- {addr}" for addr in property_addresses)
    return (
        "You already have a job in progress:\n"
        f"{started}\n\n"
        "Please finish it before starting another one."
    )


def job_declined() -> str:
    return "Okay, that job was not started."


def job_started(property_address: str) -> str:
    return f"Job started at {property_address}."


def job_completed(property_address: str | None) -> str:
    where = f" at {property_address}" if property_address else ""
    return f"Job{where} marked as completed. Thank you!\n\nReply 'jobs' to see your other jobs."


def job_finish_blocked(count: int) -> str:
    return (
        f"You still have {count} photo(s)/video(s) waiting to be saved with a task.\n"
        "Please finish that task before completing the job."
    )


def job_finish_failed() -> str:
    return "I couldn't complete the job right now. Your evidence is kept; reply 'finish' to try again."


def location_menu(options: list[MenuOption]) -> str:
    return _lines(
        "Here are the locations available for inspection:",
        options,
        [],
        "Next: reply with the location number, or 'finish' when the whole job is done.",
    )


def sub_location_menu(location_name: str, options: list[MenuOption]) -> str:
    back = len(options) + 1
    return _lines(
        f"{location_name} has these sub-locations:",
        options,
        [f"[{back}] Go back"],
        f"Next: reply with your sub-location choice, or [{back}] to go back.",
    )


def task_menu(location_name: str, options: list[MenuOption]) -> str:
    remarks, back = len(options) + 1, len(options) + 2
    return _lines(
        f"In {location_name}, here are the tasks available for inspection:",
        options,
        [f"[{remarks}] Add location remarks", f"[{back}] Go back"],
        f"Next: reply with the task number, [{remarks}] for remarks or [{back}] to go back.",
    )


def no_tasks(location_name: str) -> str:
    return f"There are no tasks listed for {location_name}."


def location_remarks_prompt(location_name: str) -> str:
    return (
        f"Send your remarks for {location_name}. You can also send photos or videos first.\n\n"
        "Reply 'skip' to go back without saving."
    )


def location_remarks_saved(location_name: str, media_count: int) -> str:
    suffix = f" with {media_count} photo(s)/video(s)" if media_count else ""
    return f"Remarks for {location_name} saved{suffix}."


def location_media_buffered(location_name: str, count: int) -> str:
    return f"Received {count} photo(s)/video(s) for {location_name}. They'll be saved with the location."


def commit_failed_location() -> str:
    return "I couldn't save those remarks just now. Nothing was lost. Please send the remarks again."


def condition_prompt(task_name: str) -> str:
    choices = [f"[{n}] {CONDITION_LABELS[c]}" for n, c in CONDITION_BY_NUMBER.items()]
    return "\n".join([f"Starting: {task_name}", "", "Set the condition for this task:", *choices, "", "Next: reply 1-5."])


def condition_invalid() -> str:
    return "Please reply with a number from 1 to 5 to set the condition."


def media_prompt(condition: Condition, skip_allowed: bool) -> str:
    head = f"Condition set to {CONDITION_LABELS[condition]}. Please send photos or videos of this task now."
    if skip_allowed:
        return f"{head}\n\nOr reply 'skip' to continue without media."
    return head


def media_required() -> str:
    return "Photos or videos are required for this condition. Please send at least one."


def task_media_buffered(count: int, total: int) -> str:
    return f"Received {count} photo(s)/video(s) ({total} so far for this task)."


def remarks_prompt() -> str:
    return "Add your remarks for this task, or reply 'skip'."


def confirm_prompt(task_name: str, condition: Condition, remarks: str | None, media_count: int) -> str:
    return "\n".join([
        f"Task: {task_name}",
        f"Condition: {CONDITION_LABELS[condition]}",
        f"Remarks: {remarks or '-'}",
        f"Media: {media_count}",
        "",
        "Is this task complete?",
        "[1] Yes, save it",
        "[2] No, I have more to add",
    ])


def hold_prompt() -> str:
    return "Okay. Send more photos or videos, then reply [1] when the task is complete."


def cause_prompt() -> str:
    return "Please describe the cause of this issue."


def resolution_prompt() -> str:
    return "Thanks. Please describe the resolution."


def task_saved(task_name: str, media_count: int) -> str:
    suffix = f" with {media_count} photo(s)/video(s)" if media_count else ""
    return f"Saved: {task_name}{suffix}."


def commit_failed_task(media_count: int) -> str:
    return (
        "I couldn't save this task just now. "
        f"Your answers and {media_count} photo(s)/video(s) are kept.\n\n"
        "Reply 'yes' to try again."
    )


def task_cancelled(task_name: str) -> str:
    return f"Stopped {task_name} without saving."
