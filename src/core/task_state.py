"""Task lifecycle — pure business logic.

    Planned -> Reminded -> {Praised | Scolded}

"Responded" is a side channel (the user's 'doing …' text) that never
advances the machine by itself; it only feeds the praise/scold verdict.
Praised and Scolded are terminal until the daily rollover.

No I/O: the store enforces the transitions with conditional updates,
this module only names the states and decides the verdict.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.data.models import Task

_WORD_RE = re.compile(r"\w+", re.UNICODE)
_MIN_WORD_LENGTH = 3   # words of 1–2 characters ("go", "to", "a") don't count


class TaskState(Enum):
    PLANNED = "planned"
    REMINDED = "reminded"
    PRAISED = "praised"
    SCOLDED = "scolded"


TERMINAL_STATES = frozenset({TaskState.PRAISED, TaskState.SCOLDED})


def state_of(task: Task) -> TaskState:
    """Derive the lifecycle state from the stored flags."""
    if task.praised:
        return TaskState.PRAISED
    if task.scolded:
        return TaskState.SCOLDED
    if task.reminder_sent:
        return TaskState.REMINDED
    return TaskState.PLANNED


def is_terminal(task: Task) -> bool:
    return state_of(task) in TERMINAL_STATES


def has_responded(task: Task) -> bool:
    return bool(task.user_response and task.user_response.strip())


def content_words(text: str | None) -> set[str]:
    """Lower-cased words longer than two characters."""
    if not text:
        return set()
    return {w for w in _WORD_RE.findall(text.lower()) if len(w) >= _MIN_WORD_LENGTH}


def matches_task(task_name: str, response: str | None) -> bool:
    """True if the response shares at least one content word with the task name.

    >>> matches_task("Study Go", "doing go study")
    True
    >>> matches_task("Study Go", "watching tv")
    False
    """
    return bool(content_words(task_name) & content_words(response))


def feedback_verdict(task: Task) -> TaskState:
    """Which terminal state a reminded task should move to.

    No response at all is a scold.
    """
    if matches_task(task.task_name, task.user_response):
        return TaskState.PRAISED
    return TaskState.SCOLDED
