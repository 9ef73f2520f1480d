"""
Discipline Coach — Plan Parser.

Turns chat text into structured planning actions. Deterministic: no LLM,
just line-oriented formats the user is taught in the prompts:

    07:00 Gym
    10:00 Study Go

    edit 2 11:00 Study Go
    delete 2
    doing reading chapter 3
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from pydantic import BaseModel

_TASK_LINE_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)\s+(.+)$")
_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

PLAN_EXAMPLE = "07:00 Gym\n10:00 Study Go"


class PlannedTask(BaseModel):
    """One 'HH:MM name' line from a planning message."""
    time: str   # HH:MM in 24h format
    name: str


@dataclass
class EditCommand:
    index: int      # 1-based position in the listed plan
    time: str
    name: str


@dataclass
class DeleteCommand:
    index: int      # 1-based


def normalize_command(text: str) -> str:
    """Strip a '@botname' suffix from the command word ('/plan@MyBot' -> '/plan')."""
    text = text.strip()
    if not text.startswith("/"):
        return text
    head, _, rest = text.partition(" ")
    head = head.split("@", 1)[0]
    return f"{head} {rest}".strip() if rest else head


def parse_tasks(text: str) -> list[PlannedTask]:
    """Extract every 'HH:MM name' line. Lines in any other shape are ignored."""
    tasks: list[PlannedTask] = []
    for line in text.splitlines():
        match = _TASK_LINE_RE.match(line.strip())
        if not match:
            continue
        tasks.append(PlannedTask(
            time=f"{match.group(1)}:{match.group(2)}",
            name=match.group(3).strip(),
        ))
    return tasks


def is_valid_time(value: str) -> bool:
    return bool(_TIME_RE.match(value))


def parse_edit(text: str) -> EditCommand:
    """Parse 'edit <n> <HH:MM> <name>'. Raises ValueError with a user-facing reason."""
    parts = text.split()
    if len(parts) < 4 or parts[0].lower() != "edit":
        raise ValueError("Invalid edit format.")
    try:
        index = int(parts[1])
    except ValueError:
        raise ValueError("Invalid task number.") from None
    if index < 1:
        raise ValueError("Invalid task number.")
    if not is_valid_time(parts[2]):
        raise ValueError("Invalid time format (HH:MM).")
    return EditCommand(index=index, time=parts[2], name=" ".join(parts[3:]))


def parse_delete(text: str) -> DeleteCommand:
    """Parse 'delete <n>'. Raises ValueError with a user-facing reason."""
    parts = text.split()
    if len(parts) != 2 or parts[0].lower() != "delete":
        raise ValueError("Invalid delete format.\nUse: delete <number>")
    try:
        index = int(parts[1])
    except ValueError:
        raise ValueError("Invalid delete format.\nUse: delete <number>") from None
    if index < 1:
        raise ValueError("Invalid task number.")
    return DeleteCommand(index=index)


def parse_doing(text: str) -> str | None:
    """Return the free text after 'doing', or None if the message isn't a reply."""
    match = re.match(r"^doing\s+(.+)$", text.strip(), re.IGNORECASE | re.DOTALL)
    if not match:
        return None
    return match.group(1).strip()
