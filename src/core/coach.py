"""
Discipline Coach — Coach Voice.

Prompt builders for every kind of generated message, plus the one pattern
all callers share:

    reserve quota -> generate -> (on failure) roll back -> caller falls back

Quota exhaustion and generator failure both come back as None. Callers
decide the fallback (plain text, or silence in the feedback sweep).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from src.core.llm import complete

if TYPE_CHECKING:
    from src.data.db import QuotaLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Prompt:
    system: str
    user_message: str


# ---------------------------------------------------------------------------
# Prompt builders
# ---------------------------------------------------------------------------


def _praise(task_name: str) -> Prompt:
    return Prompt(
        system=(
            "You are a strict but caring discipline coach. When someone completes "
            "their task, give brief genuine praise with a warm tone. Use emojis like "
            "😌, ✅, 💪, 🎯. Keep it under 2 sentences."
        ),
        user_message=f'The user planned "{task_name}" and they\'re doing it right now on time.',
    )


def _scold(task_name: str, user_response: str | None = None) -> Prompt:
    did = user_response or "no response"
    return Prompt(
        system=(
            "You are a strict discipline coach who holds people accountable. "
            "Be direct and firm. Use 😡, ⚠️, 💢. 2–3 short sentences."
        ),
        user_message=f'Planned: "{task_name}". User did: "{did}".',
    )


def _summary(planned: int, completed: int, missed: int, success: bool, streak: int) -> Prompt:
    tone = "Celebrate but push harder." if success else "Be firm but motivating."
    return Prompt(
        system=f"You are a discipline mentor. {tone}",
        user_message=(
            f"Planned {planned}, completed {completed}, missed {missed}, streak {streak}."
        ),
    )


def _stuck(problem: str) -> Prompt:
    return Prompt(
        system="You are a practical productivity coach. Give 2–3 actionable micro-steps.",
        user_message=f'User is stuck: "{problem}".',
    )


def _morning(task_count: int) -> Prompt:
    return Prompt(
        system=(
            "You are a discipline coach starting the day. Be energetic and motivating. "
            "Use 🌅 or ☀️. Keep it under 2 sentences."
        ),
        user_message=f"User has {task_count} tasks today.",
    )


def _planning() -> Prompt:
    return Prompt(
        system=(
            "You are a discipline coach at night. Encourage the user to plan tomorrow "
            "so they wake up with purpose. Use 📌 or 🌙. Keep it under 2 sentences."
        ),
        user_message="Remind user to plan tomorrow.",
    )


PROMPTS: dict[str, Callable[..., Prompt]] = {
    "praise": _praise,
    "scold": _scold,
    "summary": _summary,
    "stuck": _stuck,
    "morning": _morning,
    "planning": _planning,
}


def build_prompt(kind: str, **context) -> Prompt:
    if kind not in PROMPTS:
        raise ValueError(f"Unknown message kind {kind!r}. Supported: {', '.join(PROMPTS)}")
    return PROMPTS[kind](**context)


# ---------------------------------------------------------------------------
# Plain-text fallbacks
# ---------------------------------------------------------------------------


def fallback_summary(planned: int, completed: int, missed: int, success: bool, streak: int) -> str:
    verdict = "✅ Good day." if success else "⚠️ Below target."
    return (
        f"📊 Daily summary\n\n"
        f"Planned: {planned}\nCompleted: {completed}\nMissed: {missed}\n"
        f"Streak: {streak}\n\n{verdict}"
    )


FALLBACK_MORNING = "🌅 Good morning.\n\nCheck today's plan using /today\nStay disciplined."
FALLBACK_PLANNING = "📌 Plan tomorrow's tasks.\n\nReply like:\n07:00 Gym\n10:00 Study Go"
FALLBACK_STUCK = (
    "🧠 Break it down:\n"
    "1. Pick the smallest next step (5 minutes).\n"
    "2. Remove one distraction.\n"
    "3. Start a timer and begin."
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def generate(kind: str, **context) -> str:
    """Generate text for a message kind. Raises on generator failure."""
    prompt = build_prompt(kind, **context)
    return await complete(prompt.system, prompt.user_message)


async def generate_with_quota(
    ledger: QuotaLedger,
    user_id: int,
    local_date: str,
    kind: str,
    **context,
) -> str | None:
    """Reserve one unit of the user's budget, then generate.

    Returns None when the budget is exhausted or generation fails; in the
    latter case the reservation is given back. Never retries.
    """
    if not ledger.reserve(user_id, local_date):
        return None

    try:
        return await generate(kind, **context)
    except Exception as exc:
        logger.warning("Generation of %s text failed for user %d: %s", kind, user_id, exc)
        ledger.rollback(user_id)
        return None
