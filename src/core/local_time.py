"""Local-time resolution — pure business logic.

Every user stores a fixed UTC offset in minutes. All scheduling decisions
("which tasks are due", "is it 23:00 yet", "which day does this quota
belong to") are made against the user's local calendar, never server time.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from src.config import MAX_UTC_OFFSET_MINUTES, MIN_UTC_OFFSET_MINUTES

MINUTES_PER_DAY = 1440

_OFFSET_RE = re.compile(r"^(?:UTC|GMT)?\s*([+-]?)(\d{1,2})(?::?(\d{2}))?$", re.IGNORECASE)
_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class InvalidOffsetError(ValueError):
    """Raised when a UTC offset is malformed or outside -12:00..+14:00."""


@dataclass(frozen=True)
class LocalTime:
    """A user's wall clock: calendar date plus minutes since local midnight."""

    date: date
    minutes: int   # 0..1439

    @property
    def date_key(self) -> str:
        return self.date.isoformat()

    @property
    def hhmm(self) -> str:
        return minutes_to_hhmm(self.minutes)


def utc_now() -> datetime:
    """Current UTC instant — thin wrapper for testability."""
    return datetime.now(timezone.utc)


def resolve_local(now_utc: datetime, offset_minutes: int) -> LocalTime:
    """Shift a UTC instant by the user's offset and split it into date + minutes.

    Naive datetimes are treated as UTC.
    """
    if now_utc.tzinfo is not None:
        now_utc = now_utc.astimezone(timezone.utc).replace(tzinfo=None)
    local = now_utc + timedelta(minutes=offset_minutes)
    return LocalTime(date=local.date(), minutes=local.hour * 60 + local.minute)


def validate_offset(offset_minutes: int) -> int:
    if not MIN_UTC_OFFSET_MINUTES <= offset_minutes <= MAX_UTC_OFFSET_MINUTES:
        raise InvalidOffsetError(
            f"Offset {offset_minutes} outside {MIN_UTC_OFFSET_MINUTES}..{MAX_UTC_OFFSET_MINUTES}"
        )
    return offset_minutes


def parse_offset(text: str) -> int:
    """Parse '+05:30', '-8', 'UTC+3', '+0545' or plain minutes ('330') into minutes.

    Raises InvalidOffsetError on malformed or out-of-range input.
    """
    raw = text.strip()
    if re.fullmatch(r"-?[1-9]\d{2,}", raw):
        return validate_offset(int(raw))

    match = _OFFSET_RE.match(raw)
    if not match:
        raise InvalidOffsetError(f"Cannot parse UTC offset: {text!r}")

    sign, hours, minutes = match.group(1), int(match.group(2)), int(match.group(3) or 0)
    if minutes >= 60:
        raise InvalidOffsetError(f"Minutes out of range in offset: {text!r}")
    total = hours * 60 + minutes
    return validate_offset(-total if sign == "-" else total)


def format_offset(offset_minutes: int) -> str:
    sign = "-" if offset_minutes < 0 else "+"
    hours, minutes = divmod(abs(offset_minutes), 60)
    return f"UTC{sign}{hours:02d}:{minutes:02d}"


def hhmm_to_minutes(hhmm: str) -> int:
    """Convert 'HH:MM' to minutes since midnight. Raises ValueError if malformed."""
    match = _HHMM_RE.match(hhmm.strip())
    if not match:
        raise ValueError(f"Invalid time (expected HH:MM): {hhmm!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


def minutes_to_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def window_segments(
    local: LocalTime, start_offset: int, end_offset: int,
) -> list[tuple[str, str, str]]:
    """Translate a window relative to now into per-day (date, from, to) ranges.

    The window [now + start_offset, now + end_offset] (minutes, inclusive) may
    cross local midnight in either direction, in which case it is split into
    one range per calendar day. Times are 'HH:MM', comparable as strings.
    """
    lo = local.minutes + start_offset
    hi = local.minutes + end_offset
    segments: list[tuple[str, str, str]] = []

    day_shift = lo // MINUTES_PER_DAY
    while day_shift * MINUTES_PER_DAY <= hi:
        day_start = day_shift * MINUTES_PER_DAY
        seg_lo = max(lo, day_start) - day_start
        seg_hi = min(hi, day_start + MINUTES_PER_DAY - 1) - day_start
        target = local.date + timedelta(days=day_shift)
        segments.append((target.isoformat(), minutes_to_hhmm(seg_lo), minutes_to_hhmm(seg_hi)))
        day_shift += 1

    return segments


def in_daily_slot(local: LocalTime, hour: int, span_minutes: int) -> bool:
    """True when the local clock is within `span_minutes` after `hour`:00.

    The slot never extends past local midnight.
    """
    start = hour * 60
    return start <= local.minutes < min(start + span_minutes, MINUTES_PER_DAY)
