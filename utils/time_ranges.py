"""Helpers for hour-of-day ranges used by tariff bands."""

from __future__ import annotations

from typing import Iterable, List, Optional, Tuple


HOURS_PER_DAY = 24


def parse_clock_hour(token: str) -> Optional[int]:
    """Parse '7am', '10pm', '14' or '14:00' into an hour (0-24).

    Returns None when the token is not a recognisable hour so callers can skip
    the range instead of failing the whole band.
    """

    text = token.strip().lower()
    if not text:
        return None

    digits = text.split(":")[0].rstrip("apm").strip()
    try:
        hour = int(digits)
    except ValueError:
        return None

    if text.endswith("am"):
        if hour == 12:
            hour = 0
    elif text.endswith("pm"):
        if hour != 12:
            hour += 12

    if not (0 <= hour <= HOURS_PER_DAY):
        return None
    return hour


def parse_ranges_to_hours(text: Optional[str]) -> Tuple[int, ...]:
    """Convert '7am-10am, 4pm-10pm' into a sorted tuple of unique hours.

    Ranges are end-exclusive and may wrap past midnight ('10pm-7am').
    A single token ('3pm') selects one hour.
    """

    if not text or not isinstance(text, str):
        return ()

    hours: set[int] = set()
    for part in [p.strip() for p in text.split(",") if p.strip()]:
        bounds = [b.strip() for b in part.split("-")]
        start = parse_clock_hour(bounds[0])
        if start is None:
            continue
        if len(bounds) == 1:
            hours.add(start % HOURS_PER_DAY)
            continue
        end = parse_clock_hour(bounds[1])
        if end is None:
            continue
        hours.update(hours_in_window(start, end))

    return tuple(sorted(hours))


def hours_in_window(start: int, end: int) -> List[int]:
    """Return hours in [start, end), wrapping past midnight when start >= end."""

    start %= HOURS_PER_DAY
    if end == HOURS_PER_DAY:
        end_mod = HOURS_PER_DAY
    else:
        end_mod = end % HOURS_PER_DAY
    if start < end_mod:
        return list(range(start, end_mod))
    return list(range(start, HOURS_PER_DAY)) + list(range(0, end_mod))


def normalize_hours(values: Optional[Iterable[object]]) -> Tuple[int, ...]:
    """Accept either a range string or an iterable of ints and return sorted hours."""

    if values is None:
        return ()
    if isinstance(values, str):
        return parse_ranges_to_hours(values)

    hours: set[int] = set()
    for value in values:
        try:
            hour = int(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            continue
        if 0 <= hour < HOURS_PER_DAY:
            hours.add(hour)
    return tuple(sorted(hours))


def _format_clock_hour(hour: int) -> str:
    if hour in (0, HOURS_PER_DAY):
        return "12am"
    if hour == 12:
        return "12pm"
    if hour < 12:
        return f"{hour}am"
    return f"{hour - 12}pm"


def format_hours_to_ranges(hours: Iterable[int]) -> str:
    """Render hours as compact ranges, e.g. (7, 8, 9, 15, 16) -> '7am-10am, 3pm-5pm'."""

    ordered = sorted(set(hours))
    if not ordered:
        return "N/A"

    ranges: List[str] = []
    start = ordered[0]
    for idx in range(1, len(ordered) + 1):
        if idx == len(ordered) or ordered[idx] != ordered[idx - 1] + 1:
            ranges.append(f"{_format_clock_hour(start)}-{_format_clock_hour(ordered[idx - 1] + 1)}")
            if idx < len(ordered):
                start = ordered[idx]
    return ", ".join(ranges)
