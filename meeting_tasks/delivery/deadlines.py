"""Best-effort conversion of free-text deadlines into concrete datetimes."""

from __future__ import annotations

from datetime import datetime, timedelta

from meeting_tasks.pipeline_config import SprintPolicy

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%d.%m.%Y",
    "%B %d, %Y",
    "%B %d %Y",
    "%b %d, %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%A, %B %d, %Y",
)


def _parse_absolute(text: str) -> datetime | None:
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def next_weekday(now: datetime, weekday: int) -> datetime:
    """The next *weekday* strictly after *now*'s date (a week out if today)."""
    days = (weekday - now.weekday()) % 7 or 7
    return now + timedelta(days=days)


def parse_deadline(
    deadline: str | None,
    now: datetime | None = None,
    policy: SprintPolicy | None = None,
) -> datetime | None:
    """Interpret *deadline*; ``None`` when it cannot be understood.

    Recognised phrases (case-insensitive, anywhere in the text):

    - "today", "EOD", "end of day": today at the end-of-day time
    - "tomorrow": the next day at 17:00
    - "next week": seven days from now, same time
    - "end of sprint", "sprint end": the next sprint-end weekday

    Anything else is tried as an ISO or common written date.
    """
    if not deadline or not deadline.strip():
        return None

    policy = policy or SprintPolicy()
    now = now or datetime.now()
    lower = deadline.strip().lower()

    if "eod" in lower or "end of day" in lower or "today" in lower:
        hour, minute, second = policy.end_of_day
        return now.replace(hour=hour, minute=minute, second=second, microsecond=0)

    if "tomorrow" in lower:
        hour, minute = policy.tomorrow_time
        return (now + timedelta(days=1)).replace(hour=hour, minute=minute, second=0, microsecond=0)

    if "next week" in lower:
        return now + timedelta(days=7)

    if "end of sprint" in lower or "sprint end" in lower:
        return next_weekday(now, policy.sprint_end_weekday)

    return _parse_absolute(deadline.strip())
