"""Time intervals and overlap detection for sessions and availability."""

import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, TypeVar

MINUTES_PER_HOUR = 60
CLOCK_PATTERN = re.compile(r'^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$')

T = TypeVar('T')


def parse_clock(value: str) -> int:
    """Convert an ``HH:mm`` string into minutes after midnight."""
    match = CLOCK_PATTERN.match((value or '').strip())
    if not match:
        raise ValueError(f'Invalid time {value!r}. Use HH:mm format.')
    return int(match.group(1)) * MINUTES_PER_HOUR + int(match.group(2))


def format_clock(minutes: int) -> str:
    return f'{minutes // MINUTES_PER_HOUR:02d}:{minutes % MINUTES_PER_HOUR:02d}'


def format_hour(hour: int) -> str:
    return format_clock(hour * MINUTES_PER_HOUR)


@dataclass(frozen=True, order=True)
class TimeSlot:
    """Closed-open interval ``[start, end)`` on one calendar day, in minutes."""

    day: date
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError('Start time must be before end time.')
        if self.start < 0 or self.end > 24 * MINUTES_PER_HOUR:
            raise ValueError('Time slot must fall within a single day.')

    @classmethod
    def from_hours(cls, day: date, start_hour: int, end_hour: int) -> 'TimeSlot':
        return cls(day, start_hour * MINUTES_PER_HOUR, end_hour * MINUTES_PER_HOUR)

    @classmethod
    def from_clock(cls, day: date, start_time: str, end_time: str) -> 'TimeSlot':
        return cls(day, parse_clock(start_time), parse_clock(end_time))

    @property
    def start_time(self) -> str:
        return format_clock(self.start)

    @property
    def end_time(self) -> str:
        return format_clock(self.end)

    @property
    def duration_minutes(self) -> int:
        return self.end - self.start

    def within_hours(self, earliest_hour: int, latest_hour: int) -> bool:
        return (
            earliest_hour * MINUTES_PER_HOUR <= self.start
            and self.end <= latest_hour * MINUTES_PER_HOUR
        )


def overlaps(a: TimeSlot, b: TimeSlot) -> bool:
    # End is exclusive, so back-to-back slots do not collide.
    return a.day == b.day and a.start < b.end and b.start < a.end


def find_conflicts(candidate: TimeSlot, existing: Iterable[tuple[TimeSlot, T]]) -> list[T]:
    """Return the payload of every existing interval that overlaps ``candidate``."""
    return [payload for slot, payload in existing if overlaps(candidate, slot)]


def find_overlapping_pairs(slots: list[TimeSlot]) -> list[tuple[int, int]]:
    pairs: list[tuple[int, int]] = []
    for i, first in enumerate(slots):
        for j in range(i + 1, len(slots)):
            if overlaps(first, slots[j]):
                pairs.append((i, j))
    return pairs


def session_time_slot(session: Any) -> TimeSlot:
    return TimeSlot.from_clock(session.date, session.start_time, session.end_time)


def describe_conflict(session: Any) -> dict[str, Any]:
    return {
        'id': session.id,
        'title': session.title,
        'date': session.date.isoformat(),
        'start_time': session.start_time,
        'end_time': session.end_time,
    }
