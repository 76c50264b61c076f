"""Derived statistics over the interval log.

Everything here is a pure function of a chronologically sorted sequence of
intervals. Durations and gaps are floored from the millisecond difference,
never rounded.
"""

from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Sequence

from labortracker.models import Interval
from labortracker.timeutil import floor_minutes, floor_seconds, format_time

DEFAULT_HISTORY_LIMIT = 10


def format_duration(seconds: int) -> str:
    """Format seconds as ``M:SS`` (minutes unpadded).

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string like "1:30" or "12:05"
    """
    minutes, secs = divmod(seconds, 60)
    return f"{minutes}:{secs:02d}"


def format_clock(seconds: int) -> str:
    """Format elapsed seconds as ``MM:SS`` for the running timer display."""
    if seconds < 0:
        seconds = 0
    minutes, secs = divmod(seconds, 60)
    return f"{minutes:02d}:{secs:02d}"


def duration_seconds(interval: Interval) -> int | None:
    """Floored duration of a completed interval, None while open."""
    if interval.end_time is None:
        return None
    return floor_seconds(interval.start_time, interval.end_time)


def gap_minutes(newer: Interval, older: Interval) -> int:
    """Floored minutes between the start times of two intervals."""
    return floor_minutes(older.start_time, newer.start_time)


def last_duration(log: Sequence[Interval]) -> int | None:
    """Duration in seconds of the most recent interval.

    Returns:
        Seconds, or None if the log is empty or the last interval is open.
    """
    if not log:
        return None
    return duration_seconds(log[-1])


def time_between_last_two(log: Sequence[Interval]) -> int | None:
    """Minutes between the start times of the two most recent intervals.

    Returns:
        Floored minutes, or None with fewer than two intervals.
    """
    if len(log) < 2:
        return None
    return gap_minutes(log[-1], log[-2])


def elapsed_seconds(start_time: datetime, now: datetime) -> int:
    """Whole seconds elapsed since ``start_time``."""
    return floor_seconds(start_time, now)


@dataclass(frozen=True)
class HistoryEntry:
    """One row of the recent history list.

    Attributes:
        index: Position of the interval in the log.
        interval: The interval itself.
        duration_seconds: Floored duration, None while open.
        gap_minutes: Minutes since the next older entry shown, None for the oldest.
    """

    index: int
    interval: Interval
    duration_seconds: int | None
    gap_minutes: int | None

    @property
    def duration_text(self) -> str:
        if self.duration_seconds is None:
            return "In progress..."
        return format_duration(self.duration_seconds)

    @property
    def gap_text(self) -> str:
        if self.gap_minutes is None:
            return "--"
        return f"{self.gap_minutes} min"


def recent_history(log: Sequence[Interval], n: int = DEFAULT_HISTORY_LIMIT) -> list[HistoryEntry]:
    """The last ``n`` intervals, newest first.

    The gap of each entry is measured against the next older entry inside
    the window; the oldest entry shown has no gap.
    """
    if n <= 0:
        return []
    window = list(log[-n:])
    window.reverse()
    base = len(log) - 1
    entries = []
    for i, interval in enumerate(window):
        gap = gap_minutes(interval, window[i + 1]) if i < len(window) - 1 else None
        entries.append(
            HistoryEntry(
                index=base - i,
                interval=interval,
                duration_seconds=duration_seconds(interval),
                gap_minutes=gap,
            )
        )
    return entries


@dataclass(frozen=True)
class ChartPoint:
    """One point of the duration/interval chart.

    Attributes:
        label: Start time formatted as ``HH:MM:SS``.
        duration_seconds: Floored duration.
        interval_minutes: Minutes since the previous completed interval, None for the first.
    """

    label: str
    duration_seconds: int
    interval_minutes: int | None


def chart_series(log: Sequence[Interval], tz: tzinfo | None = None) -> list[ChartPoint]:
    """Chart points for every completed interval in chronological order.

    Args:
        log: Sorted interval log.
        tz: Display timezone for labels. Defaults to the local timezone.
    """
    completed = [interval for interval in log if interval.end_time is not None]
    points = []
    for i, interval in enumerate(completed):
        points.append(
            ChartPoint(
                label=format_time(interval.start_time, tz),
                duration_seconds=floor_seconds(interval.start_time, interval.end_time),
                interval_minutes=gap_minutes(interval, completed[i - 1]) if i > 0 else None,
            )
        )
    return points
