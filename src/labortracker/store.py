"""The contraction log store.

``EventLogStore`` owns the committed interval log, the single open interval
and the notes text. It validates every mutation, keeps the log sorted by
start time and tells subscribers what changed. It knows nothing about
rendering or persistence; collaborators subscribe to its events.

Destructive operations can be run directly (``delete_at``, ``clear_all``,
``import_snapshot``) or through the two-phase confirmation API, where the
presentation layer shows the token's summary and decides whether to call
``confirm``.

Example:
    store = EventLogStore()
    store.subscribe(lambda event: print(event))
    store.start_interval()
    store.end_interval(intensity=4)

    token = store.request_delete(0)
    if ask_user(token.message):
        store.confirm(token)
"""

import bisect
import logging
import re
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from enum import Enum
from typing import Any, Iterable

from labortracker import stats
from labortracker.codec import decode_document
from labortracker.errors import (
    ConflictError,
    IndexOutOfRangeError,
    InvalidDurationError,
    InvalidFormatError,
    InvalidIntensityError,
    NoOpenIntervalError,
    StaleConfirmationError,
)
from labortracker.models import (
    DEFAULT_INTENSITY,
    FORMAT_VERSION,
    MAX_INTENSITY,
    MIN_INTENSITY,
    Interval,
    Snapshot,
    intensity_label,
)
from labortracker.timeutil import format_time, normalize, utcnow

logger = logging.getLogger(__name__)

DURATION_PATTERN = re.compile(r"^[0-9]+:[0-5][0-9]$")
SECONDS_PATTERN = re.compile(r"^[0-9]+$")


class StoreEvent(str, Enum):
    """Change notifications emitted by the store."""

    LOG_CHANGED = "log_changed"
    NOTES_CHANGED = "notes_changed"


class ConfirmationKind(str, Enum):
    """Destructive operations that go through confirmation."""

    DELETE = "delete"
    CLEAR = "clear"
    IMPORT = "import"


@dataclass(frozen=True)
class ConfirmationToken:
    """A pending destructive operation awaiting the user's decision.

    Attributes:
        id: Unique token identifier.
        kind: Operation to perform on confirmation.
        message: Summary of what will be lost or replaced.
        index: Target log index for deletes.
        snapshot: Incoming data for imports.
        source: Where an import came from (file, url, qr).
    """

    id: str
    kind: ConfirmationKind
    message: str
    index: int | None = None
    snapshot: Snapshot | None = None
    source: str | None = None


Listener = Callable[[StoreEvent], None]


def parse_duration(value: int | str) -> int:
    """Parse a duration given as whole seconds or an ``M:SS`` string.

    Args:
        value: Seconds as an int or digit string, or ``M:SS``.

    Returns:
        Duration in seconds, always positive.

    Raises:
        InvalidFormatError: If a string matches neither form.
        InvalidDurationError: If the duration is not a positive integer.
    """
    if isinstance(value, bool):
        raise InvalidDurationError(f"Invalid duration: {value!r}")
    if isinstance(value, int):
        seconds = value
    elif isinstance(value, str):
        text = value.strip()
        if SECONDS_PATTERN.match(text):
            seconds = int(text)
        elif DURATION_PATTERN.match(text):
            minutes, secs = text.split(":")
            seconds = int(minutes) * 60 + int(secs)
        else:
            raise InvalidFormatError(
                f"Invalid duration '{value}'. Use seconds (e.g. 90) or minutes:seconds (e.g. 1:30)."
            )
    else:
        raise InvalidDurationError(f"Invalid duration: {value!r}")

    if seconds <= 0:
        raise InvalidDurationError("Please enter a valid duration in seconds (e.g., 90).")
    return seconds


def check_intensity(value: Any) -> int:
    """Validate an intensity rating.

    Raises:
        InvalidIntensityError: If ``value`` is not an integer in 1-5.
    """
    if isinstance(value, bool) or not isinstance(value, int) or not MIN_INTENSITY <= value <= MAX_INTENSITY:
        raise InvalidIntensityError(f"Please select a valid intensity level (1-5), got {value!r}.")
    return value


def _start_key(interval: Interval) -> datetime:
    return interval.start_time


class EventLogStore:
    """In-memory contraction log with change notifications.

    Args:
        intervals: Initial log contents, sorted on load.
        notes: Initial notes text.
        clock: Returns the current time. Defaults to UTC now.
        tz: Display timezone for confirmation summaries and chart labels.
    """

    def __init__(
        self,
        intervals: Iterable[Interval] = (),
        notes: str = "",
        clock: Callable[[], datetime] = utcnow,
        tz: tzinfo | None = None,
    ) -> None:
        self._log: list[Interval] = sorted(intervals, key=_start_key)
        self._notes = notes
        self._current: Interval | None = None
        self._clock = clock
        self._tz = tz
        self._listeners: list[Listener] = []
        self._pending: dict[str, ConfirmationToken] = {}

    # -- state ------------------------------------------------------------

    @property
    def intervals(self) -> tuple[Interval, ...]:
        """The committed log, oldest first."""
        return tuple(self._log)

    @property
    def notes(self) -> str:
        return self._notes

    @property
    def current(self) -> Interval | None:
        """The open interval, if one is being timed."""
        return self._current

    def __len__(self) -> int:
        return len(self._log)

    def _now(self) -> datetime:
        return normalize(self._clock())

    def _get(self, index: int, require_complete: bool = False) -> Interval:
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(self._log):
            raise IndexOutOfRangeError(f"No contraction at position {index}")
        interval = self._log[index]
        if require_complete and interval.end_time is None:
            raise IndexOutOfRangeError(f"Contraction at position {index} is still in progress")
        return interval

    # -- subscriptions ----------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener.

        Returns:
            Callable that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self, *events: StoreEvent) -> None:
        # Any mutation invalidates outstanding confirmations
        self._pending.clear()
        for event in events:
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception:
                    logger.exception(f"Store listener failed on {event.value}")

    # -- timing -----------------------------------------------------------

    def start_interval(self) -> Interval:
        """Open a new interval starting now.

        Raises:
            ConflictError: If an interval is already open.
        """
        if self._current is not None:
            raise ConflictError()
        self._current = Interval(start_time=self._now(), intensity=DEFAULT_INTENSITY)
        logger.debug(f"Started interval at {self._current.start_time.isoformat()}")
        return self._current

    def end_interval(self, intensity: int | None = None) -> Interval:
        """Close the open interval and append it to the log.

        Args:
            intensity: Rating to record. Keeps the default when omitted.

        Returns:
            The completed interval.

        Raises:
            NoOpenIntervalError: If no interval is open.
            InvalidIntensityError: If ``intensity`` is out of range.
        """
        if self._current is None:
            raise NoOpenIntervalError()
        rating = self._current.intensity if intensity is None else check_intensity(intensity)
        start = self._current.start_time
        completed = Interval(start_time=start, end_time=max(self._now(), start), intensity=rating)

        bisect.insort_right(self._log, completed, key=_start_key)
        self._current = None
        logger.info(f"Recorded contraction: {stats.format_duration(stats.duration_seconds(completed))}")
        self._changed(StoreEvent.LOG_CHANGED)
        return completed

    def discard_current(self) -> Interval | None:
        """Drop the open interval without recording it."""
        current, self._current = self._current, None
        return current

    def elapsed_seconds(self) -> int | None:
        """Seconds elapsed on the open interval, None if none is open."""
        if self._current is None:
            return None
        return stats.elapsed_seconds(self._current.start_time, self._now())

    # -- log edits --------------------------------------------------------

    def add_manual_interval(
        self,
        start_time: datetime,
        duration: int | str,
        intensity: int | None = None,
    ) -> Interval:
        """Record a past contraction.

        Args:
            start_time: When it started.
            duration: Seconds, or an ``M:SS`` string.
            intensity: Rating 1-5, default 3.

        Returns:
            The recorded interval.

        Raises:
            InvalidDurationError: If the duration is not positive.
            InvalidFormatError: If a duration string is malformed.
            InvalidIntensityError: If ``intensity`` is out of range.
        """
        seconds = parse_duration(duration)
        rating = DEFAULT_INTENSITY if intensity is None else check_intensity(intensity)
        start = normalize(start_time)
        interval = Interval(start_time=start, end_time=start + timedelta(seconds=seconds), intensity=rating)

        bisect.insort_right(self._log, interval, key=_start_key)
        logger.info(f"Added manual contraction at {start.isoformat()} ({seconds}s)")
        self._changed(StoreEvent.LOG_CHANGED)
        return interval

    def edit_start_time(self, index: int, new_start_time: datetime) -> Interval:
        """Move a completed interval, keeping its duration.

        Raises:
            IndexOutOfRangeError: If ``index`` is invalid or the interval is open.
        """
        old = self._get(index, require_complete=True)
        start = normalize(new_start_time)
        edited = Interval(
            start_time=start,
            end_time=start + (old.end_time - old.start_time),
            intensity=old.intensity,
        )
        self._log[index] = edited
        self._log.sort(key=_start_key)
        self._changed(StoreEvent.LOG_CHANGED)
        return edited

    def edit_duration(self, index: int, new_duration: int | str) -> Interval:
        """Change the duration of a completed interval.

        Raises:
            IndexOutOfRangeError: If ``index`` is invalid or the interval is open.
            InvalidDurationError: If the duration is not positive.
            InvalidFormatError: If a duration string is malformed.
        """
        old = self._get(index, require_complete=True)
        seconds = parse_duration(new_duration)
        edited = Interval(
            start_time=old.start_time,
            end_time=old.start_time + timedelta(seconds=seconds),
            intensity=old.intensity,
        )
        self._log[index] = edited
        self._changed(StoreEvent.LOG_CHANGED)
        return edited

    def edit_intensity(self, index: int, new_intensity: int) -> Interval:
        """Change the intensity rating of an interval.

        Raises:
            IndexOutOfRangeError: If ``index`` is invalid.
            InvalidIntensityError: If the rating is out of range.
        """
        old = self._get(index)
        rating = check_intensity(new_intensity)
        edited = Interval(start_time=old.start_time, end_time=old.end_time, intensity=rating)
        self._log[index] = edited
        self._changed(StoreEvent.LOG_CHANGED)
        return edited

    def delete_at(self, index: int) -> Interval:
        """Remove the interval at ``index``.

        Raises:
            IndexOutOfRangeError: If ``index`` is invalid.
        """
        self._get(index)
        removed = self._log.pop(index)
        logger.info(f"Deleted contraction at {removed.start_time.isoformat()}")
        self._changed(StoreEvent.LOG_CHANGED)
        return removed

    def clear_all(self) -> None:
        """Empty the log and notes and drop any open interval."""
        count = len(self._log)
        self._log = []
        self._notes = ""
        self._current = None
        logger.info(f"Cleared {count} contractions and notes")
        self._changed(StoreEvent.LOG_CHANGED, StoreEvent.NOTES_CHANGED)

    def set_notes(self, text: str) -> None:
        """Replace the notes text."""
        if text == self._notes:
            return
        self._notes = text
        self._changed(StoreEvent.NOTES_CHANGED)

    # -- snapshots --------------------------------------------------------

    def export_snapshot(self) -> Snapshot:
        """Snapshot of the committed log and notes, stamped now."""
        return Snapshot(
            intervals=list(self._log),
            notes=self._notes,
            exported_at=self._now(),
            format_version=FORMAT_VERSION,
        )

    def import_snapshot(self, snapshot: Snapshot | Mapping[str, Any]) -> Snapshot:
        """Replace the log and notes with a snapshot.

        Args:
            snapshot: A Snapshot, or a decoded JSON document in either wire form.

        Returns:
            The applied snapshot.

        Raises:
            MalformedSnapshotError: If a raw document fails validation. State is unchanged.
        """
        if not isinstance(snapshot, Snapshot):
            snapshot = decode_document(snapshot)
        self._log = sorted(snapshot.intervals, key=_start_key)
        self._notes = snapshot.notes
        logger.info(f"Imported {len(self._log)} contractions (format {snapshot.format_version})")
        self._changed(StoreEvent.LOG_CHANGED, StoreEvent.NOTES_CHANGED)
        return snapshot

    # -- confirmations ----------------------------------------------------

    def _issue(self, token: ConfirmationToken) -> ConfirmationToken:
        self._pending[token.id] = token
        return token

    def _describe(self, interval: Interval) -> str:
        seconds = stats.duration_seconds(interval)
        duration = stats.format_duration(seconds) if seconds is not None else "in progress"
        return (
            f"{format_time(interval.start_time, self._tz)}, {duration}, "
            f"intensity {interval.intensity} - {intensity_label(interval.intensity)}"
        )

    def request_delete(self, index: int) -> ConfirmationToken:
        """Ask to delete the interval at ``index``.

        Raises:
            IndexOutOfRangeError: If ``index`` is invalid.
        """
        interval = self._get(index)
        message = f"Are you sure you want to delete this contraction?\n- {self._describe(interval)}"
        return self._issue(
            ConfirmationToken(id=uuid.uuid4().hex, kind=ConfirmationKind.DELETE, message=message, index=index)
        )

    def request_clear(self) -> ConfirmationToken:
        """Ask to clear all data."""
        message = (
            "Are you sure you want to clear all data? This cannot be undone.\n"
            f"- {len(self._log)} contractions\n"
            f"- {len(self._notes)} characters of notes"
        )
        return self._issue(ConfirmationToken(id=uuid.uuid4().hex, kind=ConfirmationKind.CLEAR, message=message))

    def request_import(
        self,
        snapshot: Snapshot | Mapping[str, Any],
        source: str = "file",
    ) -> ConfirmationToken:
        """Validate incoming data and ask to replace the current state with it.

        Raises:
            MalformedSnapshotError: If a raw document fails validation.
        """
        if not isinstance(snapshot, Snapshot):
            snapshot = decode_document(snapshot)
        exported = snapshot.exported_at.astimezone(self._tz).strftime("%Y-%m-%d %H:%M:%S")
        message = (
            f"This will replace all current data with the {source} backup from {exported}.\n\n"
            "Current data:\n"
            f"- {len(self._log)} contractions\n"
            f"- {len(self._notes)} characters of notes\n\n"
            "Backup data:\n"
            f"- {len(snapshot.intervals)} contractions\n"
            f"- {len(snapshot.notes)} characters of notes"
        )
        return self._issue(
            ConfirmationToken(
                id=uuid.uuid4().hex,
                kind=ConfirmationKind.IMPORT,
                message=message,
                snapshot=snapshot,
                source=source,
            )
        )

    def confirm(self, token: ConfirmationToken) -> Any:
        """Carry out a pending operation.

        Returns:
            The deleted interval, the imported snapshot, or None for a clear.

        Raises:
            StaleConfirmationError: If the token was already used or cancelled,
                or the store changed since it was issued.
        """
        if self._pending.pop(token.id, None) is None:
            raise StaleConfirmationError("This confirmation is no longer valid. Please try again.")
        if token.kind is ConfirmationKind.DELETE:
            return self.delete_at(token.index)
        if token.kind is ConfirmationKind.CLEAR:
            return self.clear_all()
        return self.import_snapshot(token.snapshot)

    def cancel(self, token: ConfirmationToken) -> None:
        """Discard a pending operation."""
        self._pending.pop(token.id, None)

    # -- derived statistics -----------------------------------------------

    def last_duration(self) -> str | None:
        """``M:SS`` of the most recent interval, None if unknown."""
        seconds = stats.last_duration(self._log)
        return stats.format_duration(seconds) if seconds is not None else None

    def time_between_last_two(self) -> int | None:
        """Minutes between the last two start times, None if unknown."""
        return stats.time_between_last_two(self._log)

    def recent_history(self, n: int = stats.DEFAULT_HISTORY_LIMIT) -> list[stats.HistoryEntry]:
        return stats.recent_history(self._log, n)

    def chart_series(self) -> list[stats.ChartPoint]:
        return stats.chart_series(self._log, self._tz)
