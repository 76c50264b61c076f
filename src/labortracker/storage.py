"""File persistence for the contraction log.

State lives in two named string slots inside the data directory:
``contractions`` holds the JSON-serialized interval log and
``caregiverNotes`` holds the raw notes text. A missing slot means there is
no prior data.

Writes are best-effort: a failed write is logged and reported through the
return value, never retried.
"""

import json
import logging
from collections.abc import Callable
from pathlib import Path

from filelock import FileLock

from labortracker.codec import intervals_from_wire
from labortracker.errors import MalformedSnapshotError
from labortracker.models import Interval
from labortracker.store import EventLogStore, StoreEvent

logger = logging.getLogger(__name__)

LOG_SLOT = "contractions"
NOTES_SLOT = "caregiverNotes"


class SlotStorage:
    """Named text slots stored as files in a directory.

    Uses file locking to prevent concurrent modification issues.

    Example:
        slots = SlotStorage("/path/to/data")
        slots.set("notes", "hello")
        slots.get("notes")
    """

    def __init__(self, directory: str | Path) -> None:
        """Initialize the slot storage.

        Args:
            directory: Directory holding one file per slot.
        """
        self._dir = Path(directory)
        self._lock = FileLock(str(self._dir / ".slots.lock"))

    @property
    def directory(self) -> Path:
        """Get the storage directory."""
        return self._dir

    def _slot_path(self, key: str) -> Path:
        return self._dir / f"{key}.slot"

    def get(self, key: str) -> str | None:
        """Read a slot.

        Returns:
            Slot contents, or None if the slot does not exist.
        """
        path = self._slot_path(key)
        if not path.exists():
            return None
        with self._lock:
            return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        """Write a slot, creating the directory if needed."""
        self._dir.mkdir(parents=True, exist_ok=True)
        with self._lock:
            self._slot_path(key).write_text(value, encoding="utf-8")

    def remove(self, key: str) -> bool:
        """Delete a slot.

        Returns:
            True if the slot existed.
        """
        path = self._slot_path(key)
        if not path.exists():
            return False
        with self._lock:
            path.unlink(missing_ok=True)
        return True


class TrackerStorage:
    """Loads and saves the log and notes through two slots."""

    def __init__(self, directory: str | Path) -> None:
        self.slots = SlotStorage(directory)

    def load_intervals(self) -> list[Interval]:
        """Load the saved log.

        An unreadable log is logged and treated as empty.
        """
        try:
            raw = self.slots.get(LOG_SLOT)
            if not raw:
                return []
            items = json.loads(raw)
            if not isinstance(items, list):
                raise MalformedSnapshotError("saved log is not a list")
            intervals = intervals_from_wire(items)
        except (UnicodeDecodeError, json.JSONDecodeError, MalformedSnapshotError) as e:
            logger.warning(f"Ignoring unreadable contraction log in {self.slots.directory}: {e}")
            return []
        logger.debug(f"Loaded {len(intervals)} contractions from {self.slots.directory}")
        return intervals

    def load_notes(self) -> str:
        """Load the saved notes.

        Notes that are not valid UTF-8 are logged and treated as empty.
        """
        try:
            return self.slots.get(NOTES_SLOT) or ""
        except UnicodeDecodeError as e:
            logger.warning(f"Ignoring unreadable notes in {self.slots.directory}: {e}")
            return ""

    def save_intervals(self, intervals: list[Interval] | tuple[Interval, ...]) -> bool:
        """Save the log, removing the slot when it is empty.

        Returns:
            True if the write succeeded.
        """
        try:
            if intervals:
                self.slots.set(LOG_SLOT, json.dumps([interval.to_wire() for interval in intervals]))
            else:
                self.slots.remove(LOG_SLOT)
        except OSError as e:
            logger.error(f"Failed to save contractions: {e}")
            return False
        return True

    def save_notes(self, notes: str) -> bool:
        """Save the notes, removing the slot when they are empty.

        Returns:
            True if the write succeeded.
        """
        try:
            if notes:
                self.slots.set(NOTES_SLOT, notes)
            else:
                self.slots.remove(NOTES_SLOT)
        except OSError as e:
            logger.error(f"Failed to save notes: {e}")
            return False
        return True

    def load_store(self, **kwargs) -> EventLogStore:
        """Build a store from saved data and keep it saved.

        Args:
            **kwargs: Passed through to ``EventLogStore``.
        """
        store = EventLogStore(intervals=self.load_intervals(), notes=self.load_notes(), **kwargs)
        self.attach(store)
        return store

    def attach(self, store: EventLogStore) -> Callable[[], None]:
        """Save the store's log and notes whenever they change.

        Returns:
            Callable that stops saving.
        """

        def on_change(event: StoreEvent) -> None:
            if event is StoreEvent.LOG_CHANGED:
                self.save_intervals(store.intervals)
            elif event is StoreEvent.NOTES_CHANGED:
                self.save_notes(store.notes)

        return store.subscribe(on_change)
