"""Labor Tracker - a contraction timer and log with shareable snapshots."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("labor-tracker")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from labortracker.errors import LaborTrackerError
from labortracker.models import Interval, Snapshot
from labortracker.store import ConfirmationToken, EventLogStore, StoreEvent

__all__ = [
    "EventLogStore",
    "StoreEvent",
    "ConfirmationToken",
    "Interval",
    "Snapshot",
    "LaborTrackerError",
]
