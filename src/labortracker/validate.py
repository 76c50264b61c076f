"""Structural validation of imported snapshots.

Validation runs on the verbose wire form (``contractions``, ``notes``,
``exportDate``, ``version``) before anything touches the store. A single bad
interval invalidates the whole snapshot.
"""

from collections.abc import Mapping
from typing import Any

from labortracker.errors import MalformedSnapshotError
from labortracker.models import MAX_INTENSITY, MIN_INTENSITY
from labortracker.timeutil import parse_timestamp


def _check_interval(position: int, item: Any) -> None:
    if not isinstance(item, Mapping):
        raise MalformedSnapshotError(f"contraction {position} is not an object")

    try:
        start = parse_timestamp(item.get("startTime"))
    except ValueError:
        raise MalformedSnapshotError(f"contraction {position} has an invalid startTime") from None

    end_value = item.get("endTime")
    if end_value is not None:
        try:
            end = parse_timestamp(end_value)
        except ValueError:
            raise MalformedSnapshotError(f"contraction {position} has an invalid endTime") from None
        if end < start:
            raise MalformedSnapshotError(f"contraction {position} ends before it starts")

    if "intensity" in item:
        intensity = item["intensity"]
        if (
            isinstance(intensity, bool)
            or not isinstance(intensity, int)
            or not MIN_INTENSITY <= intensity <= MAX_INTENSITY
        ):
            raise MalformedSnapshotError(
                f"contraction {position} has intensity {intensity!r}, expected 1-5"
            )


def validate_intervals(items: list[Any]) -> None:
    """Validate a list of verbose interval objects.

    Raises:
        MalformedSnapshotError: On the first invalid interval.
    """
    for position, item in enumerate(items):
        _check_interval(position, item)


def validate(data: Any) -> None:
    """Validate a verbose snapshot document.

    Args:
        data: Decoded JSON document.

    Raises:
        MalformedSnapshotError: On the first failed check, with its reason.
    """
    if not isinstance(data, Mapping):
        raise MalformedSnapshotError("not a JSON object")
    if not isinstance(data.get("contractions"), list):
        raise MalformedSnapshotError("'contractions' must be a list")
    if not isinstance(data.get("notes"), str):
        raise MalformedSnapshotError("'notes' must be text")
    if not data.get("exportDate"):
        raise MalformedSnapshotError("'exportDate' is missing")
    if not data.get("version"):
        raise MalformedSnapshotError("'version' is missing")

    validate_intervals(data["contractions"])


def is_valid(data: Any) -> bool:
    """Boolean form of :func:`validate`."""
    try:
        validate(data)
    except MalformedSnapshotError:
        return False
    return True
