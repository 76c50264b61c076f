"""Type definitions for the contraction log.

This module defines the Pydantic models for recorded intervals, export
snapshots and the two wire forms used to exchange them.
"""

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

from labortracker.timeutil import normalize, to_epoch_ms, to_iso

DEFAULT_INTENSITY = 3
MIN_INTENSITY = 1
MAX_INTENSITY = 5

# Version written into verbose exports
FORMAT_VERSION = "1.1"
# Version assigned to snapshots decoded from the compact form
COMPACT_FORMAT_VERSION = "2.0"

INTENSITY_LABELS: dict[int, str] = {
    1: "Light",
    2: "Mild",
    3: "Medium",
    4: "Strong",
    5: "Heavy",
}

Timestamp = Annotated[datetime, AfterValidator(normalize)]


def intensity_label(intensity: int | None) -> str:
    """Get the display label for an intensity rating."""
    return INTENSITY_LABELS.get(intensity or DEFAULT_INTENSITY, "Medium")


class Interval(BaseModel):
    """A single recorded contraction.

    Attributes:
        start_time: When the contraction started.
        end_time: When it ended, or None while still open.
        intensity: Rating from 1 (light) to 5 (heavy).
    """

    model_config = ConfigDict(frozen=True)

    start_time: Timestamp = Field(..., description="Start timestamp")
    end_time: Timestamp | None = Field(default=None, description="End timestamp, None while open")
    intensity: int = Field(
        default=DEFAULT_INTENSITY,
        ge=MIN_INTENSITY,
        le=MAX_INTENSITY,
        strict=True,
        description="Intensity rating 1-5",
    )

    @model_validator(mode="after")
    def _check_order(self) -> "Interval":
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError("end_time must not be earlier than start_time")
        return self

    @property
    def is_open(self) -> bool:
        """Whether the interval has not ended yet."""
        return self.end_time is None

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the verbose JSON object form."""
        return {
            "startTime": to_iso(self.start_time),
            "endTime": to_iso(self.end_time) if self.end_time is not None else None,
            "intensity": self.intensity,
        }

    def to_tuple(self) -> list[int | None]:
        """Serialize to the compact ``[start_ms, end_ms, intensity]`` form."""
        return [
            to_epoch_ms(self.start_time),
            to_epoch_ms(self.end_time) if self.end_time is not None else None,
            self.intensity,
        ]


class Snapshot(BaseModel):
    """A full export unit: the interval log plus notes.

    Attributes:
        intervals: Recorded intervals in chronological order.
        notes: Free-text notes.
        exported_at: When the snapshot was produced.
        format_version: Wire format version the snapshot came from.
    """

    intervals: list[Interval] = Field(default_factory=list, description="Recorded intervals")
    notes: str = Field(default="", description="Caregiver notes")
    exported_at: Timestamp = Field(..., description="Export timestamp")
    format_version: str = Field(default=FORMAT_VERSION, description="Format version")


class VerboseSnapshot(BaseModel):
    """Verbose JSON wire form.

    Field names follow the exported file format
    (``contractions``, ``notes``, ``exportDate``, ``version``).
    """

    model_config = ConfigDict(populate_by_name=True)

    contractions: list[dict[str, Any]] = Field(default_factory=list)
    notes: str = ""
    export_date: str | int | float = Field(..., alias="exportDate")
    version: str = FORMAT_VERSION

    @field_validator("version", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> Any:
        # Older exports may carry numeric versions
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "VerboseSnapshot":
        return cls(
            contractions=[interval.to_wire() for interval in snapshot.intervals],
            notes=snapshot.notes,
            export_date=to_iso(snapshot.exported_at),
            version=snapshot.format_version,
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class CompactSnapshotV2(BaseModel):
    """Compact positional wire form used for QR codes and share URLs.

    Attributes:
        c: One ``[start_ms, end_ms|None, intensity]`` tuple per interval.
        n: Notes text.
        d: Export time in epoch milliseconds.
        v: Format discriminator, always 2.
    """

    c: list[list[int | None]] = Field(default_factory=list)
    n: str | None = ""
    d: int
    v: Literal[2] = 2

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "CompactSnapshotV2":
        return cls(
            c=[interval.to_tuple() for interval in snapshot.intervals],
            n=snapshot.notes,
            d=to_epoch_ms(snapshot.exported_at),
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump()


WireSnapshot = VerboseSnapshot | CompactSnapshotV2
