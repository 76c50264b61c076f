"""Tests for the contraction log store."""

from datetime import datetime, timedelta, timezone

import pytest

from labortracker.errors import (
    ConflictError,
    IndexOutOfRangeError,
    InvalidDurationError,
    InvalidFormatError,
    InvalidIntensityError,
    MalformedSnapshotError,
    NoOpenIntervalError,
    StaleConfirmationError,
)
from labortracker.models import Interval, Snapshot
from labortracker.store import (
    ConfirmationKind,
    EventLogStore,
    StoreEvent,
    check_intensity,
    parse_duration,
)

UTC = timezone.utc


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def at(hour: int, minute: int = 0, second: int = 0) -> datetime:
    return datetime(2024, 5, 1, hour, minute, second, tzinfo=UTC)


class FakeClock:
    """Settable clock for deterministic timing."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _make_store(*spans: tuple[datetime, int], notes: str = "", clock: FakeClock | None = None) -> EventLogStore:
    """Build a store from (start, duration_seconds) pairs."""
    intervals = [
        Interval(start_time=start, end_time=start + timedelta(seconds=seconds))
        for start, seconds in spans
    ]
    return EventLogStore(intervals=intervals, notes=notes, clock=clock or FakeClock(at(12)), tz=UTC)


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------


class TestTimer:
    def test_start_and_end_records_interval(self) -> None:
        clock = FakeClock(at(10))
        store = EventLogStore(clock=clock)

        started = store.start_interval()
        assert started.is_open
        assert started.intensity == 3
        assert len(store) == 0

        clock.advance(seconds=75)
        completed = store.end_interval(intensity=4)

        assert completed.start_time == at(10)
        assert completed.end_time == at(10, 1, 15)
        assert completed.intensity == 4
        assert store.current is None
        assert store.intervals == (completed,)

    def test_end_keeps_default_intensity(self) -> None:
        clock = FakeClock(at(10))
        store = EventLogStore(clock=clock)
        store.start_interval()
        clock.advance(seconds=30)

        assert store.end_interval().intensity == 3

    def test_start_while_open_conflicts(self) -> None:
        store = EventLogStore(clock=FakeClock(at(10)))
        store.start_interval()

        with pytest.raises(ConflictError):
            store.start_interval()

    def test_end_without_open_interval(self) -> None:
        store = EventLogStore(clock=FakeClock(at(10)))

        with pytest.raises(NoOpenIntervalError):
            store.end_interval()

    def test_end_with_bad_intensity_keeps_interval_open(self) -> None:
        clock = FakeClock(at(10))
        store = EventLogStore(clock=clock)
        store.start_interval()
        clock.advance(seconds=10)

        with pytest.raises(InvalidIntensityError):
            store.end_interval(intensity=6)

        assert store.current is not None
        assert len(store) == 0

    def test_completed_interval_is_inserted_in_order(self) -> None:
        clock = FakeClock(at(8))
        store = _make_store((at(9), 60), clock=clock)

        store.start_interval()
        clock.advance(seconds=45)
        store.end_interval()

        assert [i.start_time for i in store.intervals] == [at(8), at(9)]

    def test_elapsed_seconds(self) -> None:
        clock = FakeClock(at(10))
        store = EventLogStore(clock=clock)
        assert store.elapsed_seconds() is None

        store.start_interval()
        clock.advance(seconds=65, milliseconds=900)

        assert store.elapsed_seconds() == 65

    def test_discard_current(self) -> None:
        store = EventLogStore(clock=FakeClock(at(10)))
        store.start_interval()

        assert store.discard_current() is not None
        assert store.current is None
        assert len(store) == 0


# ---------------------------------------------------------------------------
# Manual entry and edits
# ---------------------------------------------------------------------------


class TestParseDuration:
    @pytest.mark.parametrize("value, expected", [(90, 90), ("90", 90), ("1:30", 90), ("0:05", 5), ("12:00", 720)])
    def test_valid(self, value, expected) -> None:
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", [0, -5, "0", "0:00", 1.5, None, True])
    def test_not_positive_integer(self, value) -> None:
        with pytest.raises(InvalidDurationError):
            parse_duration(value)

    @pytest.mark.parametrize("value", ["1:75", "abc", "1:5", "-5", "1:30:00", ""])
    def test_bad_format(self, value) -> None:
        with pytest.raises(InvalidFormatError):
            parse_duration(value)


class TestCheckIntensity:
    @pytest.mark.parametrize("value", [1, 3, 5])
    def test_in_range(self, value) -> None:
        assert check_intensity(value) == value

    @pytest.mark.parametrize("value", [0, 6, -1, True, 2.0, "3", None])
    def test_rejected(self, value) -> None:
        with pytest.raises(InvalidIntensityError):
            check_intensity(value)


class TestManualEntry:
    def test_end_minus_start_equals_duration(self) -> None:
        store = _make_store()
        interval = store.add_manual_interval(at(9, 15), 83, intensity=2)

        assert interval.end_time - interval.start_time == timedelta(seconds=83)
        assert interval.intensity == 2

    def test_log_stays_sorted(self) -> None:
        store = _make_store((at(9), 60), (at(11), 60))
        store.add_manual_interval(at(10), 90)
        store.add_manual_interval(at(8), "1:00")

        starts = [i.start_time for i in store.intervals]
        assert starts == sorted(starts)
        assert starts == [at(8), at(9), at(10), at(11)]

    def test_default_intensity(self) -> None:
        store = _make_store()
        assert store.add_manual_interval(at(9), 60).intensity == 3

    @pytest.mark.parametrize("duration", [0, -30])
    def test_non_positive_duration(self, duration) -> None:
        store = _make_store()

        with pytest.raises(InvalidDurationError):
            store.add_manual_interval(at(9), duration)
        assert len(store) == 0

    def test_bad_duration_format(self) -> None:
        store = _make_store()

        with pytest.raises(InvalidFormatError):
            store.add_manual_interval(at(9), "1:99")

    def test_bad_intensity(self) -> None:
        store = _make_store()

        with pytest.raises(InvalidIntensityError):
            store.add_manual_interval(at(9), 60, intensity=0)
        assert len(store) == 0

    def test_sub_millisecond_digits_are_dropped(self) -> None:
        store = _make_store()
        start = datetime(2024, 5, 1, 9, 0, 0, 123456, tzinfo=UTC)

        interval = store.add_manual_interval(start, 60)

        assert interval.start_time.microsecond == 123000


class TestEdits:
    def test_edit_start_time_preserves_duration(self) -> None:
        store = _make_store((at(10), 90))

        edited = store.edit_start_time(0, at(11))

        assert edited.start_time == at(11)
        assert edited.end_time == at(11, 1, 30)

    def test_edit_start_time_preserves_millisecond_duration(self) -> None:
        start = at(10)
        store = EventLogStore(
            intervals=[Interval(start_time=start, end_time=start + timedelta(seconds=61, milliseconds=250))]
        )

        edited = store.edit_start_time(0, at(10, 30))

        assert edited.end_time - edited.start_time == timedelta(seconds=61, milliseconds=250)

    def test_edit_start_time_keeps_intensity_and_resorts(self) -> None:
        store = EventLogStore(
            intervals=[
                Interval(start_time=at(9), end_time=at(9, 1), intensity=5),
                Interval(start_time=at(10), end_time=at(10, 1)),
            ]
        )

        store.edit_start_time(0, at(11))

        assert [i.start_time for i in store.intervals] == [at(10), at(11)]
        assert store.intervals[1].intensity == 5

    def test_edit_start_time_rejects_open_interval(self) -> None:
        store = EventLogStore(intervals=[Interval(start_time=at(9))])

        with pytest.raises(IndexOutOfRangeError):
            store.edit_start_time(0, at(10))

    @pytest.mark.parametrize("index", [-1, 1, 5])
    def test_edit_start_time_bad_index(self, index) -> None:
        store = _make_store((at(9), 60))

        with pytest.raises(IndexOutOfRangeError):
            store.edit_start_time(index, at(10))

    def test_edit_duration(self) -> None:
        store = _make_store((at(9), 60), (at(10), 60))

        edited = store.edit_duration(0, "2:00")

        assert edited.end_time == at(9, 2)
        assert store.intervals[0] == edited

    def test_edit_duration_rejects_zero(self) -> None:
        store = _make_store((at(9), 60))

        with pytest.raises(InvalidDurationError):
            store.edit_duration(0, 0)
        assert store.intervals[0].end_time == at(9, 1)

    @pytest.mark.parametrize("value", [0, 6])
    def test_edit_intensity_out_of_range(self, value) -> None:
        store = _make_store((at(9), 60))

        with pytest.raises(InvalidIntensityError):
            store.edit_intensity(0, value)
        assert store.intervals[0].intensity == 3

    def test_edit_intensity(self) -> None:
        store = _make_store((at(9), 60))

        assert store.edit_intensity(0, 5).intensity == 5
        assert store.intervals[0].intensity == 5

    def test_delete_at(self) -> None:
        store = _make_store((at(9), 60), (at(10), 60))

        removed = store.delete_at(0)

        assert removed.start_time == at(9)
        assert [i.start_time for i in store.intervals] == [at(10)]

    def test_delete_bad_index(self) -> None:
        store = _make_store()

        with pytest.raises(IndexOutOfRangeError):
            store.delete_at(0)

    def test_clear_all(self) -> None:
        store = _make_store((at(9), 60), notes="hello")
        store.start_interval()

        store.clear_all()

        assert len(store) == 0
        assert store.notes == ""
        assert store.current is None


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


class TestDerivedStatistics:
    def test_unknown_when_empty(self) -> None:
        store = _make_store()

        assert store.last_duration() is None
        assert store.time_between_last_two() is None

    def test_last_duration_formats_floored_seconds(self) -> None:
        start = at(10)
        store = EventLogStore(
            intervals=[Interval(start_time=start, end_time=start + timedelta(seconds=89, milliseconds=999))]
        )

        assert store.last_duration() == "1:29"

    def test_last_duration_unknown_while_last_is_open(self) -> None:
        store = EventLogStore(intervals=[Interval(start_time=at(9), end_time=at(9, 1)), Interval(start_time=at(10))])

        assert store.last_duration() is None

    def test_time_between_last_two(self) -> None:
        store = _make_store((at(9), 90), (at(9, 10), 60))

        assert store.time_between_last_two() == 10

    def test_time_between_needs_two(self) -> None:
        store = _make_store((at(9), 90))

        assert store.time_between_last_two() is None


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class TestSnapshots:
    def test_export_contains_log_and_notes(self) -> None:
        clock = FakeClock(at(12))
        store = _make_store((at(9), 60), notes="calm", clock=clock)

        snapshot = store.export_snapshot()

        assert snapshot.intervals == list(store.intervals)
        assert snapshot.notes == "calm"
        assert snapshot.exported_at == at(12)
        assert snapshot.format_version == "1.1"

    def test_export_after_import_is_idempotent(self) -> None:
        incoming = Snapshot(
            intervals=[
                Interval(start_time=at(9), end_time=at(9, 1), intensity=2),
                Interval(start_time=at(9, 12), end_time=at(9, 13, 5), intensity=5),
            ],
            notes="water broke 08:40",
            exported_at=at(8),
            format_version="2.0",
        )
        store = _make_store((at(7), 60), notes="old")

        store.import_snapshot(incoming)
        exported = store.export_snapshot()

        assert exported.intervals == incoming.intervals
        assert exported.notes == incoming.notes

    def test_import_sorts_intervals(self) -> None:
        store = _make_store()
        store.import_snapshot(
            {
                "contractions": [
                    {"startTime": "2024-05-01T10:00:00.000Z", "endTime": "2024-05-01T10:01:00.000Z"},
                    {"startTime": "2024-05-01T09:00:00.000Z", "endTime": None, "intensity": 4},
                ],
                "notes": "",
                "exportDate": "2024-05-01T11:00:00.000Z",
                "version": "1.1",
            }
        )

        assert [i.start_time for i in store.intervals] == [at(9), at(10)]
        assert store.intervals[0].is_open
        assert store.intervals[1].intensity == 3

    def test_import_malformed_date_leaves_state_unchanged(self) -> None:
        store = _make_store((at(9), 60), notes="keep me")
        before = store.intervals

        with pytest.raises(MalformedSnapshotError):
            store.import_snapshot(
                {
                    "contractions": [{"startTime": "not a date", "endTime": None}],
                    "notes": "",
                    "exportDate": "2024-05-01T11:00:00.000Z",
                    "version": "1.1",
                }
            )

        assert store.intervals == before
        assert store.notes == "keep me"


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


class TestSubscriptions:
    def test_events_per_mutation(self) -> None:
        store = _make_store((at(9), 60))
        events: list[StoreEvent] = []
        store.subscribe(events.append)

        store.add_manual_interval(at(10), 60)
        store.set_notes("note")
        store.clear_all()

        assert events == [
            StoreEvent.LOG_CHANGED,
            StoreEvent.NOTES_CHANGED,
            StoreEvent.LOG_CHANGED,
            StoreEvent.NOTES_CHANGED,
        ]

    def test_start_does_not_notify(self) -> None:
        store = _make_store()
        events: list[StoreEvent] = []
        store.subscribe(events.append)

        store.start_interval()

        assert events == []

    def test_unchanged_notes_do_not_notify(self) -> None:
        store = _make_store(notes="same")
        events: list[StoreEvent] = []
        store.subscribe(events.append)

        store.set_notes("same")

        assert events == []

    def test_unsubscribe(self) -> None:
        store = _make_store()
        events: list[StoreEvent] = []
        unsubscribe = store.subscribe(events.append)

        unsubscribe()
        store.add_manual_interval(at(10), 60)

        assert events == []

    def test_failing_listener_does_not_block_others(self, caplog) -> None:
        store = _make_store()
        events: list[StoreEvent] = []

        def broken(event: StoreEvent) -> None:
            raise RuntimeError("boom")

        store.subscribe(broken)
        store.subscribe(events.append)

        store.add_manual_interval(at(10), 60)

        assert events == [StoreEvent.LOG_CHANGED]
        assert len(store) == 1
        assert "Store listener failed" in caplog.text


# ---------------------------------------------------------------------------
# Confirmations
# ---------------------------------------------------------------------------


class TestConfirmations:
    def test_delete_requires_confirm(self) -> None:
        store = _make_store((at(9), 90), (at(10), 60))

        token = store.request_delete(0)

        assert token.kind is ConfirmationKind.DELETE
        assert "09:00:00" in token.message
        assert "1:30" in token.message
        assert len(store) == 2

        store.confirm(token)
        assert [i.start_time for i in store.intervals] == [at(10)]

    def test_token_is_single_use(self) -> None:
        store = _make_store((at(9), 60), (at(10), 60))
        token = store.request_delete(0)
        store.confirm(token)

        with pytest.raises(StaleConfirmationError):
            store.confirm(token)
        assert len(store) == 1

    def test_mutation_invalidates_token(self) -> None:
        store = _make_store((at(9), 60), (at(10), 60))
        token = store.request_delete(1)

        store.add_manual_interval(at(11), 60)

        with pytest.raises(StaleConfirmationError):
            store.confirm(token)
        assert len(store) == 3

    def test_cancelled_token(self) -> None:
        store = _make_store((at(9), 60))
        token = store.request_delete(0)

        store.cancel(token)

        with pytest.raises(StaleConfirmationError):
            store.confirm(token)
        assert len(store) == 1

    def test_request_delete_bad_index(self) -> None:
        store = _make_store()

        with pytest.raises(IndexOutOfRangeError):
            store.request_delete(0)

    def test_clear_summary(self) -> None:
        store = _make_store((at(9), 60), (at(10), 60), notes="12345")

        token = store.request_clear()

        assert "2 contractions" in token.message
        assert "5 characters of notes" in token.message
        store.confirm(token)
        assert len(store) == 0
        assert store.notes == ""

    def test_import_summary_and_apply(self) -> None:
        store = _make_store((at(9), 60), notes="abc")
        incoming = Snapshot(
            intervals=[Interval(start_time=at(10), end_time=at(10, 1))] * 3,
            notes="hello world",
            exported_at=at(11),
        )

        token = store.request_import(incoming, source="file")

        assert "Current data:\n- 1 contractions\n- 3 characters of notes" in token.message
        assert "Backup data:\n- 3 contractions\n- 11 characters of notes" in token.message
        assert len(store) == 1

        store.confirm(token)
        assert len(store) == 3
        assert store.notes == "hello world"

    def test_invalid_import_issues_no_token(self) -> None:
        store = _make_store((at(9), 60))

        with pytest.raises(MalformedSnapshotError):
            store.request_import({"contractions": "nope", "notes": "", "exportDate": "x", "version": "1"})
