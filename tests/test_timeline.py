"""Tests for timeline ordering."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from grievance_portal.services import order_timeline


T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@dataclass
class Event:
    sequence: int
    updated_at: datetime
    label: str


class TestOrderTimeline:
    def test_newest_first(self):
        events = [
            Event(1, T0, "submitted"),
            Event(2, T0 + timedelta(hours=2), "comment"),
            Event(3, T0 + timedelta(hours=1), "assigned"),
        ]

        ordered = order_timeline(events)

        assert [e.label for e in ordered] == ["comment", "assigned", "submitted"]

    def test_equal_timestamps_keep_insertion_order(self):
        """Ties keep the order the events were recorded in."""
        events = [
            Event(3, T0, "third"),
            Event(1, T0, "first"),
            Event(2, T0, "second"),
            Event(4, T0 + timedelta(minutes=5), "later"),
        ]

        ordered = order_timeline(events)

        assert [e.label for e in ordered] == ["later", "first", "second", "third"]

    def test_input_is_not_modified(self):
        events = [Event(1, T0, "a"), Event(2, T0 + timedelta(seconds=1), "b")]
        snapshot = list(events)

        order_timeline(events)

        assert events == snapshot

    def test_empty(self):
        assert order_timeline([]) == []
