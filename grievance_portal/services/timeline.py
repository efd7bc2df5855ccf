"""Display ordering for case timelines."""

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol, TypeVar


class TimelineEvent(Protocol):
    updated_at: datetime
    sequence: int


E = TypeVar("E", bound=TimelineEvent)


def order_timeline(events: Iterable[E]) -> list[E]:
    """Return events newest first.

    Events sharing a timestamp keep their insertion order. The input is
    never modified.
    """
    by_insertion = sorted(events, key=lambda event: event.sequence or 0)
    # sorted() is stable, so the insertion order survives for equal timestamps
    return sorted(by_insertion, key=lambda event: event.updated_at, reverse=True)
