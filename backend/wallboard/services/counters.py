from __future__ import annotations

from dataclasses import dataclass, field

from wallboard.models.schemas import (
    CallOutcome,
    CountersView,
    Direction,
    IncomingCounters,
    OutgoingCounters,
)


@dataclass
class DirectionCounters:
    in_progress: int = 0
    answered: int = 0
    # "missed" for inbound calls, "cancelled" for outbound calls
    unanswered: int = 0


@dataclass
class AggregateCounters:
    incoming: DirectionCounters = field(default_factory=DirectionCounters)
    outgoing: DirectionCounters = field(default_factory=DirectionCounters)
    missed_dropped_abandoned: int = 0

    def for_direction(self, direction: Direction) -> DirectionCounters:
        return self.incoming if direction == "IN" else self.outgoing

    def open_call(self, direction: Direction) -> None:
        self.for_direction(direction).in_progress += 1

    def close_call(self, direction: Direction, outcome: CallOutcome) -> None:
        counters = self.for_direction(direction)
        counters.in_progress = max(0, counters.in_progress - 1)
        if outcome == "answered":
            counters.answered += 1
            return
        counters.unanswered += 1
        if direction == "IN":
            self.missed_dropped_abandoned += 1

    def reset_window(self) -> None:
        """Zero the monotonic counters; in-progress gauges follow live calls and are kept."""
        for counters in (self.incoming, self.outgoing):
            counters.answered = 0
            counters.unanswered = 0
        self.missed_dropped_abandoned = 0

    def to_view(self) -> CountersView:
        return CountersView(
            incoming=IncomingCounters(
                in_progress=self.incoming.in_progress,
                answered=self.incoming.answered,
                missed=self.incoming.unanswered,
            ),
            outgoing=OutgoingCounters(
                in_progress=self.outgoing.in_progress,
                answered=self.outgoing.answered,
                cancelled=self.outgoing.unanswered,
            ),
            missed_dropped_abandoned=self.missed_dropped_abandoned,
        )
