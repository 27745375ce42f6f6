from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Mapping, Optional

from wallboard.core.telemetry import log_event
from wallboard.models.schemas import CallOutcome
from wallboard.services.call_registry import CallRecord
from wallboard.services.normalizer import NormalizedEvent
from wallboard.services.wallboard_state import WallboardState


TransitionAction = Literal["created", "connected", "closed", "duplicate", "unknown_call", "ignored"]

_MUTATING_ACTIONS = {"created", "connected", "closed"}


@dataclass(frozen=True)
class Transition:
    event: NormalizedEvent
    action: TransitionAction
    outcome: Optional[CallOutcome] = None
    agent_id: Optional[str] = None

    @property
    def mutated(self) -> bool:
        return self.action in _MUTATING_ACTIONS


def _hints_indicate_answered(hints: Mapping[str, Any]) -> bool:
    code = str(hints.get("CALL_FAILED_CODE", "")).strip()
    try:
        duration = float(hints.get("CALL_DURATION") or 0)
    except (TypeError, ValueError):
        duration = 0.0
    return code == "200" and duration > 0


class LifecycleReconciler:
    """Apply normalized lifecycle events to a :class:`WallboardState`.

    Outcome counters move exactly once per call, when it is closed by an ``end``
    event (real or synthesized by the reaper). The in-progress gauge is the only
    value touched earlier: +1 when a record is created, -1 when it is closed.
    Re-delivered events are detected from the current phase and absorbed.
    """

    def __init__(self, *, classify_with_status_hints: bool = False) -> None:
        self._classify_with_status_hints = classify_with_status_hints

    def apply(self, state: WallboardState, event: NormalizedEvent) -> Transition:
        if event.kind == "init":
            return self._on_init(state, event)
        if event.kind == "connected":
            return self._on_connected(state, event)
        if event.kind == "end":
            return self._on_end(state, event)

        log_event(
            "reconciler",
            "unhandled_event",
            call_id=event.call_id,
            details={"event": event.event_name or "(empty)"},
        )
        return Transition(event=event, action="ignored")

    @staticmethod
    def _event_time(event: NormalizedEvent) -> datetime:
        # Never later than local receipt; the reaper ages calls against the local clock.
        if event.received_at is None:
            return event.observed_at
        return min(event.observed_at, event.received_at)

    def _open(self, state: WallboardState, event: NormalizedEvent) -> CallRecord:
        record = state.calls.open(
            event.call_id,
            event.direction,
            self._event_time(event),
            agent_id=event.agent_id,
        )
        state.counters.open_call(record.direction)
        state.agents.set_on_call(record.agent_id, True)
        return record

    def _on_init(self, state: WallboardState, event: NormalizedEvent) -> Transition:
        if event.call_id in state.calls:
            return self._duplicate(event)

        record = self._open(state, event)
        log_event(
            "reconciler",
            "call_init",
            call_id=record.call_id,
            agent_id=record.agent_id,
            details={"direction": record.direction, "source": event.source},
        )
        return Transition(event=event, action="created", agent_id=record.agent_id)

    def _on_connected(self, state: WallboardState, event: NormalizedEvent) -> Transition:
        record = state.calls.get(event.call_id)
        if record is None:
            record = self._open(state, event)
            log_event(
                "reconciler",
                "call_materialized",
                call_id=record.call_id,
                agent_id=record.agent_id,
                details={"direction": record.direction, "reason": "connected_without_init"},
            )
        elif record.is_connected:
            return self._duplicate(event)

        if record.agent_id is None and event.agent_id:
            record.agent_id = event.agent_id
        record.mark_connected(self._event_time(event))
        state.agents.set_on_call(record.agent_id, True)
        log_event(
            "reconciler",
            "call_connected",
            call_id=record.call_id,
            agent_id=record.agent_id,
            details={"direction": record.direction},
        )
        return Transition(event=event, action="connected", agent_id=record.agent_id)

    def _on_end(self, state: WallboardState, event: NormalizedEvent) -> Transition:
        record = state.calls.get(event.call_id)
        if record is None:
            log_event(
                "reconciler",
                "end_for_unknown_call",
                call_id=event.call_id,
                details={"source": event.source},
            )
            return Transition(event=event, action="unknown_call")

        # First writer wins attribution; a late agent only fills a gap.
        agent_id = record.agent_id or event.agent_id
        outcome = self._classify(record, event)

        state.calls.remove(record.call_id)
        state.counters.close_call(record.direction, outcome)
        agent = state.agents.ensure(agent_id)
        if agent is not None:
            agent.record_outcome(record.direction, outcome)
            agent.on_call_now = state.calls.references_agent(agent.agent_id)

        log_event(
            "reconciler",
            "call_end",
            call_id=record.call_id,
            agent_id=agent_id,
            status="warning" if event.source == "reaper" else "ok",
            details={
                "direction": record.direction,
                "outcome": outcome,
                "source": event.source,
                **dict(event.status_hints),
            },
        )
        return Transition(event=event, action="closed", outcome=outcome, agent_id=agent_id)

    def _classify(self, record: CallRecord, event: NormalizedEvent) -> CallOutcome:
        answered = record.is_connected
        if not answered and self._classify_with_status_hints:
            answered = _hints_indicate_answered(event.status_hints)
        if answered:
            return "answered"
        return "missed" if record.direction == "IN" else "cancelled"

    def _duplicate(self, event: NormalizedEvent) -> Transition:
        log_event(
            "reconciler",
            "duplicate_event",
            status="debug",
            call_id=event.call_id,
            details={"kind": event.kind},
        )
        return Transition(event=event, action="duplicate")
