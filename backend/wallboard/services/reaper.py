from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from wallboard.core.telemetry import log_event
from wallboard.services.normalizer import NormalizedEvent
from wallboard.services.reconciler import LifecycleReconciler, Transition
from wallboard.services.wallboard_state import WallboardState


class StaleCallReaper:
    """Force-close calls whose terminal webhook never arrived.

    Each stale record is closed by a synthesized ``end`` event fed through the
    reconciler, so the outcome is classified exactly like a delivered hang-up.
    """

    def __init__(self, reconciler: LifecycleReconciler, *, max_age_seconds: int = 30 * 60) -> None:
        self._reconciler = reconciler
        self._max_age = timedelta(seconds=max_age_seconds)

    @property
    def max_age(self) -> timedelta:
        return self._max_age

    def sweep(self, state: WallboardState, now: Optional[datetime] = None) -> List[Transition]:
        now = now or datetime.now(timezone.utc)
        transitions: List[Transition] = []
        for record in state.calls.stale(now, self._max_age):
            forced_end = NormalizedEvent(
                kind="end",
                call_id=record.call_id,
                direction=record.direction,
                observed_at=now,
                agent_id=record.agent_id,
                event_name="REAPER_FORCED_END",
                source="reaper",
            )
            transitions.append(self._reconciler.apply(state, forced_end))

        if transitions:
            log_event(
                "reaper",
                "sweep",
                status="warning",
                details={
                    "reaped": len(transitions),
                    "max_age_seconds": int(self._max_age.total_seconds()),
                    "remaining_live_calls": len(state.calls),
                },
            )
        return transitions
