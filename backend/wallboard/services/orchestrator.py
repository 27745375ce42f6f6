from __future__ import annotations

import asyncio
from collections import deque
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from wallboard.core.telemetry import log_event, timed_step
from wallboard.models.schemas import WallboardEvent, WallboardSnapshot
from wallboard.services.normalizer import EventNormalizationError, normalize_event
from wallboard.services.reaper import StaleCallReaper
from wallboard.services.reconciler import LifecycleReconciler, Transition
from wallboard.services.wallboard_state import WallboardState
from wallboard.services.ws_manager import ConnectionManager


WALLBOARD_TOPIC = "wallboard"


def _resolve_timezone(name: Optional[str]) -> Optional[tzinfo]:
    if not name:
        return None
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        log_event(
            "orchestrator",
            "invalid_daily_reset_timezone",
            status="warning",
            details={"timezone": name},
        )
        return None


class WallboardOrchestrator:
    """Single owner of wallboard state.

    Every delivery runs normalize -> reconcile -> snapshot -> broadcast inside
    one lock, so duplicate retries racing the next phase of the same call are
    serialized and viewers only ever see post-transition snapshots.
    """

    def __init__(
        self,
        ws_manager: ConnectionManager,
        *,
        state: Optional[WallboardState] = None,
        reconciler: Optional[LifecycleReconciler] = None,
        max_call_age_seconds: int = 30 * 60,
        recent_events_limit: int = 25,
        daily_reset_timezone: Optional[str] = None,
        direction_from_call_type: bool = True,
    ) -> None:
        self._ws = ws_manager
        self._state = state or WallboardState()
        self._reconciler = reconciler or LifecycleReconciler()
        self._reaper = StaleCallReaper(self._reconciler, max_age_seconds=max_call_age_seconds)
        self._recent_events: deque[Dict[str, Any]] = deque(maxlen=max(1, recent_events_limit))
        self._reset_tz = _resolve_timezone(daily_reset_timezone)
        self._direction_from_call_type = direction_from_call_type
        self._lock = asyncio.Lock()

        if self._reset_tz is not None and self._state.window_date is None:
            self._state.window_date = datetime.now(self._reset_tz).date()

    @property
    def state(self) -> WallboardState:
        return self._state

    def snapshot(self) -> WallboardSnapshot:
        return self._state.snapshot()

    def recent_events(self) -> List[Dict[str, Any]]:
        return list(self._recent_events)

    def _remember(self, payload: Any, event_name: Optional[str], kind: Optional[str]) -> None:
        self._recent_events.appendleft(
            {
                "at": datetime.now(timezone.utc).isoformat(),
                "eventRaw": event_name,
                "eventName": kind,
                "body": payload,
            }
        )

    async def _broadcast(self, snapshot: WallboardSnapshot) -> None:
        event = WallboardEvent(data=snapshot.model_dump(mode="json", by_alias=True))
        await self._ws.broadcast(WALLBOARD_TOPIC, event.model_dump(mode="json"))

    async def ingest(self, payload: Mapping[str, Any]) -> Optional[Transition]:
        """Apply one webhook delivery. Bad or unexpected input degrades to a logged no-op."""
        async with self._lock:
            try:
                try:
                    event = normalize_event(payload, direction_from_call_type=self._direction_from_call_type)
                except EventNormalizationError as exc:
                    self._remember(payload, exc.event_name, None)
                    log_event(
                        "normalizer",
                        "event_dropped",
                        status="warning",
                        details={
                            "reason": exc.reason,
                            "event": exc.event_name,
                            "payload_keys": sorted(payload.keys()) if isinstance(payload, Mapping) else [],
                        },
                    )
                    return None

                self._remember(payload, event.event_name, event.kind)
                with timed_step("orchestrator", "reconcile", call_id=event.call_id, details={"kind": event.kind}):
                    transition = self._reconciler.apply(self._state, event)
                if transition.mutated:
                    await self._broadcast(self._state.snapshot())
                return transition
            except Exception as exc:
                log_event(
                    "orchestrator",
                    "ingest_error",
                    status="error",
                    details={"error": f"{type(exc).__name__}: {exc}"},
                )
                return None

    async def reap_stale_calls(self, now: Optional[datetime] = None) -> int:
        async with self._lock:
            transitions = self._reaper.sweep(self._state, now)
            if transitions:
                await self._broadcast(self._state.snapshot())
            return len(transitions)

    async def roll_over_if_due(self, now: Optional[datetime] = None) -> bool:
        if self._reset_tz is None:
            return False
        today = (now or datetime.now(timezone.utc)).astimezone(self._reset_tz).date()
        async with self._lock:
            rolled = self._state.roll_over(today)
            if rolled:
                log_event("orchestrator", "daily_rollover", details={"window_date": today.isoformat()})
                await self._broadcast(self._state.snapshot())
            return rolled

    async def run_maintenance(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.roll_over_if_due()
                await self.reap_stale_calls()
            except Exception as exc:
                log_event(
                    "orchestrator",
                    "maintenance_error",
                    status="error",
                    details={"error": f"{type(exc).__name__}: {exc}"},
                )
