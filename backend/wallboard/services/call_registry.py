from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional

from wallboard.models.schemas import CallPhase, Direction


@dataclass
class CallRecord:
    call_id: str
    direction: Direction
    started_at: datetime
    phase: CallPhase = "RINGING"
    agent_id: Optional[str] = None
    connected_at: Optional[datetime] = None

    def __setattr__(self, name: str, value: object) -> None:
        # direction is fixed at creation; connected_at is write-once.
        if name == "direction" and "direction" in self.__dict__:
            raise AttributeError("call direction cannot change")
        if name == "connected_at" and self.__dict__.get("connected_at") is not None:
            raise AttributeError("connected_at is already set")
        super().__setattr__(name, value)

    @property
    def is_connected(self) -> bool:
        return self.connected_at is not None

    def mark_connected(self, at: datetime) -> bool:
        if self.connected_at is not None:
            return False
        self.connected_at = at
        self.phase = "CONNECTED"
        return True


class CallRegistry:
    """Live calls keyed by upstream call id. Ended calls are removed, never stored."""

    def __init__(self) -> None:
        self._calls: Dict[str, CallRecord] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._calls

    def __iter__(self) -> Iterator[CallRecord]:
        return iter(list(self._calls.values()))

    def get(self, call_id: str) -> Optional[CallRecord]:
        return self._calls.get(call_id)

    def open(
        self,
        call_id: str,
        direction: Direction,
        started_at: datetime,
        *,
        agent_id: Optional[str] = None,
    ) -> CallRecord:
        if call_id in self._calls:
            raise KeyError(f"call {call_id} is already live")
        record = CallRecord(
            call_id=call_id,
            direction=direction,
            started_at=started_at,
            agent_id=agent_id,
        )
        self._calls[call_id] = record
        return record

    def remove(self, call_id: str) -> Optional[CallRecord]:
        return self._calls.pop(call_id, None)

    def live_calls(self) -> List[CallRecord]:
        return sorted(self._calls.values(), key=lambda record: (record.started_at, record.call_id))

    def stale(self, now: datetime, max_age: timedelta) -> List[CallRecord]:
        cutoff = now - max_age
        return [record for record in self.live_calls() if record.started_at < cutoff]

    def references_agent(self, agent_id: str) -> bool:
        return any(record.agent_id == agent_id for record in self._calls.values())
