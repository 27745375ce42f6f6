from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


Direction = Literal["IN", "OUT"]
CallPhase = Literal["INITIATED", "RINGING", "CONNECTED", "ENDED"]
EventKind = Literal["init", "connected", "end", "unknown"]
CallOutcome = Literal["answered", "missed", "cancelled"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Wire models are serialized with camelCase keys for the dashboard."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IncomingCounters(CamelModel):
    in_progress: int = 0
    answered: int = 0
    missed: int = 0


class OutgoingCounters(CamelModel):
    in_progress: int = 0
    answered: int = 0
    cancelled: int = 0


class CountersView(CamelModel):
    incoming: IncomingCounters = Field(default_factory=IncomingCounters)
    outgoing: OutgoingCounters = Field(default_factory=OutgoingCounters)
    missed_dropped_abandoned: int = 0


class LiveCallView(CamelModel):
    call_id: str
    direction: Direction
    agent_id: Optional[str] = None
    started_at: datetime
    phase: CallPhase = "RINGING"
    connected_at: Optional[datetime] = None


class AgentView(CamelModel):
    agent_id: str
    on_call_now: bool = False
    inbound_answered: int = 0
    inbound_missed: int = 0
    outbound_answered: int = 0
    outbound_missed: int = 0


class WallboardSnapshot(CamelModel):
    counters: CountersView = Field(default_factory=CountersView)
    live_calls: List[LiveCallView] = Field(default_factory=list)
    agents: List[AgentView] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=_utcnow)


class DebugState(WallboardSnapshot):
    ok: bool = True
    portals_stored: int = 0
    handler: str = ""


class WallboardEvent(BaseModel):
    type: Literal["wallboard_snapshot"] = "wallboard_snapshot"
    data: Dict[str, Any]
    timestamp: datetime = Field(default_factory=_utcnow)


class WebhookAck(BaseModel):
    ok: bool = True


class InstallResponse(BaseModel):
    ok: bool
    message: str
    handler: str
