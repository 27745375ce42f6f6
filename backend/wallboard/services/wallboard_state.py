from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from wallboard.models.schemas import AgentView, LiveCallView, WallboardSnapshot
from wallboard.services.agent_directory import AgentDirectory
from wallboard.services.call_registry import CallRegistry
from wallboard.services.counters import AggregateCounters


@dataclass
class WallboardState:
    """Everything the reconciler owns, bundled so tests can build a fresh instance."""

    calls: CallRegistry = field(default_factory=CallRegistry)
    agents: AgentDirectory = field(default_factory=AgentDirectory)
    counters: AggregateCounters = field(default_factory=AggregateCounters)
    window_date: Optional[date] = None

    def snapshot(self) -> WallboardSnapshot:
        return WallboardSnapshot(
            counters=self.counters.to_view(),
            live_calls=[
                LiveCallView(
                    call_id=record.call_id,
                    direction=record.direction,
                    agent_id=record.agent_id,
                    started_at=record.started_at,
                    phase=record.phase,
                    connected_at=record.connected_at,
                )
                for record in self.calls.live_calls()
            ],
            agents=[
                AgentView(
                    agent_id=agent.agent_id,
                    on_call_now=agent.on_call_now,
                    inbound_answered=agent.inbound_answered,
                    inbound_missed=agent.inbound_missed,
                    outbound_answered=agent.outbound_answered,
                    outbound_missed=agent.outbound_missed,
                )
                for agent in self.agents.all()
            ],
        )

    def roll_over(self, day: date) -> bool:
        """Start a new reporting window on ``day``. Live calls and presence survive."""
        if self.window_date is None:
            self.window_date = day
            return False
        if day <= self.window_date:
            return False
        self.counters.reset_window()
        self.agents.reset_counters()
        self.window_date = day
        return True
