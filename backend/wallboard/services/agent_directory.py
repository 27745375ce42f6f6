from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from wallboard.models.schemas import CallOutcome, Direction


@dataclass
class AgentRecord:
    agent_id: str
    on_call_now: bool = False
    inbound_answered: int = 0
    inbound_missed: int = 0
    outbound_answered: int = 0
    outbound_missed: int = 0

    def record_outcome(self, direction: Direction, outcome: CallOutcome) -> None:
        answered = outcome == "answered"
        if direction == "IN":
            if answered:
                self.inbound_answered += 1
            else:
                self.inbound_missed += 1
        elif answered:
            self.outbound_answered += 1
        else:
            self.outbound_missed += 1

    def reset_counters(self) -> None:
        self.inbound_answered = 0
        self.inbound_missed = 0
        self.outbound_answered = 0
        self.outbound_missed = 0


class AgentDirectory:
    """Agents are created on first reference and kept for the process lifetime."""

    def __init__(self) -> None:
        self._agents: Dict[str, AgentRecord] = {}

    def __len__(self) -> int:
        return len(self._agents)

    def get(self, agent_id: Optional[str]) -> Optional[AgentRecord]:
        if not agent_id:
            return None
        return self._agents.get(agent_id)

    def ensure(self, agent_id: Optional[str]) -> Optional[AgentRecord]:
        if not agent_id:
            return None
        agent = self._agents.get(agent_id)
        if agent is None:
            agent = AgentRecord(agent_id=agent_id)
            self._agents[agent_id] = agent
        return agent

    def set_on_call(self, agent_id: Optional[str], on_call: bool) -> None:
        agent = self.ensure(agent_id)
        if agent is not None:
            agent.on_call_now = on_call

    def all(self) -> List[AgentRecord]:
        return [self._agents[key] for key in sorted(self._agents)]

    def reset_counters(self) -> None:
        for agent in self._agents.values():
            agent.reset_counters()
