from __future__ import annotations

import asyncio
from datetime import date, timedelta

import pytest

from wallboard.services.agent_directory import AgentDirectory
from wallboard.services.call_registry import CallRegistry
from wallboard.services.counters import AggregateCounters
from wallboard.services.wallboard_state import WallboardState
from wallboard.services.ws_manager import ConnectionManager
from tests.fakes.events import T0

pytestmark = pytest.mark.unit


def test_call_direction_and_connect_time_are_fixed() -> None:
    registry = CallRegistry()
    record = registry.open("c1", "IN", T0)

    with pytest.raises(AttributeError):
        record.direction = "OUT"

    assert record.mark_connected(T0 + timedelta(seconds=5)) is True
    assert record.mark_connected(T0 + timedelta(seconds=9)) is False
    assert record.connected_at == T0 + timedelta(seconds=5)
    assert record.phase == "CONNECTED"
    with pytest.raises(AttributeError):
        record.connected_at = T0


def test_registry_rejects_second_open_and_sorts_live_calls() -> None:
    registry = CallRegistry()
    registry.open("late", "IN", T0 + timedelta(minutes=2))
    registry.open("early", "OUT", T0)

    with pytest.raises(KeyError):
        registry.open("early", "OUT", T0)

    assert [record.call_id for record in registry.live_calls()] == ["early", "late"]
    assert [record.call_id for record in registry.stale(T0 + timedelta(minutes=3), timedelta(minutes=2))] == [
        "early"
    ]
    assert registry.remove("early") is not None
    assert registry.remove("early") is None
    assert "early" not in registry


def test_counters_never_go_negative() -> None:
    counters = AggregateCounters()

    counters.close_call("OUT", "cancelled")
    counters.close_call("IN", "missed")

    view = counters.to_view()
    assert view.outgoing.in_progress == 0
    assert view.outgoing.cancelled == 1
    assert view.incoming.in_progress == 0
    assert view.missed_dropped_abandoned == 1


def test_outbound_cancellations_do_not_count_as_missed() -> None:
    counters = AggregateCounters()
    counters.open_call("OUT")
    counters.close_call("OUT", "cancelled")

    assert counters.missed_dropped_abandoned == 0
    assert counters.incoming.unanswered == 0


def test_agent_directory_ignores_blank_ids() -> None:
    agents = AgentDirectory()

    assert agents.ensure("") is None
    agents.set_on_call(None, True)
    agents.set_on_call("b", True)
    agents.set_on_call("a", False)

    assert len(agents) == 2
    assert [agent.agent_id for agent in agents.all()] == ["a", "b"]


def test_first_roll_over_only_records_the_window() -> None:
    state = WallboardState()
    state.counters.close_call("IN", "missed")

    assert state.roll_over(date(2024, 5, 6)) is False
    assert state.window_date == date(2024, 5, 6)
    assert state.counters.missed_dropped_abandoned == 1
    assert state.roll_over(date(2024, 5, 5)) is False
    assert state.roll_over(date(2024, 5, 7)) is True
    assert state.counters.missed_dropped_abandoned == 0


class _Peer:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.accepted = False
        self.sent: list[str] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, payload: str) -> None:
        if self.fail:
            raise RuntimeError("peer gone")
        self.sent.append(payload)


def test_broadcast_drops_failing_peers() -> None:
    manager = ConnectionManager()
    healthy, broken = _Peer(), _Peer(fail=True)

    async def _test() -> None:
        await manager.connect("wallboard", healthy)  # type: ignore[arg-type]
        await manager.connect("wallboard", broken)  # type: ignore[arg-type]
        await manager.broadcast("wallboard", {"type": "wallboard_snapshot", "data": {}})
        await manager.broadcast("elsewhere", {"type": "ignored"})

    asyncio.run(_test())

    assert healthy.accepted and broken.accepted
    assert len(healthy.sent) == 1
    assert manager.connection_count("wallboard") == 1
    assert manager.connection_count("elsewhere") == 0
