from __future__ import annotations

from datetime import timedelta

import pytest

from wallboard.services.normalizer import normalize_event
from wallboard.services.reaper import StaleCallReaper
from tests.fakes.events import T0, make_event

pytestmark = pytest.mark.unit


def test_reaper_force_ends_unanswered_stale_call(state, reconciler) -> None:
    reaper = StaleCallReaper(reconciler, max_age_seconds=30 * 60)
    reconciler.apply(state, make_event("init", "stale", agent_id="a1"))

    transitions = reaper.sweep(state, now=T0 + timedelta(minutes=31))

    assert [t.action for t in transitions] == ["closed"]
    assert transitions[0].outcome == "missed"
    assert transitions[0].event.source == "reaper"
    snapshot = state.snapshot()
    assert snapshot.live_calls == []
    assert snapshot.counters.incoming.in_progress == 0
    assert snapshot.counters.incoming.missed == 1
    assert snapshot.counters.missed_dropped_abandoned == 1
    assert state.agents.get("a1").on_call_now is False
    assert state.agents.get("a1").inbound_missed == 1


def test_reaper_classifies_connected_call_as_answered(state, reconciler) -> None:
    reaper = StaleCallReaper(reconciler, max_age_seconds=30 * 60)
    reconciler.apply(state, make_event("init", "long", direction="OUT"))
    reconciler.apply(state, make_event("connected", "long", direction="OUT", minutes=1))

    transitions = reaper.sweep(state, now=T0 + timedelta(minutes=45))

    assert transitions[0].outcome == "answered"
    assert state.snapshot().counters.outgoing.answered == 1
    assert state.snapshot().counters.outgoing.in_progress == 0


def test_reaper_leaves_fresh_calls_alone(state, reconciler) -> None:
    reaper = StaleCallReaper(reconciler, max_age_seconds=30 * 60)
    reconciler.apply(state, make_event("init", "old"))
    reconciler.apply(state, make_event("init", "fresh", minutes=20))

    transitions = reaper.sweep(state, now=T0 + timedelta(minutes=31))

    assert [t.event.call_id for t in transitions] == ["old"]
    assert [call.call_id for call in state.snapshot().live_calls] == ["fresh"]
    assert state.snapshot().counters.incoming.in_progress == 1


def test_reaper_sweep_is_idempotent(state, reconciler) -> None:
    reaper = StaleCallReaper(reconciler, max_age_seconds=60)
    reconciler.apply(state, make_event("init", "c1"))

    assert len(reaper.sweep(state, now=T0 + timedelta(minutes=5))) == 1
    assert reaper.sweep(state, now=T0 + timedelta(minutes=6)) == []
    assert state.snapshot().counters.incoming.missed == 1


def test_late_end_after_reap_is_ignored(state, reconciler) -> None:
    reaper = StaleCallReaper(reconciler, max_age_seconds=60)
    reconciler.apply(state, make_event("init", "c1"))
    reaper.sweep(state, now=T0 + timedelta(minutes=5))

    transition = reconciler.apply(state, make_event("end", "c1", minutes=6))

    assert transition.action == "unknown_call"
    assert state.snapshot().counters.incoming.missed == 1


def test_future_dated_call_is_still_reaped(state, reconciler) -> None:
    reaper = StaleCallReaper(reconciler, max_age_seconds=30 * 60)
    event = normalize_event({"kind": "init", "callId": "skew", "timestamp": "2099-01-01T00:00:00Z"}, now=T0)

    reconciler.apply(state, event)

    assert event.observed_at.year == 2099
    assert state.calls.get("skew").started_at == T0
    transitions = reaper.sweep(state, now=T0 + timedelta(hours=6))
    assert [t.event.call_id for t in transitions] == ["skew"]
    assert state.snapshot().live_calls == []
    assert state.snapshot().counters.incoming.in_progress == 0
