from __future__ import annotations

import json

import pytest

from wallboard.core.config import settings
from wallboard.routes.bitrix import expand_form_keys
from tests.fakes.events import bitrix_form, build_event

pytestmark = pytest.mark.integration


def test_expand_form_keys_builds_nested_mappings() -> None:
    expanded = expand_form_keys(
        {
            "event": "ONVOXIMPLANTCALLINIT",
            "data[CALL_ID]": "c1",
            "data[PARAMS][DIRECTION]": "OUT",
            "auth[application_token]": "tok",
        }
    )

    assert expanded == {
        "event": "ONVOXIMPLANTCALLINIT",
        "data": {"CALL_ID": "c1", "PARAMS": {"DIRECTION": "OUT"}},
        "auth": {"application_token": "tok"},
    }


def test_form_encoded_lifecycle_updates_state(client) -> None:
    assert client.post(
        "/bitrix/events",
        data=bitrix_form("ONVOXIMPLANTCALLINIT", "call-1", CALL_TYPE="1", PORTAL_USER_ID="7"),
    ).json() == {"ok": True}

    state = client.get("/debug/state").json()
    assert state["counters"]["outgoing"]["inProgress"] == 1
    assert state["liveCalls"][0]["callId"] == "call-1"
    assert state["liveCalls"][0]["direction"] == "OUT"
    assert state["agents"] == [
        {
            "agentId": "7",
            "onCallNow": True,
            "inboundAnswered": 0,
            "inboundMissed": 0,
            "outboundAnswered": 0,
            "outboundMissed": 0,
        }
    ]

    client.post("/bitrix/events", data=bitrix_form("OnVoximplantCallStart", "call-1", USER_ID="7"))
    client.post("/bitrix/events", data=bitrix_form("ONVOXIMPLANTCALLEND", "call-1", CALL_DURATION="42"))

    state = client.get("/debug/state").json()
    assert state["counters"]["outgoing"] == {"inProgress": 0, "answered": 1, "cancelled": 0}
    assert state["liveCalls"] == []
    assert state["agents"][0]["outboundAnswered"] == 1
    assert state["agents"][0]["onCallNow"] is False


def test_json_events_follow_boundary_scenario(client) -> None:
    client.post("/bitrix/events", json=build_event("init", "c1", direction="IN"))
    state = client.get("/debug/state").json()
    assert state["counters"]["incoming"]["inProgress"] == 1
    assert state["liveCalls"][0]["phase"] == "RINGING"

    client.post("/bitrix/events", json=build_event("end", "c1"))
    state = client.get("/debug/state").json()
    assert state["counters"]["incoming"] == {"inProgress": 0, "answered": 0, "missed": 1}
    assert state["counters"]["missedDroppedAbandoned"] == 1
    assert state["liveCalls"] == []


def test_events_are_acknowledged_even_when_unusable(client) -> None:
    for body in (
        {"event": "ONVOXIMPLANTCALLEND", "data": {"CALL_ID": "ghost"}},
        {"event": "ONVOXIMPLANTCALLINIT"},
        {"something": "else"},
    ):
        response = client.post("/bitrix/events", json=body)
        assert response.status_code == 200
        assert response.json() == {"ok": True}

    response = client.post(
        "/bitrix/events",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )
    assert response.status_code == 200

    state = client.get("/debug/state").json()
    assert state["liveCalls"] == []
    assert state["counters"]["missedDroppedAbandoned"] == 0


def test_token_mismatch_is_accepted_but_ignored(client, monkeypatch) -> None:
    monkeypatch.setattr(settings, "BITRIX_OUTBOUND_TOKEN", "secret")

    wrong = {**bitrix_form("ONVOXIMPLANTCALLINIT", "c1"), "auth[application_token]": "nope"}
    assert client.post("/bitrix/events", data=wrong).json() == {"ok": True}
    assert client.get("/debug/state").json()["liveCalls"] == []

    right = {**bitrix_form("ONVOXIMPLANTCALLINIT", "c1"), "auth[application_token]": "secret"}
    client.post("/bitrix/events", data=right)
    assert [call["callId"] for call in client.get("/debug/state").json()["liveCalls"]] == ["c1"]

    client.post(
        "/bitrix/events",
        json={"event": "ONVOXIMPLANTCALLINIT", "data": {"CALL_ID": "c2"}, "auth": {"application_token": "secret"}},
    )
    assert len(client.get("/debug/state").json()["liveCalls"]) == 2


def test_get_events_is_not_allowed(client) -> None:
    response = client.get("/bitrix/events")

    assert response.status_code == 405
    assert response.text == "Method Not Allowed. Use POST /bitrix/events"


def test_last_events_lists_deliveries_newest_first(client) -> None:
    client.post("/bitrix/events", json=build_event("init", "c1"))
    client.post("/bitrix/events", json=build_event("end", "c1"))

    body = client.get("/debug/last-events").json()

    assert body["ok"] is True
    assert body["count"] == 2
    assert [item["eventName"] for item in body["lastEvents"]] == ["end", "init"]


def test_install_stores_portal(client, monkeypatch) -> None:
    monkeypatch.setattr(settings, "PUBLIC_URL", "https://wallboard.example/")

    response = client.post(
        "/bitrix/install?DOMAIN=acme.bitrix24.com",
        data={"member_id": "m-1", "AUTH_ID": "access", "REFRESH_ID": "refresh"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["handler"] == "https://wallboard.example/bitrix/events"

    tokens_file = settings.DATA_ROOT / settings.PORTAL_TOKENS_FILE
    stored = json.loads(tokens_file.read_text(encoding="utf-8"))
    record = stored["acme.bitrix24.com|m-1"]
    assert record["memberId"] == "m-1"
    assert record["accessToken"] == "access"
    assert record["refreshToken"] == "refresh"

    state = client.get("/debug/state").json()
    assert state["portalsStored"] == 1
    assert state["handler"] == "https://wallboard.example/bitrix/events"


def test_install_defaults_unknown_identifiers(client) -> None:
    response = client.post("/bitrix/install", json={})

    assert response.status_code == 200
    assert response.json()["handler"] == "(set PUBLIC_URL to show handler)"
    stored = json.loads((settings.DATA_ROOT / settings.PORTAL_TOKENS_FILE).read_text(encoding="utf-8"))
    assert list(stored) == ["unknown-domain|unknown-member"]


def test_install_write_failure_returns_500_and_is_not_counted(client, monkeypatch) -> None:
    from wallboard.services.portal_store import PortalStore

    def _disk_full(self, portals) -> None:  # noqa: ARG001
        raise OSError("disk full")

    monkeypatch.setattr(PortalStore, "_save", _disk_full)

    response = client.post("/bitrix/install?DOMAIN=acme.bitrix24.com", data={"member_id": "m-1"})

    assert response.status_code == 500
    assert client.get("/debug/state").json()["portalsStored"] == 0
