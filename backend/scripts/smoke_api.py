#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import time
import uuid
from typing import Any, Dict, List, Optional

import httpx
import websockets


async def _timed_request(
    method: str,
    client: httpx.AsyncClient,
    path: str,
    **kwargs: Any,
) -> tuple[httpx.Response, float]:
    start = time.perf_counter()
    response = await client.request(method, path, **kwargs)
    return response, (time.perf_counter() - start) * 1000


async def _read_snapshot(ws, timeout: float = 2.0) -> Optional[Dict[str, Any]]:
    try:
        raw = await asyncio.wait_for(ws.recv(), timeout=timeout)
    except (asyncio.TimeoutError, websockets.exceptions.ConnectionClosed):
        return None
    message = json.loads(raw)
    if message.get("type") != "wallboard_snapshot":
        return None
    return message.get("data")


def _print_result(name: str, ok: bool, detail: Optional[str] = None, ms: Optional[float] = None) -> None:
    icon = "✓" if ok else "✗"
    suffix = f" ({ms:.1f}ms)" if ms is not None else ""
    print(f"{icon} {name}{suffix}")
    if detail:
        print(f"  {detail}")


def _form(event: str, call_id: str, token: str, **data: str) -> Dict[str, str]:
    form = {"event": event, "data[CALL_ID]": call_id}
    for key, value in data.items():
        form[f"data[{key}]"] = value
    if token:
        form["auth[application_token]"] = token
    return form


async def _post_event(client: httpx.AsyncClient, form: Dict[str, str]) -> None:
    response, ms = await _timed_request("POST", client, "/bitrix/events", data=form)
    _print_result(f"POST /bitrix/events {form['event']}", response.status_code == 200, None, ms)


async def run_smoke(base_url: str, agent_id: str, token: str, with_ws: bool) -> None:
    base_url = base_url.rstrip("/")
    ws_url = base_url.replace("https://", "wss://").replace("http://", "ws://")
    call_id = f"smoke-{uuid.uuid4().hex[:8]}"
    lifecycle = [
        _form("ONVOXIMPLANTCALLINIT", call_id, token, CALL_TYPE="2", PORTAL_USER_ID=agent_id),
        _form("ONVOXIMPLANTCALLSTART", call_id, token, USER_ID=agent_id),
        _form("ONVOXIMPLANTCALLEND", call_id, token, CALL_DURATION="12", CALL_FAILED_CODE="200"),
    ]

    async with httpx.AsyncClient(base_url=base_url, timeout=20.0) as client:
        response, ms = await _timed_request("GET", client, "/health")
        _print_result("GET /health", response.status_code == 200, f"status={response.status_code}", ms)

        response, ms = await _timed_request("GET", client, "/debug/state")
        before = response.json() if response.status_code == 200 else {}
        answered_before = before.get("counters", {}).get("incoming", {}).get("answered", 0)
        _print_result("GET /debug/state", response.status_code == 200, f"handler={before.get('handler')}", ms)

        snapshots: List[Dict[str, Any]] = []
        if with_ws:
            async with websockets.connect(f"{ws_url}/ws/wallboard") as ws:
                initial = await _read_snapshot(ws)
                _print_result("WebSocket initial snapshot", initial is not None)
                for form in lifecycle:
                    await _post_event(client, form)
                    snapshot = await _read_snapshot(ws, timeout=2.5)
                    if snapshot is not None:
                        snapshots.append(snapshot)
            _print_result(
                "WebSocket lifecycle snapshots",
                len(snapshots) == len(lifecycle),
                f"received={len(snapshots)}",
            )
        else:
            for form in lifecycle:
                await _post_event(client, form)

        response, ms = await _timed_request("GET", client, "/debug/state")
        after = response.json() if response.status_code == 200 else {}
        answered_after = after.get("counters", {}).get("incoming", {}).get("answered", 0)
        still_live = any(call.get("callId") == call_id for call in after.get("liveCalls", []))
        _print_result(
            "Call closed as answered",
            answered_after == answered_before + 1 and not still_live,
            f"answered {answered_before} -> {answered_after}, live={still_live}",
            ms,
        )

        response, ms = await _timed_request("GET", client, "/debug/last-events")
        _print_result(
            "GET /debug/last-events",
            response.status_code == 200,
            f"count={response.json().get('count') if response.status_code == 200 else response.status_code}",
            ms,
        )

        response, ms = await _timed_request(
            "GET",
            client,
            f"/api/telemetry/summary?component=orchestrator&call_id={call_id}",
        )
        _print_result(
            "GET /api/telemetry/summary",
            response.status_code == 200,
            f"events={response.json().get('event_count') if response.status_code == 200 else response.status_code}",
            ms,
        )


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bitrix24 wallboard backend CLI smoke test")
    parser.add_argument("--base-url", default="http://127.0.0.1:3000")
    parser.add_argument("--agent-id", default="1")
    parser.add_argument("--token", default="", help="Bitrix outbound application token, if the server checks one")
    parser.add_argument("--no-websocket", action="store_true", help="skip websocket snapshot assertions")
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    await run_smoke(args.base_url, args.agent_id, args.token, with_ws=not args.no_websocket)


if __name__ == "__main__":
    asyncio.run(main())
