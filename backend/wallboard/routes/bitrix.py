from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request
from fastapi.responses import PlainTextResponse

from wallboard.core.config import settings
from wallboard.core.telemetry import log_event, timed_step
from wallboard.models.schemas import InstallResponse, WebhookAck
from wallboard.services.orchestrator import WallboardOrchestrator
from wallboard.services.portal_store import PortalStore


_BRACKET_KEY = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])+)$")


def expand_form_keys(items: Dict[str, Any]) -> Dict[str, Any]:
    """Turn ``data[PARAMS][CALL_ID]=x`` style form keys into nested dicts."""
    expanded: Dict[str, Any] = {}
    for raw_key, value in items.items():
        match = _BRACKET_KEY.match(raw_key)
        if not match:
            expanded[raw_key] = value
            continue
        parts = [match.group(1)] + re.findall(r"\[([^\[\]]*)\]", match.group(2))
        node = expanded
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value
    return expanded


async def read_payload(request: Request) -> Dict[str, Any]:
    content_type = (request.headers.get("content-type") or "").lower()
    if "application/json" in content_type:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return {}
        return body if isinstance(body, dict) else {}
    form = await request.form()
    return expand_form_keys({key: value for key, value in form.items() if isinstance(value, str)})


def handler_url() -> str:
    public_url = (settings.PUBLIC_URL or "").strip()
    if public_url.startswith("http"):
        return f"{public_url.rstrip('/')}/bitrix/events"
    return "(set PUBLIC_URL to show handler)"


def _application_token(payload: Dict[str, Any]) -> Optional[str]:
    auth = payload.get("auth")
    if isinstance(auth, dict) and auth.get("application_token"):
        return str(auth["application_token"])
    flat = payload.get("auth[application_token]")
    return str(flat) if flat else None


def _first_value(*values: Any) -> Optional[str]:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def get_routes(orchestrator: WallboardOrchestrator, portal_store: PortalStore):
    router = APIRouter(prefix="/bitrix", tags=["bitrix"])

    @router.post("/events", response_model=WebhookAck)
    async def receive_event(request: Request, background_tasks: BackgroundTasks):
        with timed_step(
            "bitrix",
            "events_webhook",
            details={"content_type": request.headers.get("content-type")},
        ):
            payload = await read_payload(request)

            expected = settings.BITRIX_OUTBOUND_TOKEN
            if expected and _application_token(payload) != expected:
                log_event(
                    "bitrix",
                    "token_mismatch",
                    status="warning",
                    details={"message": "event accepted but ignored", "payload_keys": sorted(payload.keys())},
                )
                return WebhookAck()

            # Bitrix expects a quick ack; reconciliation runs after the response is sent.
            background_tasks.add_task(orchestrator.ingest, payload)
            return WebhookAck()

    @router.get("/events", response_class=PlainTextResponse, status_code=405)
    async def events_get_not_allowed():
        return "Method Not Allowed. Use POST /bitrix/events"

    @router.post("/install", response_model=InstallResponse)
    async def install(request: Request):
        payload = await read_payload(request)
        query = request.query_params
        domain = _first_value(query.get("DOMAIN"), payload.get("DOMAIN"), payload.get("domain")) or "unknown-domain"
        member_id = _first_value(payload.get("member_id"), payload.get("MEMBER_ID")) or "unknown-member"

        with timed_step("bitrix", "install", details={"domain": domain, "payload_keys": sorted(payload.keys())}):
            try:
                record = portal_store.register(
                    domain,
                    member_id,
                    access_token=_first_value(payload.get("AUTH_ID"), query.get("AUTH_ID")),
                    refresh_token=_first_value(payload.get("REFRESH_ID"), query.get("REFRESH_ID")),
                )
            except OSError as exc:
                log_event(
                    "bitrix",
                    "install_failed",
                    status="error",
                    details={"error": f"{type(exc).__name__}: {exc}"},
                )
                raise HTTPException(status_code=500, detail=str(exc)) from exc

        log_event("bitrix", "install_stored", details={"key": record["key"], "path": str(portal_store.path)})
        return InstallResponse(
            ok=True,
            message="Installed OK. Configure Bitrix Outbound Webhook to POST events to /bitrix/events.",
            handler=handler_url(),
        )

    return router
