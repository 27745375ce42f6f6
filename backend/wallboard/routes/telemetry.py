from __future__ import annotations

from fastapi import APIRouter

from wallboard.core.telemetry import get_metric_events, summarize_events


def get_routes():
    router = APIRouter(prefix="/api/telemetry", tags=["telemetry"])

    @router.get("/recent")
    async def recent_events(
        limit: int = 200,
        component: str | None = None,
        action: str | None = None,
        call_id: str | None = None,
        agent_id: str | None = None,
    ):
        events = get_metric_events(
            limit=limit,
            component=component,
            action=action,
            call_id=call_id,
            agent_id=agent_id,
        )
        return {"count": len(events), "events": events}

    @router.get("/summary")
    async def summary(
        limit: int = 1000,
        component: str | None = None,
        action: str | None = None,
        call_id: str | None = None,
        agent_id: str | None = None,
    ):
        return summarize_events(
            limit=limit,
            component=component,
            action=action,
            call_id=call_id,
            agent_id=agent_id,
        )

    return router
