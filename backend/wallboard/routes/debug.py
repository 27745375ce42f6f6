from __future__ import annotations

from fastapi import APIRouter

from wallboard.core.telemetry import timed_step
from wallboard.models.schemas import DebugState
from wallboard.routes.bitrix import handler_url
from wallboard.services.orchestrator import WallboardOrchestrator
from wallboard.services.portal_store import PortalStore


def get_routes(orchestrator: WallboardOrchestrator, portal_store: PortalStore):
    router = APIRouter(prefix="/debug", tags=["debug"])

    @router.get("/state", response_model=DebugState)
    async def debug_state():
        with timed_step("debug", "state"):
            snapshot = orchestrator.snapshot()
            return DebugState(
                **snapshot.model_dump(),
                portals_stored=len(portal_store),
                handler=handler_url(),
            )

    @router.get("/last-events")
    async def last_events():
        events = orchestrator.recent_events()
        return {"ok": True, "count": len(events), "lastEvents": events}

    return router
