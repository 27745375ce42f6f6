from __future__ import annotations

import asyncio
import time
import uuid
from pathlib import Path
from typing import List, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from wallboard.core.config import settings
from wallboard.core.telemetry import configure_logging, log_event, timed_step
from wallboard.routes import bitrix as bitrix_routes
from wallboard.routes import debug as debug_routes
from wallboard.routes import telemetry as telemetry_routes
from wallboard.routes import ws as ws_routes
from wallboard.routes.bitrix import handler_url
from wallboard.services.orchestrator import WallboardOrchestrator
from wallboard.services.portal_store import PortalStore
from wallboard.services.reconciler import LifecycleReconciler
from wallboard.services.ws_manager import ConnectionManager


ALLOWED_ORIGINS_TYPE = List[str]


def create_app(
    *,
    orchestrator: Optional[WallboardOrchestrator] = None,
    ws_manager: Optional[ConnectionManager] = None,
    portal_store: Optional[PortalStore] = None,
    data_root: str | Path | None = None,
    allowed_origins: Optional[ALLOWED_ORIGINS_TYPE] = None,
    run_background_tasks: Optional[bool] = None,
) -> FastAPI:
    """Create the FastAPI app with injectable dependencies.

    Tests build isolated instances with a temporary data root and their own
    orchestrator; background maintenance can be switched off for them.
    """

    if data_root is not None:
        settings.DATA_ROOT = Path(data_root)

    configure_logging()

    local_ws_manager = ws_manager or ConnectionManager()
    local_orchestrator = orchestrator or WallboardOrchestrator(
        local_ws_manager,
        reconciler=LifecycleReconciler(classify_with_status_hints=settings.CLASSIFY_WITH_STATUS_HINTS),
        max_call_age_seconds=settings.CALL_MAX_AGE_SECONDS,
        recent_events_limit=settings.RECENT_EVENTS_LIMIT,
        daily_reset_timezone=settings.DAILY_RESET_TIMEZONE or None,
        direction_from_call_type=settings.DIRECTION_FROM_CALL_TYPE,
    )
    local_portal_store = portal_store or PortalStore(settings.DATA_ROOT / settings.PORTAL_TOKENS_FILE)
    start_background = settings.REAPER_ENABLED if run_background_tasks is None else run_background_tasks

    app = FastAPI(title="Bitrix24 Call Wallboard")
    app.state.ws_manager = local_ws_manager
    app.state.orchestrator = local_orchestrator
    app.state.portal_store = local_portal_store
    app.state.background_tasks = []

    app.include_router(bitrix_routes.get_routes(local_orchestrator, local_portal_store))
    app.include_router(debug_routes.get_routes(local_orchestrator, local_portal_store))
    app.include_router(ws_routes.get_routes(local_ws_manager, local_orchestrator))
    app.include_router(telemetry_routes.get_routes())

    cors_origins = list(allowed_origins or settings.ALLOWED_ORIGINS)
    if not cors_origins:
        cors_origins = ["*"]

    # Browsers reject a wildcard origin combined with credentials.
    allow_credentials = not (len(cors_origins) == 1 and cors_origins[0] == "*")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_request_timing(request: Request, call_next):
        request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
        request.state.request_id = request_id
        start = time.perf_counter()
        action = f"{request.method} {request.url.path}"
        details = {
            "request_id": request_id,
            "method": request.method,
            "content_type": request.headers.get("content-type"),
            "content_length": request.headers.get("content-length"),
            "client_ip": request.client.host if request.client else None,
            "user_agent": request.headers.get("user-agent"),
        }
        try:
            response = await call_next(request)
        except Exception as exc:
            details["status_code"] = 500
            details["error"] = f"{type(exc).__name__}: {exc}"
            log_event(
                "http",
                action,
                status="error",
                duration_ms=(time.perf_counter() - start) * 1000.0,
                details=details,
            )
            raise
        details["status_code"] = response.status_code
        if isinstance(response, Response):
            details["response_content_type"] = response.headers.get("content-type")
        if request.url.path not in settings.LOG_SKIP_REQUEST_PATHS or response.status_code >= 400:
            log_event(
                "http",
                action,
                duration_ms=(time.perf_counter() - start) * 1000.0,
                details=details,
            )
        return response

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return "Bitrix24 Wallboard Backend is running."

    @app.get("/health")
    async def health() -> dict:
        with timed_step("http", "healthcheck"):
            return {"status": "ok", "ok": True}

    async def heartbeat(interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            log_event(
                "system",
                "heartbeat",
                details={"live_calls": len(local_orchestrator.state.calls)},
            )

    @app.on_event("startup")
    async def startup() -> None:
        log_event(
            "system",
            "startup",
            details={
                "data_root": str(settings.DATA_ROOT),
                "portal_store": str(local_portal_store.path),
                "portals_loaded": len(local_portal_store),
                "handler": handler_url(),
                "token_check": bool(settings.BITRIX_OUTBOUND_TOKEN),
                "reaper_interval_seconds": settings.REAPER_INTERVAL_SECONDS,
                "call_max_age_seconds": settings.CALL_MAX_AGE_SECONDS,
                "daily_reset_timezone": settings.DAILY_RESET_TIMEZONE or "(disabled)",
                "classify_with_status_hints": settings.CLASSIFY_WITH_STATUS_HINTS,
                "reaper_enabled": start_background,
                "heartbeat_interval_seconds": settings.HEARTBEAT_INTERVAL_SECONDS,
                "log_level": settings.LOG_LEVEL,
            },
        )
        if settings.HEARTBEAT_INTERVAL_SECONDS > 0:
            app.state.background_tasks.append(asyncio.create_task(heartbeat(settings.HEARTBEAT_INTERVAL_SECONDS)))
        if start_background:
            app.state.background_tasks.append(
                asyncio.create_task(local_orchestrator.run_maintenance(settings.REAPER_INTERVAL_SECONDS))
            )

    @app.on_event("shutdown")
    async def shutdown() -> None:
        tasks = list(app.state.background_tasks)
        app.state.background_tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.APP_HOST, port=settings.APP_PORT)
