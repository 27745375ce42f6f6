from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from wallboard.core.telemetry import log_event
from wallboard.models.schemas import WallboardEvent
from wallboard.services.orchestrator import WALLBOARD_TOPIC, WallboardOrchestrator
from wallboard.services.ws_manager import ConnectionManager


def get_routes(connection_manager: ConnectionManager, orchestrator: WallboardOrchestrator):
    router = APIRouter(tags=["websocket"])

    @router.websocket("/ws/wallboard")
    async def wallboard_feed(websocket: WebSocket):
        await connection_manager.connect(WALLBOARD_TOPIC, websocket)

        messages_received = 0
        try:
            snapshot = orchestrator.snapshot().model_dump(mode="json", by_alias=True)
            await connection_manager.send_to(websocket, WallboardEvent(data=snapshot).model_dump(mode="json"))
            while True:
                await websocket.receive_text()
                messages_received += 1
        except WebSocketDisconnect:
            log_event("ws", "consume_end", details={"messages_received": messages_received})
            connection_manager.disconnect(WALLBOARD_TOPIC, websocket)
        except Exception as exc:
            log_event(
                "ws",
                "consume_error",
                status="error",
                details={"error": f"{type(exc).__name__}: {exc}", "messages_received": messages_received},
            )
            connection_manager.disconnect(WALLBOARD_TOPIC, websocket)
            raise

    return router
