from __future__ import annotations

import json
from typing import Any, Dict, List

from fastapi import WebSocket

from wallboard.core.telemetry import log_event, timed_step


class ConnectionManager:
    """Fan out wallboard payloads to connected dashboard viewers, grouped by topic."""

    def __init__(self) -> None:
        self._active_connections: Dict[str, List[WebSocket]] = {}

    def connection_count(self, topic: str) -> int:
        return len(self._active_connections.get(topic, []))

    async def connect(self, topic: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._active_connections.setdefault(topic, []).append(websocket)
        log_event(
            "websocket",
            "client_connected",
            details={"topic": topic, "peer_count": self.connection_count(topic)},
        )

    def disconnect(self, topic: str, websocket: WebSocket) -> None:
        connections = self._active_connections.get(topic)
        if connections is None:
            return
        if websocket in connections:
            connections.remove(websocket)
        remaining = len(connections)
        if not connections:
            self._active_connections.pop(topic, None)
        log_event(
            "websocket",
            "client_disconnected",
            details={"topic": topic, "remaining_peers": remaining},
        )

    async def send_to(self, websocket: WebSocket, event: Dict[str, Any]) -> None:
        await websocket.send_text(json.dumps(event, default=str))

    async def broadcast(self, topic: str, event: Dict[str, Any]) -> None:
        connections = self._active_connections.get(topic, [])
        if not connections:
            return
        payload = json.dumps(event, default=str)
        event_type = event.get("type", "unknown")
        failed = 0
        with timed_step(
            "websocket",
            "broadcast",
            details={
                "topic": topic,
                "peer_count": len(connections),
                "event_type": event_type,
                "payload_bytes": len(payload),
            },
        ):
            for connection in list(connections):
                try:
                    await connection.send_text(payload)
                except Exception:
                    failed += 1
                    self.disconnect(topic, connection)
        if failed:
            log_event(
                "websocket",
                "broadcast_failures",
                status="warning",
                details={"topic": topic, "failed": failed, "event_type": event_type},
            )
