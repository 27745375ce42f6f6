from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from wallboard.core.telemetry import log_event, timed_step


class PortalStore:
    """JSON file of installed Bitrix portals, keyed ``domain|member_id``.

    The reconciliation engine never reads this; it only backs the install route
    and the ``portalsStored`` debug figure.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._portals: Dict[str, Dict[str, Any]] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def __len__(self) -> int:
        return len(self._portals)

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not self._path.exists():
            return {}
        try:
            raw = self._path.read_text(encoding="utf-8")
            data = json.loads(raw) if raw.strip() else {}
        except (OSError, json.JSONDecodeError) as exc:
            log_event(
                "portal_store",
                "load_failed",
                status="error",
                details={"path": str(self._path), "error": f"{type(exc).__name__}: {exc}"},
            )
            return {}
        if not isinstance(data, dict):
            return {}
        log_event("portal_store", "loaded", details={"path": str(self._path), "portals": len(data)})
        return data

    def _save(self, portals: Dict[str, Dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(portals, indent=2, default=str), encoding="utf-8")
        tmp_path.replace(self._path)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        record = self._portals.get(key)
        return dict(record) if record else None

    def register(
        self,
        domain: str,
        member_id: str,
        *,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        key = f"{domain}|{member_id}"
        record: Dict[str, Any] = {
            "domain": domain,
            "memberId": member_id,
            "installedAt": datetime.now(timezone.utc).isoformat(),
        }
        if access_token:
            record["accessToken"] = access_token
        if refresh_token:
            record["refreshToken"] = refresh_token

        with timed_step("portal_store", "register", details={"key": key}):
            with self._lock:
                portals = {**self._portals, key: record}
                self._save(portals)
                self._portals = portals
        return {"key": key, **record}
