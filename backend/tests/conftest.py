from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient


# Ensure `wallboard` package import works regardless of current working directory.
ROOT = Path(__file__).resolve().parents[1]
BACKEND_PATH = ROOT
if str(BACKEND_PATH) not in sys.path:
    sys.path.insert(0, str(BACKEND_PATH))

from wallboard.core.config import settings
from wallboard.main import create_app
from wallboard.services.orchestrator import WallboardOrchestrator
from wallboard.services.reconciler import LifecycleReconciler
from wallboard.services.wallboard_state import WallboardState
from tests.fakes.fake_clients import FakeConnectionManager


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(settings, "DATA_ROOT", tmp_path / "data")
    monkeypatch.setattr(settings, "BITRIX_OUTBOUND_TOKEN", "")
    monkeypatch.setattr(settings, "PUBLIC_URL", "")
    monkeypatch.setattr(settings, "DAILY_RESET_TIMEZONE", "")
    monkeypatch.setattr(settings, "CLASSIFY_WITH_STATUS_HINTS", False)
    monkeypatch.setattr(settings, "HEARTBEAT_INTERVAL_SECONDS", 0)
    yield


@pytest.fixture()
def state() -> WallboardState:
    return WallboardState()


@pytest.fixture()
def reconciler() -> LifecycleReconciler:
    return LifecycleReconciler()


@pytest.fixture()
def fake_ws() -> FakeConnectionManager:
    return FakeConnectionManager()


@pytest.fixture()
def orchestrator(fake_ws: FakeConnectionManager) -> WallboardOrchestrator:
    return WallboardOrchestrator(fake_ws, max_call_age_seconds=30 * 60)


@pytest.fixture()
def app(tmp_path: Path):
    return create_app(data_root=tmp_path / "data", run_background_tasks=False)


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client
