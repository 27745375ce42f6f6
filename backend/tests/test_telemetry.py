from __future__ import annotations

import pytest

from wallboard.core.config import settings
from wallboard.core.telemetry import get_metric_events, log_event

pytestmark = pytest.mark.unit


def test_jsonl_is_rotated_once_it_reaches_the_size_cap(monkeypatch) -> None:
    monkeypatch.setattr(settings, "TELEMETRY_JSONL_MAX_BYTES", 200)

    for index in range(10):
        log_event("test", "rotation", details={"index": index})

    current = settings.DATA_ROOT / "telemetry_events.jsonl"
    backup = settings.DATA_ROOT / "telemetry_events.jsonl.1"
    assert backup.exists()
    assert len(current.read_text(encoding="utf-8").splitlines()) <= 2
    assert get_metric_events(limit=10)[-1]["index"] == 9


def test_jsonl_grows_without_cap(monkeypatch) -> None:
    monkeypatch.setattr(settings, "TELEMETRY_JSONL_MAX_BYTES", 0)

    for index in range(10):
        log_event("test", "rotation", details={"index": index})

    assert not (settings.DATA_ROOT / "telemetry_events.jsonl.1").exists()
    assert len(get_metric_events(limit=100, component="test")) == 10


def test_jsonl_can_be_disabled(monkeypatch) -> None:
    monkeypatch.setattr(settings, "TELEMETRY_JSONL_ENABLED", False)

    log_event("test", "silent")

    assert get_metric_events(component="test") == []
