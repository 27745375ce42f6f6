from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

from wallboard.models.schemas import Direction, EventKind


class EventNormalizationError(ValueError):
    """Raised when a webhook record cannot be turned into a lifecycle event."""

    def __init__(self, reason: str, *, event_name: Optional[str] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.event_name = event_name


@dataclass(frozen=True)
class NormalizedEvent:
    kind: EventKind
    call_id: str
    direction: Direction
    observed_at: datetime
    agent_id: Optional[str] = None
    status_hints: Mapping[str, Any] = field(default_factory=dict)
    event_name: str = ""
    source: str = "webhook"
    received_at: Optional[datetime] = None


@dataclass(frozen=True)
class ExtractionRule:
    path: str
    convert: Callable[[Any], Any]

    def resolve(self, record: Mapping[str, Any]) -> Any:
        current: Any = record
        for part in self.path.split("."):
            if not isinstance(current, Mapping):
                return None
            current = current.get(part)
            if current is None:
                return None
        return self.convert(current)


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, (dict, list, tuple)):
        return None
    text = str(value).strip()
    return text or None


def _direction_from_text(value: Any) -> Optional[Direction]:
    text = _as_text(value)
    if text is None:
        return None
    return "OUT" if "out" in text.lower() else "IN"


def _direction_from_call_type(value: Any) -> Optional[Direction]:
    # Bitrix CALL_TYPE: 1 outbound, 2 inbound, 3 inbound with redirect, 4 callback
    text = _as_text(value)
    if text is None:
        return None
    return "OUT" if text == "1" else "IN"


def _as_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = _as_text(value)
        if text is None:
            return None
        try:
            seconds = float(text)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if seconds <= 0:
        return None
    if seconds > 1e12:
        seconds /= 1000.0
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _rules(paths: Sequence[str], convert: Callable[[Any], Any] = _as_text) -> Tuple[ExtractionRule, ...]:
    return tuple(ExtractionRule(path, convert) for path in paths)


EVENT_NAME_RULES = _rules(("event", "EVENT", "kind", "type", "data.EVENT", "DATA.EVENT"))

CALL_ID_RULES = _rules(
    ("callId", "CALL_ID", "PARAMS.CALL_ID", "FIELDS.CALL_ID", "FIELDS.callId", "call.id", "CALLID")
)

DIRECTION_RULES = _rules(
    ("direction", "DIRECTION", "PARAMS.DIRECTION", "FIELDS.DIRECTION", "FIELDS.direction"),
    _direction_from_text,
)

CALL_TYPE_RULES = _rules(
    ("CALL_TYPE", "PARAMS.CALL_TYPE", "FIELDS.CALL_TYPE"),
    _direction_from_call_type,
)

AGENT_ID_RULES = _rules(
    (
        "agentId",
        "AGENT_ID",
        "PORTAL_USER_ID",
        "USER_ID",
        "PARAMS.PORTAL_USER_ID",
        "PARAMS.USER_ID",
        "FIELDS.PORTAL_USER_ID",
        "FIELDS.USER_ID",
    )
)

OBSERVED_AT_RULES = _rules(("observedAt", "timestamp", "TIMESTAMP", "ts"), _as_timestamp)

STATUS_HINT_KEYS = ("CALL_FAILED_CODE", "CALL_FAILED_REASON", "CALL_DURATION", "STATUS", "CALL_STATUS")

_KIND_MARKERS: Dict[EventKind, frozenset[str]] = {
    "init": frozenset({"INIT", "RINGING", "RING", "CREATED"}),
    "connected": frozenset({"START", "STARTED", "ANSWER", "ANSWERED", "CONNECT", "CONNECTED"}),
    "end": frozenset({"END", "ENDED", "FINISH", "FINISHED", "HANGUP", "COMPLETED", "TERMINATED"}),
}
_KIND_PREFIXES = ("ONVOXIMPLANT", "ON", "CALL")
_NON_LETTERS = re.compile(r"[^A-Z]")


def resolve_kind(event_name: Optional[str]) -> EventKind:
    """Map "OnVoximplantCallInit", "ONVOXIMPLANTCALLEND", "call.answered" etc. to a kind."""
    token = _NON_LETTERS.sub("", str(event_name or "").upper())
    for prefix in _KIND_PREFIXES:
        if token.startswith(prefix) and len(token) > len(prefix):
            token = token[len(prefix):]
    for kind, markers in _KIND_MARKERS.items():
        if token in markers:
            return kind
    return "unknown"


def _sections(payload: Mapping[str, Any]) -> Tuple[Mapping[str, Any], ...]:
    for key in ("data", "DATA"):
        section = payload.get(key)
        if isinstance(section, Mapping):
            return (section, payload)
    return (payload,)


def _probe(sections: Sequence[Mapping[str, Any]], rules: Sequence[ExtractionRule]) -> Any:
    for rule in rules:
        for section in sections:
            value = rule.resolve(section)
            if value is not None:
                return value
    return None


def _status_hints(sections: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    hints: Dict[str, Any] = {}
    for key in STATUS_HINT_KEYS:
        value = _probe(sections, _rules((key, f"PARAMS.{key}", f"FIELDS.{key}"), lambda v: v))
        if value not in (None, ""):
            hints[key] = value
    return hints


def normalize_event(
    payload: Any,
    *,
    now: Optional[datetime] = None,
    direction_from_call_type: bool = True,
) -> NormalizedEvent:
    if not isinstance(payload, Mapping):
        raise EventNormalizationError("invalid_payload")

    event_name = _probe((payload,), EVENT_NAME_RULES) or ""
    sections = _sections(payload)

    call_id = _probe(sections, CALL_ID_RULES)
    if not call_id:
        raise EventNormalizationError("missing_call_id", event_name=event_name)

    direction = _probe(sections, DIRECTION_RULES)
    if direction is None and direction_from_call_type:
        direction = _probe(sections, CALL_TYPE_RULES)

    received_at = now or datetime.now(timezone.utc)
    observed_at = _probe(sections, OBSERVED_AT_RULES) or received_at

    return NormalizedEvent(
        kind=resolve_kind(event_name),
        call_id=call_id,
        direction=direction or "IN",
        observed_at=observed_at,
        agent_id=_probe(sections, AGENT_ID_RULES),
        status_hints=_status_hints(sections),
        event_name=event_name,
        received_at=received_at,
    )
