from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv


_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
if _ENV_PATH.exists():
    load_dotenv(dotenv_path=_ENV_PATH)
else:  # fallback when launched from inside backend/
    load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return (os.getenv(name, default) or default).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


class Settings:
    # Railway volumes mount at /data; DATA_DIR is kept for those deployments.
    DATA_ROOT = Path(os.getenv("WALLBOARD_DATA_ROOT", os.getenv("DATA_DIR", "data")).strip() or "data")
    PORTAL_TOKENS_FILE = "portalTokens.json"

    APP_HOST = os.getenv("HOST", "0.0.0.0")
    APP_PORT = _env_int("PORT", 3000)

    # Public HTTPS origin, used only to report the handler URL to installers.
    PUBLIC_URL = os.getenv("PUBLIC_URL", "").strip()

    ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.getenv("ALLOWED_ORIGINS", "*").split(",")
        if origin.strip()
    ]

    # Bitrix outbound webhook "Application token". Empty disables the check.
    BITRIX_OUTBOUND_TOKEN = os.getenv("BITRIX_OUTBOUND_TOKEN", "").strip()

    # Stale-call reaper
    REAPER_ENABLED = _env_flag("REAPER_ENABLED", "true")
    REAPER_INTERVAL_SECONDS = _env_int("REAPER_INTERVAL_SECONDS", 60)
    if REAPER_INTERVAL_SECONDS <= 0:
        REAPER_INTERVAL_SECONDS = 60
    CALL_MAX_AGE_SECONDS = _env_int("CALL_MAX_AGE_SECONDS", 30 * 60)
    if CALL_MAX_AGE_SECONDS <= 0:
        CALL_MAX_AGE_SECONDS = 30 * 60

    HEARTBEAT_INTERVAL_SECONDS = max(0, _env_int("HEARTBEAT_INTERVAL_SECONDS", 30))
    RECENT_EVENTS_LIMIT = max(1, _env_int("RECENT_EVENTS_LIMIT", 25))

    # IANA zone name, e.g. "Europe/Berlin". Empty keeps counters for the process lifetime.
    DAILY_RESET_TIMEZONE = os.getenv("DAILY_RESET_TIMEZONE", "").strip()

    # Reconciliation policy
    CLASSIFY_WITH_STATUS_HINTS = _env_flag("CLASSIFY_WITH_STATUS_HINTS", "false")
    DIRECTION_FROM_CALL_TYPE = _env_flag("DIRECTION_FROM_CALL_TYPE", "true")

    # Logging controls
    LOG_LEVEL = (os.getenv("LOG_LEVEL", "INFO") or "INFO").upper()
    if LOG_LEVEL not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
        LOG_LEVEL = "INFO"
    LOG_NOISY_EVENTS_EVERY_N = _env_int("LOG_NOISY_EVENTS_EVERY_N", 120)
    if LOG_NOISY_EVENTS_EVERY_N < 0:
        LOG_NOISY_EVENTS_EVERY_N = 0
    LOG_PRETTY = (
        (os.getenv("LOG_PRETTY", "true") or "true").strip().lower() not in {"0", "false", "no", "off"}
    )
    _log_color = (os.getenv("LOG_COLOR", "auto") or "auto").strip().lower()
    if _log_color in {"1", "true", "yes", "on", "always"}:
        LOG_COLOR = True
    elif _log_color in {"0", "false", "no", "off", "never"}:
        LOG_COLOR = False
    else:
        LOG_COLOR = None

    LOG_NOISY_ACTIONS = tuple(
        action.strip()
        for action in os.getenv("LOG_NOISY_ACTIONS", "heartbeat,broadcast").split(",")
        if action.strip()
    )
    if not LOG_NOISY_ACTIONS:
        LOG_NOISY_ACTIONS = ("heartbeat", "broadcast")

    LOG_SKIP_REQUEST_PATHS = tuple(
        path.strip()
        for path in os.getenv("LOG_SKIP_REQUEST_PATHS", "/health,/debug/state").split(",")
        if path.strip()
    )

    TELEMETRY_JSONL_ENABLED = _env_flag("TELEMETRY_JSONL_ENABLED", "true")
    # Size at which telemetry_events.jsonl is moved aside to a single .1 backup. 0 disables rotation.
    TELEMETRY_JSONL_MAX_BYTES = max(0, _env_int("TELEMETRY_JSONL_MAX_BYTES", 20 * 1024 * 1024))


settings = Settings()
