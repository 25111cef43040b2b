# focusd/config.py
import os
import tempfile
from pathlib import Path

from .models import TimerConfig

SOCKET_NAME = "focusd.sock"

# Environment variable -> TimerConfig field
ENV_FIELDS = {
    "FOCUSD_WORK": "work",
    "FOCUSD_SHORT_BREAK": "short_break",
    "FOCUSD_LONG_BREAK": "long_break",
    "FOCUSD_SESSIONS": "sessions_before_long_break",
    "FOCUSD_AUTOSTART_WORK": "autostart_work",
    "FOCUSD_AUTOSTART_BREAK": "autostart_break",
    "FOCUSD_TICK_INTERVAL": "tick_interval",
    "FOCUSD_POSTPONE_LIMIT": "postpone_limit",
    "FOCUSD_POSTPONE_TIMER": "postpone_timer",
    "FOCUSD_NOTIFY": "notifications",
}


def get_socket_path() -> Path:
    """Socket path: $FOCUSD_SOCKET, else the runtime dir, else the temp dir."""
    explicit = os.getenv("FOCUSD_SOCKET")
    if explicit:
        return Path(explicit).expanduser()

    runtime_dir = os.getenv("XDG_RUNTIME_DIR")
    if runtime_dir:
        return Path(runtime_dir) / SOCKET_NAME

    return Path(tempfile.gettempdir()) / f"focusd-{os.getuid()}.sock"


def load_config(**overrides) -> TimerConfig:
    """Resolve the timer configuration.

    Values come from FOCUSD_* environment variables; keyword overrides that
    are not None win. Raises pydantic.ValidationError on invalid values.
    """
    values = {}
    for env_name, field_name in ENV_FIELDS.items():
        raw = os.getenv(env_name)
        if raw is not None and raw.strip():
            values[field_name] = raw.strip()

    suggestions = os.getenv("FOCUSD_BREAK_SUGGESTIONS")
    if suggestions:
        values["break_suggestions"] = [s.strip() for s in suggestions.split("|") if s.strip()]

    values.update({k: v for k, v in overrides.items() if v is not None})
    return TimerConfig(**values)
