"""Runtime configuration.

All tunables live on :class:`RequestDeskConfig`, which can be built
from ``REQUESTDESK_*`` environment variables.  Durations are stored in
seconds and exposed as :class:`~datetime.timedelta` properties.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


@dataclass(frozen=True)
class RequestDeskConfig:
    """Tuning knobs for intake, moderation and processing."""

    auto_process_delay_seconds: float = 5 * 60
    hold_max_duration_seconds: float = 6 * 60 * 60
    max_requests_per_hour: int = 4
    max_requests_per_day: int = 12
    max_message_length: int = 150
    per_track_cooldown_seconds: float = 4 * 60 * 60
    tick_interval_seconds: float = 10.0
    agent_timeout_seconds: float = 15.0
    abort_tick_on_failure: bool = True
    storage: str = "memory"
    db_path: str = "requestdesk.db"
    admin_key: str | None = None
    blocklist_path: str | None = None
    trust_forwarded_for: bool = False
    log_level: str = "INFO"
    log_json: bool = True

    def __post_init__(self) -> None:
        for name in (
            "auto_process_delay_seconds",
            "hold_max_duration_seconds",
            "per_track_cooldown_seconds",
            "max_requests_per_hour",
            "max_requests_per_day",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if self.max_message_length <= 0:
            raise ValueError("max_message_length must be positive")
        if self.tick_interval_seconds <= 0:
            raise ValueError("tick_interval_seconds must be positive")
        if self.agent_timeout_seconds <= 0:
            raise ValueError("agent_timeout_seconds must be positive")
        if self.storage not in ("memory", "sqlite"):
            raise ValueError(f"Unknown storage backend {self.storage!r}")

    @property
    def auto_process_delay(self) -> timedelta:
        return timedelta(seconds=self.auto_process_delay_seconds)

    @property
    def hold_max_duration(self) -> timedelta:
        return timedelta(seconds=self.hold_max_duration_seconds)

    @property
    def per_track_cooldown(self) -> timedelta:
        return timedelta(seconds=self.per_track_cooldown_seconds)

    @property
    def cooldown_hours(self) -> float:
        return round(self.per_track_cooldown_seconds / 3600, 2)

    @classmethod
    def from_env(cls) -> RequestDeskConfig:
        """Build a config from ``REQUESTDESK_*`` variables, falling back to defaults."""
        defaults = cls()
        return cls(
            auto_process_delay_seconds=_env_float(
                "REQUESTDESK_AUTO_PROCESS_DELAY", defaults.auto_process_delay_seconds
            ),
            hold_max_duration_seconds=_env_float(
                "REQUESTDESK_HOLD_MAX_DURATION", defaults.hold_max_duration_seconds
            ),
            max_requests_per_hour=_env_int("REQUESTDESK_MAX_PER_HOUR", defaults.max_requests_per_hour),
            max_requests_per_day=_env_int("REQUESTDESK_MAX_PER_DAY", defaults.max_requests_per_day),
            max_message_length=_env_int(
                "REQUESTDESK_MAX_MESSAGE_LENGTH", defaults.max_message_length
            ),
            per_track_cooldown_seconds=_env_float(
                "REQUESTDESK_TRACK_COOLDOWN", defaults.per_track_cooldown_seconds
            ),
            tick_interval_seconds=_env_float(
                "REQUESTDESK_TICK_INTERVAL", defaults.tick_interval_seconds
            ),
            agent_timeout_seconds=_env_float(
                "REQUESTDESK_AGENT_TIMEOUT", defaults.agent_timeout_seconds
            ),
            abort_tick_on_failure=_env_bool(
                "REQUESTDESK_ABORT_ON_FAILURE", defaults.abort_tick_on_failure
            ),
            storage=os.environ.get("REQUESTDESK_STORAGE", defaults.storage),
            db_path=os.environ.get("REQUESTDESK_DB_PATH", defaults.db_path),
            admin_key=os.environ.get("REQUESTDESK_ADMIN_KEY") or None,
            blocklist_path=os.environ.get("REQUESTDESK_BLOCKLIST_PATH") or None,
            trust_forwarded_for=_env_bool(
                "REQUESTDESK_TRUST_FORWARDED_FOR", defaults.trust_forwarded_for
            ),
            log_level=os.environ.get("REQUESTDESK_LOG_LEVEL", defaults.log_level),
            log_json=_env_bool("REQUESTDESK_LOG_JSON", defaults.log_json),
        )
