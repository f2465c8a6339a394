from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml


@dataclass(slots=True)
class PathsConfig:
    db: Path
    log: Path


@dataclass(slots=True)
class QueueConfig:
    name: str = "reminders"
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    lease_seconds: int = 300
    max_reclaims: int = 3
    poll_interval_seconds: float = 5.0
    dedupe: bool = False

    @property
    def backoff_base(self) -> timedelta:
        return timedelta(seconds=self.backoff_base_seconds)

    @property
    def lease(self) -> timedelta:
        return timedelta(seconds=self.lease_seconds)


@dataclass(slots=True)
class ReminderConfig:
    lead_hours: float = 24.0
    timezone: str = "Europe/London"

    @property
    def lead_time(self) -> timedelta:
        return timedelta(hours=self.lead_hours)

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass(slots=True)
class MailerConfig:
    api_url: str = "https://api.mailersend.com/v1/email"
    api_key_env: str = "MAILERSEND_API_KEY"
    from_email: str = "no-reply@wavespoole.com"
    from_name: str = "Your Car Wash"
    timeout_seconds: float = 30.0

    def api_key(self) -> str:
        value = os.getenv(self.api_key_env, "")
        if not value:
            raise ValueError(f"environment variable `{self.api_key_env}` is not set")
        return value


@dataclass(slots=True)
class BusinessConfig:
    location_lines: list[str] = field(
        default_factory=lambda: ["Waves Hand Car Wash – Tesco Extra Car Park", "Tower Park, Poole, BH12 4NX"]
    )
    phone: str = "07500 182276"
    team_name: str = "The Waves Poole Team"


@dataclass(slots=True)
class AppConfig:
    paths: PathsConfig
    queue: QueueConfig = field(default_factory=QueueConfig)
    reminder: ReminderConfig = field(default_factory=ReminderConfig)
    mailer: MailerConfig = field(default_factory=MailerConfig)
    business: BusinessConfig = field(default_factory=BusinessConfig)


def _require(mapping: dict, key: str, section: str) -> object:
    if key not in mapping:
        raise ValueError(f"Missing `{section}.{key}` in config")
    return mapping[key]


def _section(raw: dict, key: str) -> dict:
    value = raw.get(key, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"`{key}` must be a mapping")
    return value


def _as_bool(value: object, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "yes", "1", "false", "no", "0"}:
        return value.strip().lower() in {"true", "yes", "1"}
    raise ValueError(f"`{key}` must be a boolean")


def _as_int(value: object, key: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"`{key}` must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"`{key}` must be an integer, got {value!r}") from exc


def _as_float(value: object, key: str) -> float:
    if isinstance(value, bool):
        raise ValueError(f"`{key}` must be a number")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"`{key}` must be a number, got {value!r}") from exc


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path).expanduser().resolve()
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    paths_raw = _require(raw, "paths", "root")
    if not isinstance(paths_raw, dict):
        raise ValueError("`paths` must be a mapping")
    queue_raw = _section(raw, "queue")
    reminder_raw = _section(raw, "reminder")
    mailer_raw = _section(raw, "mailer")
    business_raw = _section(raw, "business")

    def to_path(key: str) -> Path:
        value = _require(paths_raw, key, "paths")
        output = Path(str(value)).expanduser()
        if not output.is_absolute():
            output = config_path.parent / output
        return output

    paths = PathsConfig(db=to_path("db"), log=to_path("log"))

    queue = QueueConfig(
        name=str(queue_raw.get("name", "reminders")),
        max_attempts=_as_int(queue_raw.get("max_attempts", 3), "queue.max_attempts"),
        backoff_base_seconds=_as_float(queue_raw.get("backoff_base_seconds", 1.0), "queue.backoff_base_seconds"),
        lease_seconds=_as_int(queue_raw.get("lease_seconds", 300), "queue.lease_seconds"),
        max_reclaims=_as_int(queue_raw.get("max_reclaims", 3), "queue.max_reclaims"),
        poll_interval_seconds=_as_float(queue_raw.get("poll_interval_seconds", 5.0), "queue.poll_interval_seconds"),
        dedupe=_as_bool(queue_raw.get("dedupe", False), "queue.dedupe"),
    )
    if not queue.name.strip():
        raise ValueError("`queue.name` must not be empty")
    if queue.max_attempts < 1:
        raise ValueError("`queue.max_attempts` must be >= 1")
    if queue.backoff_base_seconds <= 0:
        raise ValueError("`queue.backoff_base_seconds` must be > 0")
    if queue.lease_seconds < 1:
        raise ValueError("`queue.lease_seconds` must be >= 1")
    if queue.max_reclaims < 1:
        raise ValueError("`queue.max_reclaims` must be >= 1")
    if queue.poll_interval_seconds <= 0:
        raise ValueError("`queue.poll_interval_seconds` must be > 0")

    reminder = ReminderConfig(
        lead_hours=_as_float(reminder_raw.get("lead_hours", 24.0), "reminder.lead_hours"),
        timezone=str(reminder_raw.get("timezone", "Europe/London")),
    )
    if reminder.lead_hours <= 0:
        raise ValueError("`reminder.lead_hours` must be > 0")
    try:
        ZoneInfo(reminder.timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"`reminder.timezone` is not a known time zone: {reminder.timezone}") from exc

    defaults = MailerConfig()
    mailer = MailerConfig(
        api_url=str(mailer_raw.get("api_url", defaults.api_url)),
        api_key_env=str(mailer_raw.get("api_key_env", defaults.api_key_env)),
        from_email=str(mailer_raw.get("from_email", defaults.from_email)),
        from_name=str(mailer_raw.get("from_name", defaults.from_name)),
        timeout_seconds=_as_float(
            mailer_raw.get("timeout_seconds", defaults.timeout_seconds),
            "mailer.timeout_seconds",
        ),
    )
    if mailer.timeout_seconds <= 0:
        raise ValueError("`mailer.timeout_seconds` must be > 0")

    business_defaults = BusinessConfig()
    location_raw = business_raw.get("location_lines", business_defaults.location_lines)
    if not isinstance(location_raw, list):
        raise ValueError("`business.location_lines` must be a list")
    business = BusinessConfig(
        location_lines=[str(line) for line in location_raw],
        phone=str(business_raw.get("phone", business_defaults.phone)),
        team_name=str(business_raw.get("team_name", business_defaults.team_name)),
    )

    return AppConfig(paths=paths, queue=queue, reminder=reminder, mailer=mailer, business=business)


def ensure_local_paths(config: AppConfig) -> None:
    config.paths.db.parent.mkdir(parents=True, exist_ok=True)
    config.paths.log.parent.mkdir(parents=True, exist_ok=True)
