"""
Configuration loader for the DialQueue system.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class QueueConfig:
    backend: str = "memory"             # "memory" for dev, "redis" for production
    redis_url: str = "redis://localhost:6379"
    email_concurrency: int = 5
    scheduler_concurrency: int = 2
    attempts: int = 3
    backoff_base_ms: int = 5000         # exponential: base * 2^(attempt-1)
    busy_retry_delay_ms: int = 15000    # re-enqueue delay when voice service is busy
    bulk_stagger_ms: int = 1000
    bulk_priority_step: float = 0.01
    clean_grace_ms: int = 24 * 60 * 60 * 1000
    clean_limit: int = 100
    poll_interval: float = 0.5          # seconds between empty lease attempts
    shutdown_grace_seconds: float = 30.0


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///./dialqueue.db"     # postgresql:// | sqlite://
    store_backend: str = "memory"              # "sql" | "memory"


@dataclass
class VoiceConfig:
    provider: str = "vapi"
    base_url: str = "https://api.vapi.ai"
    api_key: str = ""
    max_concurrent_calls: int = 1


@dataclass
class EmailConfig:
    provider: str = "log"               # "resend" | "log"
    api_key: str = ""
    from_address: str = "DialQueue Bot <noreply@example.com>"
    report_recipients: list[str] = field(default_factory=list)
    admin_recipients: list[str] = field(default_factory=list)


@dataclass
class SchedulerConfig:
    daily_report_cron: str = "0 6 * * *"
    weekly_report_cron: str = "0 8 * * 0"
    monthly_report_cron: str = "0 9 1 * *"
    cleanup_cron: str = "0 2 * * *"
    health_check_cron: str = "*/30 * * * *"
    retention_days: int = 30
    stuck_active_threshold: int = 10
    failed_threshold: int = 50
    reports_dir: str = "./uploads"


@dataclass
class Settings:
    app_name: str = "DialQueue"
    debug: bool = False
    timezone: str = "UTC"
    queue: QueueConfig = field(default_factory=QueueConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    voice: VoiceConfig = field(default_factory=VoiceConfig)
    email: EmailConfig = field(default_factory=EmailConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _split_recipients(value: Any) -> list[str]:
    """Accept a list or a comma-separated string (EMAIL_TO style)."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [v.strip() for v in value if v and v.strip() and not v.strip().startswith("${")]


def _build_section(cls, raw: dict[str, Any]):
    # Unresolved ${VAR} placeholders fall back to the dataclass default
    known = {
        k: v for k, v in raw.items()
        if k in cls.__dataclass_fields__
        and not (isinstance(v, str) and v.startswith("${"))
    }
    return cls(**known)


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "DIALQUEUE_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.timezone = raw.get("timezone", settings.timezone)

        if "queue" in raw:
            settings.queue = _build_section(QueueConfig, raw["queue"])
        if "database" in raw:
            settings.database = _build_section(DatabaseConfig, raw["database"])
        if "voice" in raw:
            settings.voice = _build_section(VoiceConfig, raw["voice"])
        if "scheduler" in raw:
            settings.scheduler = _build_section(SchedulerConfig, raw["scheduler"])

        if "email" in raw:
            em = dict(raw["email"])
            em["report_recipients"] = _split_recipients(em.get("report_recipients"))
            em["admin_recipients"] = _split_recipients(em.get("admin_recipients"))
            settings.email = _build_section(EmailConfig, em)

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
