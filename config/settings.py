"""
Configuration loader for the task notification pipeline.
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
class DatabaseConfig:
    url: str = "sqlite:///./tasknotify.db"             # postgresql:// | mysql:// | sqlite://
    store_backend: str = "memory"                      # "sql" | "memory"
    pool_size: int = 10                                # ignored for sqlite
    max_overflow: int = 20
    echo: bool = False                                 # log every SQL statement


@dataclass
class QueueConfig:
    backend: str = "memory"             # "memory" for dev, "sqs" for production
    queue_url: str = ""
    region: str = "us-east-1"
    endpoint_url: str = ""              # set for LocalStack
    access_key_id: str = ""
    secret_access_key: str = ""
    wait_seconds: int = 20              # long poll bound per receive
    max_messages: int = 10              # SQS caps a receive at 10
    visibility_timeout: int = 30
    consumer_concurrency: int = 5       # max concurrent materializations per batch
    run_consumer: bool = True           # start the consumer inside the API process
    publish_timeout_seconds: float = 5.0
    receive_error_delay_seconds: Optional[float] = None   # None -> wait_seconds
    poison_receive_threshold: int = 5


@dataclass
class AuthConfig:
    provider: str = "static"            # "static" | "http"
    user_url: str = ""                  # e.g. https://<project>.supabase.co/auth/v1/user
    api_key: str = ""
    tokens: dict[str, str] = field(default_factory=dict)   # static: token -> user id


@dataclass
class Settings:
    app_name: str = "TaskNotify"
    debug: bool = False
    log_level: str = "INFO"
    log_format: str = "console"         # "console" | "json"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)


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


def _unresolved(value: str) -> str:
    # Leave "" instead of a literal "${VAR}" when the variable is unset
    return "" if isinstance(value, str) and value.startswith("${") else value


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "TASKNOTIFY_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.log_level = raw.get("log_level", settings.log_level)
        settings.log_format = raw.get("log_format", settings.log_format)

        if "database" in raw:
            db = raw["database"]
            settings.database = DatabaseConfig(
                url=_unresolved(db.get("url", "")) or settings.database.url,
                store_backend=db.get("store_backend", settings.database.store_backend),
                pool_size=int(db.get("pool_size", 10)),
                max_overflow=int(db.get("max_overflow", 20)),
                echo=bool(db.get("echo", False)),
            )

        if "queue" in raw:
            q = raw["queue"]
            defaults = QueueConfig()
            settings.queue = QueueConfig(
                backend=q.get("backend", defaults.backend),
                queue_url=_unresolved(q.get("queue_url", "")),
                region=_unresolved(q.get("region", defaults.region)) or defaults.region,
                endpoint_url=_unresolved(q.get("endpoint_url", "")),
                access_key_id=_unresolved(q.get("access_key_id", "")),
                secret_access_key=_unresolved(q.get("secret_access_key", "")),
                wait_seconds=int(q.get("wait_seconds", defaults.wait_seconds)),
                max_messages=int(q.get("max_messages", defaults.max_messages)),
                visibility_timeout=int(q.get("visibility_timeout", defaults.visibility_timeout)),
                consumer_concurrency=int(q.get("consumer_concurrency", defaults.consumer_concurrency)),
                run_consumer=q.get("run_consumer", defaults.run_consumer),
                publish_timeout_seconds=float(
                    q.get("publish_timeout_seconds", defaults.publish_timeout_seconds)
                ),
                receive_error_delay_seconds=q.get("receive_error_delay_seconds"),
                poison_receive_threshold=int(
                    q.get("poison_receive_threshold", defaults.poison_receive_threshold)
                ),
            )

        if "auth" in raw:
            a = raw["auth"]
            settings.auth = AuthConfig(
                provider=a.get("provider", "static"),
                user_url=_unresolved(a.get("user_url", "")),
                api_key=_unresolved(a.get("api_key", "")),
                tokens=a.get("tokens") or {},
            )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
