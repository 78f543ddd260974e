from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _default_env_file() -> str:
    # .env junto al repo; se puede sobreescribir con WQ_ENV_FILE.
    repo_root = Path(__file__).resolve().parents[1]
    return str(repo_root / ".env")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str
    redis_url: Optional[str]

    thresholds_file: Optional[str]
    recipients_file: Optional[str]

    ingest_workers: int
    ingest_queue_size: int
    advisory_alerts_enabled: bool

    mqtt_broker_host: Optional[str]
    mqtt_broker_port: int
    mqtt_username: Optional[str]
    mqtt_password: Optional[str]

    http_host: str
    http_port: int
    log_level: str


def get_settings() -> Settings:
    # Carga el .env (si existe) pero las variables reales tienen prioridad.
    env_file = os.getenv("WQ_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    database_url = os.getenv("DATABASE_URL", "sqlite:///./wq_ingest.db")
    redis_url = os.getenv("REDIS_URL") or None

    thresholds_file = os.getenv("WQ_THRESHOLDS_FILE") or None
    recipients_file = os.getenv("WQ_RECIPIENTS_FILE") or None

    ingest_workers = int(os.getenv("INGEST_NUM_WORKERS", "4"))
    ingest_queue_size = int(os.getenv("INGEST_QUEUE_SIZE", "1000"))
    advisory_alerts_enabled = _env_bool("ADVISORY_ALERTS_ENABLED", "false")

    mqtt_broker_host = os.getenv("MQTT_BROKER_HOST") or None
    mqtt_broker_port = int(os.getenv("MQTT_BROKER_PORT", "1883"))
    mqtt_username = os.getenv("MQTT_USERNAME") or None
    mqtt_password = os.getenv("MQTT_PASSWORD") or None

    return Settings(
        database_url=database_url,
        redis_url=redis_url,
        thresholds_file=thresholds_file,
        recipients_file=recipients_file,
        ingest_workers=ingest_workers,
        ingest_queue_size=ingest_queue_size,
        advisory_alerts_enabled=advisory_alerts_enabled,
        mqtt_broker_host=mqtt_broker_host,
        mqtt_broker_port=mqtt_broker_port,
        mqtt_username=mqtt_username,
        mqtt_password=mqtt_password,
        http_host=os.getenv("HTTP_HOST", "0.0.0.0"),
        http_port=int(os.getenv("HTTP_PORT", "8001")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
