# link-analytics-service/config.py
import os
from dataclasses import dataclass
from typing import List


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    app_url: str
    debug: bool
    log_level: str
    mongo_host: str
    mongo_port: int
    mongo_db: str
    redis_host: str
    redis_port: int
    redis_db: int
    rabbitmq_host: str
    click_queue: str
    broadcast_exchange: str
    geo_enabled: bool
    geo_timeout: float
    access_token_ttl: int
    refresh_token_ttl: int
    cookie_secure: bool
    qr_service_url: str
    cors_origins: List[str]


def get_settings() -> Settings:
    """
    Reads the service settings from the environment.
    Values are read on every call so tests can override them per test.
    """
    return Settings(
        app_url=os.environ.get("APP_URL", "http://localhost:8000").rstrip("/"),
        debug=_env_bool("APP_DEBUG", False),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        mongo_host=os.environ.get("MONGO_HOST", "localhost"),
        mongo_port=int(os.environ.get("MONGO_PORT", 27017)),
        mongo_db=os.environ.get("MONGO_DB", "links_db"),
        redis_host=os.environ.get("REDIS_HOST", "localhost"),
        redis_port=int(os.environ.get("REDIS_PORT", 6379)),
        redis_db=int(os.environ.get("REDIS_DB", 0)),
        rabbitmq_host=os.environ.get("RABBITMQ_HOST", "localhost"),
        click_queue=os.environ.get("CLICK_QUEUE", "link_clicks"),
        broadcast_exchange=os.environ.get("BROADCAST_EXCHANGE", "click_broadcast"),
        geo_enabled=_env_bool("GEO_ENABLED", True),
        geo_timeout=float(os.environ.get("GEO_TIMEOUT", 10)),
        access_token_ttl=int(os.environ.get("ACCESS_TOKEN_TTL", 3600)),
        refresh_token_ttl=int(os.environ.get("REFRESH_TOKEN_TTL", 3600 * 24 * 14)),
        cookie_secure=_env_bool("COOKIE_SECURE", False),
        qr_service_url=os.environ.get(
            "QR_SERVICE_URL", "https://api.qrserver.com/v1/create-qr-code/"
        ),
        cors_origins=[
            origin.strip()
            for origin in os.environ.get("CORS_ORIGINS", "*").split(",")
            if origin.strip()
        ],
    )
