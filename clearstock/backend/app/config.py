import logging
import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable not set")

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")

# memory | redis
SCAN_CACHE_BACKEND = os.getenv("SCAN_CACHE_BACKEND", "memory").strip().lower()
EXPIRY_SCAN_TTL_SECONDS = int(os.getenv("EXPIRY_SCAN_TTL_SECONDS", "60"))
EXPIRY_SCAN_INTERVAL_SECONDS = int(os.getenv("EXPIRY_SCAN_INTERVAL_SECONDS", "300"))

DEFAULT_UNIT = os.getenv("DEFAULT_UNIT", "un")
DEFAULT_ALERT_DAYS = int(os.getenv("DEFAULT_ALERT_DAYS", "3"))

SQL_ECHO = _env_bool("SQL_ECHO")
CELERY_ALWAYS_EAGER = _env_bool("CELERY_ALWAYS_EAGER")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
