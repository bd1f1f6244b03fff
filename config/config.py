"""Configuration classes for the different environments.

Values come from environment variables (optionally loaded from the project-root
``.env`` file). The defaults here are enough to run the service as long
as a Mapillary access token is available.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

DEVELOPMENT_ENV = ".env"


def _env_path(name: str, default: Path) -> Path:
    """Get an environment variable as a Path. If the variable is not set or empty, return the default."""
    raw = (os.getenv(name) or "").strip()
    return Path(raw) if raw else default


def _env_bool(name: str, default: bool) -> bool:
    """Get an environment variable as a boolean. Recognizes '1', 'true', 'yes', 'on' as True and '0', 'false', 'no', 'off' as False. Anything else returns the default."""
    raw = (os.getenv(name) or "").strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return default


def _env_int(name: str, default: int) -> int:
    """Get an environment variable as an integer. If the variable is not set or cannot be converted, return the default."""
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    """Get an environment variable as a float. If invalid or missing, return the default."""
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_choice(name: str, default: str, allowed: set[str]) -> str:
    """
    Get an environment variable as a choice from a set of allowed values.
    If the variable is not set or not in the allowed set, return the default.
    """
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    if raw in allowed:
        return raw
    return default


class Config:
    BASE_DIR = Path(__file__).resolve().parents[1]  # project root

    load_dotenv(Path(BASE_DIR) / DEVELOPMENT_ENV)

    # ================ Application Settings ================
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")
    PORT = _env_int("PORT", 8080)
    DEBUG = _env_bool("FLASK_DEBUG", False)
    TESTING = False

    # ================ Logging Settings ================
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()
    LOG_DIR = _env_path("LOG_DIR", BASE_DIR / "logs")
    LOG_FILE = _env_path("LOG_FILE", Path("app.log"))
    LOG_MAX_BYTES = _env_int("LOG_MAX_BYTES", 10 * 1024 * 1024)  # 10 MB
    LOG_BACKUP_COUNT = _env_int("LOG_BACKUP_COUNT", 5)
    WERKZEUG_LOG_LEVEL = "INFO"

    # ================ Third-party API Settings ================
    MAPILLARY_ACCESS_TOKEN = os.getenv("MAPILLARY_ACCESS_TOKEN") or os.getenv("MAP_API_KEY")
    MAPILLARY_RATE_LIMIT = _env_int("MAPILLARY_RATE_LIMIT", 900)  # official cap is 1000 req/min
    MAPILLARY_RATE_WINDOW_SECONDS = _env_float("MAPILLARY_RATE_WINDOW_SECONDS", 60.0)
    GEONAMES_USERNAME = os.getenv("GEONAMES_USERNAME", "demo")

    HTTP_USER_AGENT = os.getenv("HTTP_USER_AGENT", "geoguess-api/1.0")
    HTTP_POOL_SIZE = _env_int("HTTP_POOL_SIZE", 10)
    HTTP_BACKOFF_STEP_SECONDS = _env_float("HTTP_BACKOFF_STEP_SECONDS", 0.3)

    # ================ Cache Settings ================
    CACHE_COUNTRY_QUOTA = _env_int("CACHE_COUNTRY_QUOTA", 2)
    CACHE_EVICTION = _env_choice("CACHE_EVICTION", "random", {"random", "lifo"})
    CACHE_REFILL_THRESHOLD = _env_int("CACHE_REFILL_THRESHOLD", 5)
    CACHE_REFILL_BATCH = _env_int("CACHE_REFILL_BATCH", 5)
    CACHE_ATTEMPTS_PER_TARGET = _env_int("CACHE_ATTEMPTS_PER_TARGET", 5)
    CACHE_PREFILL_ON_STARTUP = _env_bool("CACHE_PREFILL_ON_STARTUP", True)

    IMAGE_CACHE_CONCURRENCY = _env_int("IMAGE_CACHE_CONCURRENCY", 4)
    IMAGE_CACHE_PREFILL = _env_int("IMAGE_CACHE_PREFILL", 15)
    PANO_CACHE_CONCURRENCY = _env_int("PANO_CACHE_CONCURRENCY", 5)
    PANO_CACHE_PREFILL = _env_int("PANO_CACHE_PREFILL", 10)


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_LEVEL = "DEBUG"


class TestConfig(Config):
    DEBUG = True
    TESTING = True
    LOG_LEVEL = "DEBUG"
    LOG_FILE = Path("testing.log")

    CACHE_PREFILL_ON_STARTUP = False


class ProductionConfig(Config):
    DEBUG = False
    LOG_LEVEL = "INFO"

    WERKZEUG_LOG_LEVEL = "WARNING"  # Reduce noisy request logs
