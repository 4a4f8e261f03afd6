"""
Configuration for the lead scanner.

Values come from the environment, optionally seeded from a `.env` file in the
working directory. The Outscraper key is billable and must never be
hardcoded; everything else has a working default.
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_BASE_URLS = (
    "https://api.app.outscraper.com",
    "https://api.outscraper.com",
)


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing."""


@dataclass(frozen=True)
class Settings:
    api_key: str = ""
    base_urls: Tuple[str, ...] = DEFAULT_BASE_URLS
    search_timeout: float = 30.0
    reviews_timeout: float = 20.0
    max_concurrency: int = 5
    batch_size: int = 5
    batch_delay: float = 1.0
    circuit_failure_threshold: int = 5
    circuit_reset_timeout: float = 60.0
    circuit_half_open_successes: int = 2
    retry_max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    retry_jitter: float = 0.5
    cache_enabled: bool = True
    log_level: str = "INFO"
    log_dir: Optional[Path] = None

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigError("OUTSCRAPER_API_KEY is not configured")
        return self.api_key


def load_env() -> None:
    """Load .env from the working directory if present."""
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(dotenv_path=env_path)


def _parse_base_urls(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return DEFAULT_BASE_URLS
    urls = tuple(u.strip().rstrip("/") for u in raw.split(",") if u.strip())
    return urls or DEFAULT_BASE_URLS


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_env()

    api_key = os.getenv("OUTSCRAPER_API_KEY", "")
    log_dir_raw = os.getenv("LOG_DIR")

    if not api_key:
        logger.warning("OUTSCRAPER_API_KEY is not configured; upstream requests will fail.")

    return Settings(
        api_key=api_key,
        base_urls=_parse_base_urls(os.getenv("OUTSCRAPER_BASE_URLS")),
        search_timeout=float(os.getenv("SEARCH_TIMEOUT", "30")),
        reviews_timeout=float(os.getenv("REVIEWS_TIMEOUT", "20")),
        max_concurrency=int(os.getenv("MAX_CONCURRENCY", "5")),
        batch_size=int(os.getenv("BATCH_SIZE", "5")),
        batch_delay=float(os.getenv("BATCH_DELAY", "1.0")),
        circuit_failure_threshold=int(os.getenv("CIRCUIT_FAILURE_THRESHOLD", "5")),
        circuit_reset_timeout=float(os.getenv("CIRCUIT_RESET_TIMEOUT", "60")),
        circuit_half_open_successes=int(os.getenv("CIRCUIT_HALF_OPEN_SUCCESSES", "2")),
        retry_max_retries=int(os.getenv("RETRY_MAX_RETRIES", "3")),
        retry_base_delay=float(os.getenv("RETRY_BASE_DELAY", "1.0")),
        retry_max_delay=float(os.getenv("RETRY_MAX_DELAY", "10.0")),
        retry_jitter=float(os.getenv("RETRY_JITTER", "0.5")),
        cache_enabled=_env_bool("CACHE_ENABLED", True),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_dir=Path(log_dir_raw) if log_dir_raw else None,
    )
