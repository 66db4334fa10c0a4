import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        backend: str,
        rest_url: Optional[str],
        rest_api_key: Optional[str],
        rest_timeout_secs: float,
        user_id: str,
        cache_gc_secs: int,
        notification_limit: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.backend = backend
        self.rest_url = rest_url
        self.rest_api_key = rest_api_key
        self.rest_timeout_secs = rest_timeout_secs
        self.user_id = user_id
        self.cache_gc_secs = cache_gc_secs
        self.notification_limit = notification_limit


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINTRACK_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "fintrack.db"
    database_url = os.getenv("FINTRACK_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINTRACK_TIMEZONE", "UTC")
    csrf_secret = os.getenv(
        "FINTRACK_CSRF_SECRET",
        "5c0a1f3e9b7d24c8e6f1a03b9d58c7e2f4b6a8d0c2e4f6a8b0d2f4e6a8c0b2d4",
    )
    backend = os.getenv("FINTRACK_BACKEND", "sql").lower()
    rest_url = os.getenv("FINTRACK_REST_URL")
    rest_api_key = os.getenv("FINTRACK_REST_API_KEY")
    rest_timeout_secs = float(os.getenv("FINTRACK_REST_TIMEOUT_SECS", "10"))
    user_id = os.getenv("FINTRACK_USER_ID", "local-user")
    cache_gc_secs = int(os.getenv("FINTRACK_CACHE_GC_SECS", "300"))
    notification_limit = int(os.getenv("FINTRACK_NOTIFICATION_LIMIT", "50"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        backend=backend,
        rest_url=rest_url,
        rest_api_key=rest_api_key,
        rest_timeout_secs=rest_timeout_secs,
        user_id=user_id,
        cache_gc_secs=cache_gc_secs,
        notification_limit=notification_limit,
    )
