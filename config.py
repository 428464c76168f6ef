import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        live_query: str,
        poll_interval_secs: float,
        recent_limit: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.live_query = live_query
        self.poll_interval_secs = poll_interval_secs
        self.recent_limit = recent_limit


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("EXPENSES_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'expenses.db'}"
    timezone = os.getenv("EXPENSES_TIMEZONE", "America/Bogota")
    live_query = os.getenv("EXPENSES_LIVE_QUERY", "push").lower()
    if live_query not in ("push", "poll"):
        raise ValueError(f"Unsupported live query mode: {live_query}")
    poll_interval_secs = float(os.getenv("EXPENSES_POLL_INTERVAL_SECS", "2"))
    recent_limit = int(os.getenv("EXPENSES_RECENT_LIMIT", "5"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        live_query=live_query,
        poll_interval_secs=poll_interval_secs,
        recent_limit=recent_limit,
    )
