import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        query_timeout_secs: float,
        recent_limit: int,
        trends_months: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.query_timeout_secs = query_timeout_secs
        self.recent_limit = recent_limit
        self.trends_months = trends_months


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("DASHBOARD_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "dashboard.db"
    database_url = os.getenv("DASHBOARD_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("DASHBOARD_TIMEZONE", "Europe/Berlin")
    query_timeout_secs = float(os.getenv("DASHBOARD_QUERY_TIMEOUT_SECS", "5"))
    recent_limit = int(os.getenv("DASHBOARD_RECENT_LIMIT", "10"))
    trends_months = int(os.getenv("DASHBOARD_TRENDS_MONTHS", "6"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        query_timeout_secs=query_timeout_secs,
        recent_limit=recent_limit,
        trends_months=trends_months,
    )
