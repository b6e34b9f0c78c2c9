import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        auth_secret: str,
        token_max_age_hours: int,
        default_page_size: int,
        log_level: str,
        cors_origins: list[str],
        rate_limit: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.auth_secret = auth_secret
        self.token_max_age_hours = token_max_age_hours
        self.default_page_size = default_page_size
        self.log_level = log_level
        self.cors_origins = cors_origins
        self.rate_limit = rate_limit


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "UTC")
    auth_secret = os.getenv(
        "FINANCE_AUTH_SECRET",
        "5b0e3c1fd2a44e7f9b61c8a0e2d7f4a93c6b1e08d5f2a7c4e9b3d6f0a1c8e5b2",
    )
    token_max_age_hours = int(os.getenv("FINANCE_TOKEN_MAX_AGE_HOURS", "24"))
    default_page_size = int(os.getenv("FINANCE_DEFAULT_PAGE_SIZE", "10"))
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    cors_origins = [
        origin.strip()
        for origin in os.getenv("FINANCE_CORS_ORIGINS", "*").split(",")
        if origin.strip()
    ]
    rate_limit = os.getenv("FINANCE_RATE_LIMIT", "100 per 15 minutes")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        auth_secret=auth_secret,
        token_max_age_hours=token_max_age_hours,
        default_page_size=default_page_size,
        log_level=log_level,
        cors_origins=cors_origins,
        rate_limit=rate_limit,
    )
