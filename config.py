import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        identity_secret: str,
        identity_max_age_secs: int,
        gemini_api_key: str,
        gemini_model: str,
        gemini_endpoint: str,
        push_endpoint: str,
        http_timeout_secs: float,
        sweep_hour: int,
        sweep_minute: int,
        analysis_cache_max_entries: int,
        analysis_cache_ttl_secs: float,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.identity_secret = identity_secret
        self.identity_max_age_secs = identity_max_age_secs
        self.gemini_api_key = gemini_api_key
        self.gemini_model = gemini_model
        self.gemini_endpoint = gemini_endpoint
        self.push_endpoint = push_endpoint
        self.http_timeout_secs = http_timeout_secs
        self.sweep_hour = sweep_hour
        self.sweep_minute = sweep_minute
        self.analysis_cache_max_entries = analysis_cache_max_entries
        self.analysis_cache_ttl_secs = analysis_cache_ttl_secs


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("INVOICES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "invoices.db"
    database_url = os.getenv("INVOICES_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("INVOICES_TIMEZONE", "UTC")
    identity_secret = os.getenv(
        "INVOICES_IDENTITY_SECRET",
        "4d0f1c7a9e2b86d35f1a0c4e7b92d8e6a13f5c7b9d0e2f4a6c8b1d3e5f7a9c0b",
    )
    identity_max_age_secs = int(os.getenv("INVOICES_IDENTITY_MAX_AGE_SECS", "3600"))
    gemini_api_key = os.getenv("INVOICES_GEMINI_API_KEY", "")
    gemini_model = os.getenv("INVOICES_GEMINI_MODEL", "gemini-2.5-flash")
    gemini_endpoint = os.getenv(
        "INVOICES_GEMINI_ENDPOINT",
        "https://generativelanguage.googleapis.com/v1beta/models",
    )
    push_endpoint = os.getenv(
        "INVOICES_PUSH_ENDPOINT", "https://exp.host/--/api/v2/push/send"
    )
    http_timeout_secs = float(os.getenv("INVOICES_HTTP_TIMEOUT_SECS", "10"))
    sweep_hour = int(os.getenv("INVOICES_SWEEP_HOUR", "3"))
    sweep_minute = int(os.getenv("INVOICES_SWEEP_MINUTE", "0"))
    analysis_cache_max_entries = int(
        os.getenv("INVOICES_ANALYSIS_CACHE_MAX_ENTRIES", "1024")
    )
    analysis_cache_ttl_secs = float(os.getenv("INVOICES_ANALYSIS_CACHE_TTL_SECS", "0"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        identity_secret=identity_secret,
        identity_max_age_secs=identity_max_age_secs,
        gemini_api_key=gemini_api_key,
        gemini_model=gemini_model,
        gemini_endpoint=gemini_endpoint,
        push_endpoint=push_endpoint,
        http_timeout_secs=http_timeout_secs,
        sweep_hour=sweep_hour,
        sweep_minute=sweep_minute,
        analysis_cache_max_entries=analysis_cache_max_entries,
        analysis_cache_ttl_secs=analysis_cache_ttl_secs,
    )
