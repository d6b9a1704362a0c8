import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: str,
        session_max_age_hours: int,
        billing_webhook_secret: str,
        trial_days: int,
        cache_capacity: int,
        cache_default_ttl_secs: float,
        cache_sweep_interval_secs: float,
        prefetch_delay_secs: float,
        prefetch_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.session_max_age_hours = session_max_age_hours
        self.billing_webhook_secret = billing_webhook_secret
        self.trial_days = trial_days
        self.cache_capacity = cache_capacity
        self.cache_default_ttl_secs = cache_default_ttl_secs
        self.cache_sweep_interval_secs = cache_sweep_interval_secs
        self.prefetch_delay_secs = prefetch_delay_secs
        self.prefetch_enabled = prefetch_enabled


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCEPRO_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "financepro.db"
    database_url = os.getenv("FINANCEPRO_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCEPRO_TIMEZONE", "America/Sao_Paulo")
    session_secret = os.getenv(
        "FINANCEPRO_SESSION_SECRET",
        "3f9c1d0a7be24f6e8a51c2d94e07b6a1c8f35d20e96b4a7f1d03c5e8b27a9f64",
    )
    session_max_age_hours = int(os.getenv("FINANCEPRO_SESSION_MAX_AGE_HOURS", "168"))
    billing_webhook_secret = os.getenv("FINANCEPRO_BILLING_WEBHOOK_SECRET", "")
    trial_days = int(os.getenv("FINANCEPRO_TRIAL_DAYS", "30"))
    cache_capacity = int(os.getenv("FINANCEPRO_CACHE_CAPACITY", "100"))
    cache_default_ttl_secs = float(os.getenv("FINANCEPRO_CACHE_DEFAULT_TTL_SECS", "300"))
    cache_sweep_interval_secs = float(
        os.getenv("FINANCEPRO_CACHE_SWEEP_INTERVAL_SECS", "60")
    )
    prefetch_delay_secs = float(os.getenv("FINANCEPRO_PREFETCH_DELAY_SECS", "0.1"))
    prefetch_enabled = _env_flag("FINANCEPRO_PREFETCH_ENABLED", True)
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        session_max_age_hours=session_max_age_hours,
        billing_webhook_secret=billing_webhook_secret,
        trial_days=trial_days,
        cache_capacity=cache_capacity,
        cache_default_ttl_secs=cache_default_ttl_secs,
        cache_sweep_interval_secs=cache_sweep_interval_secs,
        prefetch_delay_secs=prefetch_delay_secs,
        prefetch_enabled=prefetch_enabled,
    )
