import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        token_secret: str,
        years_back: int,
        years_ahead: int,
        scheduler_enabled: bool,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.token_secret = token_secret
        self.years_back = years_back
        self.years_ahead = years_ahead
        self.scheduler_enabled = scheduler_enabled
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Europe/Berlin")
    token_secret = os.getenv(
        "LEDGER_TOKEN_SECRET",
        "3f9c2a51d0b84e6f97a1c5e2d8b7043c6e19f2a4b8d05c7e1a3f6b9d2c4e8a10",
    )
    years_back = int(os.getenv("LEDGER_YEARS_BACK", "10"))
    years_ahead = int(os.getenv("LEDGER_YEARS_AHEAD", "2"))
    if years_back < 0 or years_ahead < 0:
        raise ValueError("Ledger horizon years must not be negative")
    scheduler_enabled = _env_flag("LEDGER_SCHEDULER_ENABLED", "true")
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        token_secret=token_secret,
        years_back=years_back,
        years_ahead=years_ahead,
        scheduler_enabled=scheduler_enabled,
        log_level=log_level,
    )
