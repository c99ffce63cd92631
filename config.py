import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        scheduler_hour: int,
        scheduler_minute: int,
        lookahead_months: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.scheduler_hour = scheduler_hour
        self.scheduler_minute = scheduler_minute
        self.lookahead_months = lookahead_months


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("LEDGER_DATABASE_URL")
    if not database_url:
        data_dir = _ensure_data_dir()
        database_url = f"sqlite:///{data_dir / 'ledger.db'}"
    timezone = os.getenv("LEDGER_TIMEZONE", "Europe/Berlin")
    scheduler_hour = int(os.getenv("LEDGER_SCHEDULER_HOUR", "0"))
    scheduler_minute = int(os.getenv("LEDGER_SCHEDULER_MINUTE", "5"))
    lookahead_months = int(os.getenv("LEDGER_LOOKAHEAD_MONTHS", "1"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        scheduler_hour=scheduler_hour,
        scheduler_minute=scheduler_minute,
        lookahead_months=lookahead_months,
    )
