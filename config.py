import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        horizon_months: int,
        receivables_months: int,
        default_billing_day: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.horizon_months = horizon_months
        self.receivables_months = receivables_months
        self.default_billing_day = default_billing_day
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FORECAST_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "forecast.db"
    database_url = os.getenv("FORECAST_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FORECAST_TIMEZONE", "America/Sao_Paulo")
    horizon_months = int(os.getenv("FORECAST_HORIZON_MONTHS", "6"))
    receivables_months = int(os.getenv("FORECAST_RECEIVABLES_MONTHS", "12"))
    default_billing_day = int(os.getenv("FORECAST_DEFAULT_BILLING_DAY", "15"))
    if not 1 <= default_billing_day <= 31:
        raise ValueError("FORECAST_DEFAULT_BILLING_DAY must be between 1 and 31")
    log_level = os.getenv("FORECAST_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        horizon_months=horizon_months,
        receivables_months=receivables_months,
        default_billing_day=default_billing_day,
        log_level=log_level,
    )
