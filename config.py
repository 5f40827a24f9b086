import os
from functools import lru_cache
from pathlib import Path


CURRENCY_POLICIES = ("reject", "passthrough", "convert")


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        scheduler_interval_secs: int,
        scheduler_fail_fast: bool,
        enforce_balance_on_future_payments: bool,
        currency_policy: str,
        fx_markup_bps: int,
        storage_timeout_secs: float,
        storage_read_retries: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.scheduler_interval_secs = scheduler_interval_secs
        self.scheduler_fail_fast = scheduler_fail_fast
        self.enforce_balance_on_future_payments = enforce_balance_on_future_payments
        self.currency_policy = currency_policy
        self.fx_markup_bps = fx_markup_bps
        self.storage_timeout_secs = storage_timeout_secs
        self.storage_read_retries = storage_read_retries


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "UTC")
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    scheduler_interval_secs = int(os.getenv("LEDGER_SCHEDULER_INTERVAL_SECS", "3600"))
    currency_policy = os.getenv("LEDGER_CURRENCY_POLICY", "reject").strip().lower()
    if currency_policy not in CURRENCY_POLICIES:
        raise ValueError(f"Unsupported currency policy: {currency_policy}")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        log_level=log_level,
        scheduler_interval_secs=scheduler_interval_secs,
        scheduler_fail_fast=_env_flag("LEDGER_SCHEDULER_FAIL_FAST"),
        enforce_balance_on_future_payments=_env_flag(
            "LEDGER_ENFORCE_BALANCE_ON_FUTURE_PAYMENTS"
        ),
        currency_policy=currency_policy,
        fx_markup_bps=int(os.getenv("LEDGER_FX_MARKUP_BPS", "0")),
        storage_timeout_secs=float(os.getenv("LEDGER_STORAGE_TIMEOUT_SECS", "5")),
        storage_read_retries=int(os.getenv("LEDGER_STORAGE_READ_RETRIES", "2")),
    )
