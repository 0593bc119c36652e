from pathlib import Path
from typing import Literal
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

# Load .env from repo root for local development and scripts.
ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(dotenv_path=ENV_PATH)

class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True, populate_by_name=True)
    db_path: str = Field(default="./data/folio.db", alias="DB_PATH")
    local_tz: str = Field(default="Africa/Cairo", alias="LOCAL_TZ")
    daily_cutover: str = Field(default="00:00", alias="DAILY_CUTOVER")
    close_policy: Literal["retain", "purge"] = Field(default="retain", alias="CLOSE_POLICY")
    yf_enable: int = Field(default=1, alias="YF_ENABLE")
    price_symbol_suffix: str = Field(default="", alias="PRICE_SYMBOL_SUFFIX")
    http_retry_attempts: int = Field(default=3, alias="HTTP_RETRY_ATTEMPTS")
    http_retry_backoff_seconds: float = Field(default=1.0, alias="HTTP_RETRY_BACKOFF_SECONDS")
    market_rate_limit_seconds: float = Field(default=0.2, alias="MARKET_RATE_LIMIT_SECONDS")
    refresh_enable: int = Field(default=0, alias="REFRESH_ENABLE")
    refresh_days: str = Field(default="sun-thu", alias="REFRESH_DAYS")
    refresh_hour: int = Field(default=15, alias="REFRESH_HOUR")
    refresh_minute: int = Field(default=0, alias="REFRESH_MINUTE")
    refresh_lock_ttl_seconds: int = Field(default=900, alias="REFRESH_LOCK_TTL_SECONDS")
    maturity_window_days: int = Field(default=30, alias="MATURITY_WINDOW_DAYS")
    maturity_list_limit: int = Field(default=10, alias="MATURITY_LIST_LIMIT")
    snapshot_list_limit: int = Field(default=100, alias="SNAPSHOT_LIST_LIMIT")

settings = Settings()
