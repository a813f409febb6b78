"""
Settings

Process settings read from the environment and an optional .env file.
"""

from typing import Optional
from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Origin spreadsheets, dashboard client and operator alerts.

    Server cache settings (REDIS_URL and friends) live in CacheConfig.
    """

    # Origin spreadsheets
    GOOGLE_SHEETS_API_KEY: Optional[str] = None
    METRICS_SPREADSHEET_ID: str = "1L9xc8YLltr7IRxzCwZh5NdMpjbrsyoaG0etXdsd7NiY"
    GIRLGROUP_SPREADSHEET_ID: str = "10c1IRqOcrjfSG-V3pTJg_x07UJx1GcBYZaVgSXVpcNI"
    BOYGROUP_SPREADSHEET_ID: str = "1610z9la__ozzeVSHhj1ljDyVKB5xK30Ewe38r6NHZZU"
    METRICS_SHEET_NAME: str = "sns_data"
    METADATA_SHEET_NAME: str = "idol_metadata"
    API_TIMEOUT: int = 60

    # Dashboard side
    EDGE_API_URL: str = "http://localhost:8000/exec"
    CLIENT_CACHE_PATH: str = "idol_sns_cache.db"

    # Warming failure emails; unset means alerts are only logged
    RESEND_API_KEY: Optional[str] = None
    ALERT_EMAIL: Optional[str] = None

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    return Settings()
