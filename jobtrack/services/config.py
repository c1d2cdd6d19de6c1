from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_path: str = "./data/jobtrack.db"
    api_port: int = 8000
    frontend_url: str = "http://localhost:5173"
    log_level: str = "INFO"
    # Upper bound on SQLite connections open at once across a fan-out
    max_concurrent_queries: int = 8

    # Labor rates used when a time entry carries no recorded total_cost
    regular_rate: float = 50.0
    overtime_rate: float = 75.0
    double_time_rate: float = 100.0
    # Draft/submitted entries only count toward actuals when this is on
    include_unapproved_time: bool = False

    trend_window_days: int = 30
    variance_threshold_percent: float = 5.0
    critical_variance_limit: int = 5

    at_risk_min_score: float = 70.0
    at_risk_limit: int = 10
    job_scan_limit: int = 100

    forecast_schedule_factor: float = 1.2
    forecast_confidence: float = 0.75

    @property
    def resolved_database_path(self) -> Path:
        path = Path(self.database_path)
        if path.is_absolute():
            return path
        return Path(__file__).resolve().parents[2] / path


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
