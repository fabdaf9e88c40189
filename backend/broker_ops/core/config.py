"""Application configuration using pydantic-settings."""
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[3] / ".env"),
        case_sensitive=False,
    )

    # Application
    log_level: str = "INFO"
    app_mode: str = "demo"

    # Persistence. Empty or ":memory:" keeps dashboard state in-process only.
    state_db_path: str = "./data/broker_state.db"

    # Load feed
    loads_path: str = "./data/loads.json"
    loads_url: str = ""
    loads_timeout_seconds: float = 10.0

    # Evaluation loop
    tick_interval_seconds: float = 60.0
    notify_on_code_change: bool = False

    # Local feeds
    notification_feed_limit: int = 100
    contact_log_limit: int = 200
    snooze_minutes: int = 30

    # IANA zone that defines "today" for the dashboard's same-day view
    dashboard_timezone: str = "UTC"

    def normalized_app_mode(self) -> str:
        mode = (self.app_mode or "").strip().lower()
        return mode if mode in {"demo", "production"} else "production"

    def is_demo_mode(self) -> bool:
        return self.normalized_app_mode() == "demo"

    def uses_memory_state(self) -> bool:
        path = (self.state_db_path or "").strip()
        return not path or path == ":memory:"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
