from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "applyflow"
    app_env: str = "development"
    app_host: str = "127.0.0.1"
    app_port: int = 8787
    log_level: str = "INFO"

    database_url: str = "sqlite:///./data/applyflow.db"
    data_dir: Path = Path("./data")
    screenshot_dir: Path = Path("./data/screenshots")
    default_resume_path: str = ""

    browser_headless: bool = True
    browser_timeout_ms: int = 30000
    browser_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    browser_viewport_width: int = 1920
    browser_viewport_height: int = 1080
    browser_full_page_screenshots: bool = True

    max_form_pages: int = 10

    batch_default_delay_min_seconds: float = 30.0
    batch_default_delay_max_seconds: float = 120.0
    batch_max_log_entries: int = 1000

    cors_origins: str = "http://127.0.0.1:8787"

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, value: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if value not in allowed:
            raise ValueError(f"app_env must be one of {sorted(allowed)}")
        return value

    @field_validator("max_form_pages", "batch_max_log_entries")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be at least 1")
        return value

    @model_validator(mode="after")
    def validate_delays(self) -> "Settings":
        if self.batch_default_delay_min_seconds < 0:
            raise ValueError("batch_default_delay_min_seconds must not be negative")
        if self.batch_default_delay_max_seconds < self.batch_default_delay_min_seconds:
            raise ValueError("batch_default_delay_max_seconds must be >= batch_default_delay_min_seconds")
        return self

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def viewport(self) -> dict[str, int]:
        return {"width": self.browser_viewport_width, "height": self.browser_viewport_height}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
