"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseSettings):
    # ── Postgres ─────────────────────────────────────────
    postgres_user: str = "dashboard"
    postgres_password: str = "dashboard_pw"
    postgres_db: str = "dashboard"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    db_ssl: bool = False

    # ── Query guard ──────────────────────────────────────
    query_max_rows: int = 1000
    query_allowlist_enabled: bool = False
    query_allowed_card_ids: str = ""  # comma-separated card ids
    query_timeout_ms: int = 10_000

    # ── App ──────────────────────────────────────────────
    api_port: int = 8080
    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+psycopg2://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def allowed_card_ids(self) -> frozenset[str]:
        return frozenset(
            part.strip() for part in self.query_allowed_card_ids.split(",") if part.strip()
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
