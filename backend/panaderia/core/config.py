from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Panaderia Inventario"
    environment: str = "development"
    api_v1_prefix: str = "/api/v1"

    secret_key: str = "change-this-secret-key"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 8

    database_url: str = "postgresql+psycopg2://panaderia:panaderia@db:5432/panaderia"
    cors_origins: str = "http://localhost:5173"

    ledger_lock_timeout_seconds: float = 5.0
    history_page_limit_max: int = 500

    log_level: str = "INFO"
    log_dir: str = "logs"

    seed_demo_data: bool = True

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
