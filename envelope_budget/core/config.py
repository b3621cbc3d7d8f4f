from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class Settings(BaseSettings):
    APP_NAME: str = "Envelope Budget Backend"
    ENV: str = "dev"

    # absolute path to envelope_budget.sqlite3 at the repo root
    _default_db_path = Path(__file__).resolve().parents[2] / "envelope_budget.sqlite3"
    DATABASE_URL: str = f"sqlite:///{_default_db_path}"

    CORS_ORIGINS: list[str] = ["*"]
    LOG_LEVEL: str = "INFO"

    # Hand new users the starter accounts/envelopes instead of an empty state
    SEED_DEFAULT_STATE: bool = True

    # create missing tables on startup (alembic remains the source of truth)
    AUTO_CREATE_TABLES: bool = True

    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="ENVB_", case_sensitive=False)


settings = Settings()
