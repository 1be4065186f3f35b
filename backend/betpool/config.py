from __future__ import annotations
import os
from decimal import Decimal
from pydantic import BaseModel

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "betpool-api")
    app_display_name: str = os.getenv("APP_DISPLAY_NAME", "LevelUpR")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    database_url: str = os.getenv("DATABASE_URL", "postgresql+asyncpg://postgres:postgres@db:5432/betpool_dev")
    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    sql_echo: bool = os.getenv("SQL_ECHO", "0") == "1"

    # Identity provider (tokens are issued elsewhere, we only verify them)
    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    jwt_alg: str = os.getenv("JWT_ALG", "HS256")
    access_ttl_min: int = int(os.getenv("ACCESS_TTL_MIN", "15"))

    # Challenge engine
    creator_bonus_rate: Decimal = Decimal(os.getenv("CREATOR_BONUS_RATE", "0.10"))  # share of losing pool
    min_group_bet: int = int(os.getenv("MIN_GROUP_BET", "1"))
    min_global_bet: int = int(os.getenv("MIN_GLOBAL_BET", "20"))
    proof_submission_hours: float = float(os.getenv("PROOF_SUBMISSION_HOURS", "3"))  # after deadline
    voting_duration_hours: float = float(os.getenv("VOTING_DURATION_HOURS", "2"))

    # Shared with the task module of the client app; not read by the engine
    max_daily_tasks: int = int(os.getenv("MAX_DAILY_TASKS", "5"))

    ledger_history_limit: int = int(os.getenv("LEDGER_HISTORY_LIMIT", "50"))

settings = Settings()

def get_settings() -> Settings:
    """FastAPI dependency; tests override it to inject engine constants."""
    return settings
