import logging
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    ENV: str = "development"
    # Raise instead of warn on bad configuration
    CONFIG_STRICT: bool = False

    # Document store; unset means the in-memory store
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    BACKEND_URL: str = "http://localhost:8000"
    CORS_ORIGINS: str = "http://localhost:3000"  # comma-separated

    # Attempts per completion event before ConflictError
    LEDGER_MAX_RETRIES: int = 3

    LEADERBOARD_TOP_N: int = 10

    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "UTC"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()


def _problems(cfg) -> List[str]:
    found = []
    if not getattr(cfg, "DATABASE_URL", None):
        found.append("Missing required configuration: DATABASE_URL (falling back to in-memory store)")
    if getattr(cfg, "LEDGER_MAX_RETRIES", 1) < 1:
        found.append("LEDGER_MAX_RETRIES must be >= 1")
    if getattr(cfg, "LEADERBOARD_TOP_N", 1) < 1:
        found.append("LEADERBOARD_TOP_N must be >= 1")
    return found


def validate_config(strict: Optional[bool] = None, settings_obj=None, logger: Optional[logging.Logger] = None) -> bool:
    """Check settings at startup.

    Strict mode raises RuntimeError on the first report; otherwise each problem
    is logged as a warning. Values are never logged, only key names.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("familyquest")
    strict_mode = cfg.CONFIG_STRICT if strict is None else strict

    problems = _problems(cfg)
    if problems and strict_mode:
        raise RuntimeError("; ".join(problems))
    for problem in problems:
        log.warning(problem)
    return True
