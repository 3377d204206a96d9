"""
Runtime configuration.

Values come from the environment (optionally a `.env` file at the project
root). Everything the engine needs is collected into one `Settings` object so
it can be injected, and replaced wholesale in tests.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseModel):
    """All tunables for claimguard."""

    # Storage
    database_url: str = f"sqlite:///{project_root / 'claimguard.db'}"
    db_echo: bool = False

    # GitHub
    github_token: Optional[str] = None
    github_api_url: str = "https://api.github.com"
    github_timeout_seconds: float = 30.0

    # Slack
    slack_bot_token: Optional[str] = None
    slack_notification_channel: Optional[str] = None

    # Classifier
    classifier: str = "keywords"  # "keywords" or "gemini"
    gemini_model: str = "gemini-2.5-flash"
    gcp_project_id: Optional[str] = None
    gcp_location: str = "global"
    gemini_api_key: Optional[str] = None

    # Policy
    threshold_regime: str = "strict"

    # Monitor
    monitor_interval_minutes: float = 60.0
    max_concurrency: int = Field(default=4, ge=1)
    assignment_timeout_seconds: float = 120.0
    cycle_deadline_seconds: float = 1800.0
    transient_failure_limit: int = Field(default=3, ge=1)
    permanent_failure_limit: int = Field(default=2, ge=1)
    lease_seconds: float = 600.0
    dry_run: bool = False
    scheduler_enabled: bool = False
    repositories: List[str] = []

    # Fork cache
    fork_cache_hours: float = 12.0
    fork_miss_cache_hours: float = 1.0

    log_level: str = "INFO"


def load_settings() -> Settings:
    """Build settings from environment variables."""
    defaults = Settings()
    return Settings(
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        db_echo=_env_bool("DB_ECHO", False),
        github_token=os.getenv("GITHUB_TOKEN") or None,
        github_api_url=os.getenv("GITHUB_API_URL", defaults.github_api_url).rstrip("/"),
        slack_bot_token=os.getenv("SLACK_BOT_TOKEN") or None,
        slack_notification_channel=os.getenv("SLACK_NOTIFICATION_CHANNEL") or None,
        classifier=os.getenv("CLAIMGUARD_CLASSIFIER", defaults.classifier).lower(),
        gemini_model=os.getenv("CLAIMGUARD_GEMINI_MODEL", defaults.gemini_model),
        gcp_project_id=os.getenv("GCP_PROJECT_ID") or None,
        gcp_location=os.getenv("GCP_LOCATION", defaults.gcp_location),
        gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
        threshold_regime=os.getenv("CLAIMGUARD_THRESHOLD_REGIME", defaults.threshold_regime).lower(),
        monitor_interval_minutes=float(os.getenv("CLAIMGUARD_MONITOR_INTERVAL_MINUTES", "60")),
        max_concurrency=int(os.getenv("CLAIMGUARD_MAX_CONCURRENCY", "4")),
        assignment_timeout_seconds=float(os.getenv("CLAIMGUARD_ASSIGNMENT_TIMEOUT_SECONDS", "120")),
        cycle_deadline_seconds=float(os.getenv("CLAIMGUARD_CYCLE_DEADLINE_SECONDS", "1800")),
        transient_failure_limit=int(os.getenv("CLAIMGUARD_TRANSIENT_FAILURE_LIMIT", "3")),
        permanent_failure_limit=int(os.getenv("CLAIMGUARD_PERMANENT_FAILURE_LIMIT", "2")),
        lease_seconds=float(os.getenv("CLAIMGUARD_LEASE_SECONDS", "600")),
        dry_run=_env_bool("CLAIMGUARD_DRY_RUN", False),
        scheduler_enabled=_env_bool("CLAIMGUARD_SCHEDULER_ENABLED", False),
        repositories=_env_list("CLAIMGUARD_REPOSITORIES"),
        fork_cache_hours=float(os.getenv("CLAIMGUARD_FORK_CACHE_HOURS", "12")),
        fork_miss_cache_hours=float(os.getenv("CLAIMGUARD_FORK_MISS_CACHE_HOURS", "1")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
