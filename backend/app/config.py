"""Application configuration."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./account_data.db"

    # Organisation's own mail domain - never used to resolve an account
    INTERNAL_DOMAIN: str = "example.com"

    # Aggregation caps per account
    EMAIL_CAP_PER_ACCOUNT: int = 500
    PAST_MEETING_CAP: int = 50
    FUTURE_MEETING_CAP: int = 50

    # Issue tracker (GitHub)
    GITHUB_TOKEN: Optional[str] = None
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_ISSUE_REPO_OWNER: Optional[str] = None
    GITHUB_ISSUE_REPO_NAME: Optional[str] = None
    GITHUB_MIN_REQUEST_INTERVAL: float = 0.2  # seconds between calls
    GITHUB_MAX_RETRIES: int = 3
    GITHUB_BACKOFF_BASE: float = 1.0
    GITHUB_TIMEOUT: float = 10.0

    # Labels
    ACCOUNT_LABEL_PREFIX: str = "account:"
    ACCOUNT_LABEL_COLOR: str = "fbca04"
    AUTO_GENERATED_LABEL: str = "auto-generated"

    # Feature Flags
    ENABLE_ISSUE_SYNC: bool = False
    ENABLE_RECAP_MATCHING: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
