"""Application settings and configuration"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "GitHub Issue Analyzer"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database (durable analysis state snapshots)
    DATABASE_URL: str = "sqlite:///./issue_analysis.db"
    STATE_STORE_BACKEND: str = "database"  # "database" or "memory"

    # GitHub API
    GITHUB_TOKEN: Optional[str] = None
    USER_AGENT: str = "GitHubIssueAnalyzer/1.0"

    # GitHub client resilience controls
    GITHUB_TIMEOUT_SECONDS: float = 30.0
    GITHUB_MAX_RETRIES: int = 3
    GITHUB_BACKOFF_BASE_SECONDS: float = 1.0
    GITHUB_BACKOFF_MAX_SECONDS: float = 16.0
    GITHUB_RATE_LIMIT_BUFFER_SECONDS: int = 2
    GITHUB_RATE_LIMIT_MAX_WAIT_SECONDS: float = 60.0

    # Issue retrieval tiers
    RETRIEVAL_PAGE_SIZE: int = 30
    RETRIEVAL_MAX_LIST_PAGES: int = 10
    RETRIEVAL_MAX_SEARCH_PAGES: int = 5
    RETRIEVAL_MAX_PROBES: int = 60
    RETRIEVAL_DEFAULT_LATEST_NUMBER: int = 50

    # LLM providers, tried in LLM_PROVIDER_ORDER when their keys are present
    LLM_PROVIDER_ORDER: str = "azure_openai,openai,anthropic,gemini"
    USE_FALLBACK_LLM: bool = False
    LLM_MAX_TOKENS: int = 800
    LLM_TEMPERATURE: float = 0.3
    LLM_TAG_TIMEOUT_SECONDS: float = 45.0
    LLM_RECOMMENDATION_TIMEOUT_SECONDS: float = 60.0

    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"

    AZURE_OPENAI_API_KEY: Optional[str] = None
    AZURE_OPENAI_ENDPOINT: Optional[str] = None
    AZURE_OPENAI_DEPLOYMENT_NAME: Optional[str] = None
    AZURE_OPENAI_API_VERSION: str = "2024-02-15-preview"

    ANTHROPIC_API_KEY: Optional[str] = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-20241022"

    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.0-flash"

    # Analysis orchestration
    ANALYSIS_SUMMARY_EVERY_N_ISSUES: int = 1
    ANALYSIS_RECENT_ISSUE_LIMIT: int = 15
    ANALYSIS_RECOMMENDATION_COUNT: int = 3
    ANALYSIS_DEFAULT_MAX_ISSUES: int = 10
    ANALYSIS_MAX_RETAINED_SUMMARIES: int = 5  # unpublished summaries kept in actor state

    # Subscription self-healing timer
    SUBSCRIPTION_CHECK_INITIAL_DELAY_SECONDS: float = 5.0
    SUBSCRIPTION_CHECK_INTERVAL_SECONDS: float = 30.0

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env


settings = Settings()
