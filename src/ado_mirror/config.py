"""Configuration settings for ADO Mirror."""

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_API_VERSION = "7.1-preview.3"
BATCH_CEILING = 200
"""Maximum number of ids the work items batch endpoint accepts per call."""

DEFAULT_DISCOVERY_QUERY = (
    "SELECT [System.Id] FROM WorkItems "
    "WHERE [System.TeamProject] = @project "
    "ORDER BY [System.ChangedDate] DESC"
)


class RateLimitConfig(BaseModel):
    """Configuration for the client-side rate limiter.

    Controls the local request budget and how far the limiter will
    defer to server-reported quota headers.
    """

    requests_per_second: float = Field(
        default=5.0,
        gt=0.0,
        le=100.0,
        description="Local budget: maximum requests per rolling one-second window",
    )
    max_server_wait_seconds: float = Field(
        default=60.0,
        ge=0.0,
        description="Cap on how long to wait for a server-reported quota reset",
    )
    quota_floor: int = Field(
        default=1,
        ge=0,
        description="Wait for the reset once remaining quota is at or below this value",
    )


class PacingConfig(BaseModel):
    """Configuration for batch fan-out.

    Controls chunk size and how many chunks may be in flight at once.
    """

    batch_size: int = Field(
        default=BATCH_CEILING,
        ge=1,
        le=BATCH_CEILING,
        description="Maximum ids per batch-get call",
    )
    max_concurrency: int = Field(
        default=3,
        ge=1,
        le=50,
        description="Maximum batch calls in flight simultaneously",
    )


class OperationPolicyConfig(BaseModel):
    """Retry, timeout and circuit-breaker settings for one operation kind."""

    max_attempts: int = Field(default=3, ge=1, le=10, description="Total attempts including the first")
    initial_delay_seconds: float = Field(default=0.5, ge=0.0, description="Base backoff delay")
    max_delay_seconds: float = Field(default=5.0, ge=0.0, description="Cap for a single backoff delay")
    timeout_seconds: float = Field(default=30.0, gt=0.0, description="Per-attempt timeout")
    failure_threshold: int = Field(
        default=3, ge=1, description="Failures within the sample window that open the breaker"
    )
    recovery_seconds: float = Field(
        default=20.0, ge=0.0, description="Time an open breaker waits before allowing a probe"
    )
    sample_size: int = Field(default=5, ge=1, description="Number of recent outcomes considered")

    @model_validator(mode="after")
    def _threshold_fits_window(self) -> "OperationPolicyConfig":
        # A threshold above the window size could never trip the breaker
        if self.failure_threshold > self.sample_size:
            raise ValueError(
                f"failure_threshold ({self.failure_threshold}) must not exceed "
                f"sample_size ({self.sample_size})"
            )
        return self


class ResilienceConfig(BaseModel):
    """Per-operation-kind resilience policies.

    Each operation kind has its own breaker so that one failing class of
    traffic does not trip breakers for unrelated calls.
    """

    batch: OperationPolicyConfig = Field(
        default_factory=lambda: OperationPolicyConfig(
            max_attempts=5,
            max_delay_seconds=10.0,
            timeout_seconds=45.0,
            failure_threshold=3,
            recovery_seconds=30.0,
            sample_size=5,
        )
    )
    single: OperationPolicyConfig = Field(
        default_factory=lambda: OperationPolicyConfig(
            failure_threshold=3,
            recovery_seconds=20.0,
        )
    )
    query: OperationPolicyConfig = Field(
        default_factory=lambda: OperationPolicyConfig(
            failure_threshold=5,
            recovery_seconds=20.0,
            sample_size=10,
        )
    )
    comment: OperationPolicyConfig = Field(
        default_factory=lambda: OperationPolicyConfig(
            max_attempts=2,
            failure_threshold=3,
            recovery_seconds=15.0,
        )
    )
    update: OperationPolicyConfig = Field(
        default_factory=lambda: OperationPolicyConfig(
            max_attempts=2,
            failure_threshold=3,
            recovery_seconds=20.0,
        )
    )


class SyncConfig(BaseModel):
    """Configuration for work item sync behavior.

    Controls the background schedule, the freshness check on startup,
    and how long soft-deleted work items are retained.
    """

    interval_minutes: float = Field(
        default=5.0,
        gt=0.0,
        description="Minutes between background sync passes",
    )
    staleness_threshold_minutes: float = Field(
        default=5.0,
        ge=0.0,
        description="Skip the startup pass when the newest cursor is younger than this",
    )
    tombstone_retention_days: int = Field(
        default=30,
        ge=0,
        description="Days a soft-deleted work item is kept before it is purged",
    )
    comment_concurrency: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Work items whose comments are fetched concurrently",
    )
    discovery_query: str = Field(
        default=DEFAULT_DISCOVERY_QUERY,
        min_length=1,
        description="WIQL query used for the discovery sweep",
    )

    @property
    def interval(self) -> timedelta:
        """Get the sync interval as a timedelta."""
        return timedelta(minutes=self.interval_minutes)

    @property
    def staleness_threshold(self) -> timedelta:
        """Get the staleness threshold as a timedelta."""
        return timedelta(minutes=self.staleness_threshold_minutes)

    @property
    def tombstone_retention(self) -> timedelta:
        """Get the tombstone retention as a timedelta."""
        return timedelta(days=self.tombstone_retention_days)


class LoggingConfig(BaseModel):
    """Configuration for logging behavior.

    Controls file logging, rotation, and output format.
    """

    log_file: str | None = Field(
        default=None,
        description="Optional path for file logging (enables rotation)",
    )
    rotation: str = Field(
        default="10 MB",
        description="When to rotate log file (e.g., '10 MB', '1 day')",
    )
    retention: str = Field(
        default="7 days",
        description="How long to keep rotated logs",
    )
    serialize: bool = Field(
        default=False,
        description="If True, output JSON format to file",
    )


class AzureDevOpsConfig(BaseModel):
    """Connection settings for one Azure DevOps organization/project."""

    organization: str = Field(default="", description="Azure DevOps organization name")
    project: str = Field(default="", description="Azure DevOps project name")
    pat: SecretStr = Field(default=SecretStr(""), description="Personal access token")
    base_url: str | None = Field(
        default=None,
        description="Override for https://dev.azure.com/{organization}",
    )
    api_version: str = Field(default=DEFAULT_API_VERSION, min_length=1)
    auth_scheme: Literal["basic", "bearer"] = Field(
        default="basic",
        description="basic sends base64(':' + PAT); bearer sends the token as-is",
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # --------------------------------------------------------------------------
    # Database
    # --------------------------------------------------------------------------
    database_url: str = Field(
        default="sqlite+aiosqlite:///./ado_mirror.db",
        description="Async SQLite database connection string",
    )

    # --------------------------------------------------------------------------
    # Azure DevOps
    # --------------------------------------------------------------------------
    azure_devops_org: str = Field(default="", description="Azure DevOps organization")
    azure_devops_project: str = Field(default="", description="Azure DevOps project")
    azure_devops_pat: SecretStr = Field(default=SecretStr(""), description="Personal access token")
    azure_devops_base_url: str | None = Field(default=None, description="API base URL override")
    azure_devops_api_version: str = Field(default=DEFAULT_API_VERSION)
    azure_devops_auth_scheme: Literal["basic", "bearer"] = Field(default="basic")

    # --------------------------------------------------------------------------
    # Application
    # --------------------------------------------------------------------------
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # --------------------------------------------------------------------------
    # Rate Limiting, Pacing & Resilience
    # --------------------------------------------------------------------------
    rate_limit: RateLimitConfig = Field(
        default_factory=RateLimitConfig,
        description="Client-side rate limiter configuration",
    )
    pacing: PacingConfig = Field(
        default_factory=PacingConfig,
        description="Batch fan-out configuration",
    )
    resilience: ResilienceConfig = Field(
        default_factory=ResilienceConfig,
        description="Retry, timeout and circuit-breaker policies",
    )

    # --------------------------------------------------------------------------
    # Sync Configuration
    # --------------------------------------------------------------------------
    sync: SyncConfig = Field(
        default_factory=SyncConfig,
        description="Work item sync behavior configuration",
    )

    # --------------------------------------------------------------------------
    # Logging Configuration
    # --------------------------------------------------------------------------
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration (file output, rotation)",
    )

    @property
    def azure_devops(self) -> AzureDevOpsConfig:
        """Connection settings gathered into one object."""
        return AzureDevOpsConfig(
            organization=self.azure_devops_org,
            project=self.azure_devops_project,
            pat=self.azure_devops_pat,
            base_url=self.azure_devops_base_url,
            api_version=self.azure_devops_api_version,
            auth_scheme=self.azure_devops_auth_scheme,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
