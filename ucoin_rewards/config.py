"""Application configuration and environment settings"""
from typing import Optional
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Token economics
XP_PER_CONTRIBUTION = 50
UCOIN_DECIMALS = 18


class TelemetrySettings(BaseModel):
    """GitHub telemetry specific settings"""
    graphql_url: str = Field(..., description="GitHub GraphQL endpoint")
    timeout_seconds: float = Field(..., description="Per-request timeout")
    max_concurrency: int = Field(..., description="Upper bound on concurrent fetches")
    window_days: int = Field(..., description="Trailing contribution window")
    max_retries: int = Field(..., description="Retries on connection errors and 5xx")


class PollingSettings(BaseModel):
    """Session polling intervals"""
    status_interval: float = Field(..., description="Seconds between status reads")
    balance_interval: float = Field(..., description="Seconds between balance reads")


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""
    # Ledger settings
    DATABASE_URL: str = Field("sqlite:///ucoin_rewards.db", description="Ledger database URL")
    APPROVER_ADDRESS: Optional[str] = Field(None, description="Wallet address allowed to approve withdrawals")

    # GitHub settings
    GITHUB_TOKEN: Optional[str] = Field(None, description="Service-held GitHub API token")
    GITHUB_ENCRYPTED_TOKEN: Optional[str] = Field(None, description="Encrypted GitHub API token (hex)")
    GITHUB_GRAPHQL_URL: str = Field("https://api.github.com/graphql", description="GitHub GraphQL endpoint")

    # Credential decryption
    SERVICE_PRIVATE_KEY_PATH: Optional[str] = Field(None, description="Path to service private key PEM file")
    SERVICE_BINDING: str = Field("ucoin-rewards", description="Service name encrypted secrets are bound to")

    # Telemetry fan-out
    TELEMETRY_TIMEOUT_SECONDS: float = Field(15.0, description="Timeout for a single telemetry fetch")
    TELEMETRY_MAX_CONCURRENCY: int = Field(8, description="Maximum concurrent telemetry fetches")
    TELEMETRY_WINDOW_DAYS: int = Field(365, description="Trailing window for contribution counts")
    TELEMETRY_MAX_RETRIES: int = Field(1, description="Retries on connection errors and 5xx responses")

    # Session polling
    STATUS_POLL_INTERVAL: float = Field(15.0, description="Seconds between withdrawal status reads")
    BALANCE_POLL_INTERVAL: float = Field(30.0, description="Seconds between balance reads")

    OUTPUT_DIR: str = Field("/output", description="Directory for output files")

    @property
    def telemetry_settings(self) -> TelemetrySettings:
        """Get telemetry settings as a separate model"""
        return TelemetrySettings(
            graphql_url=self.GITHUB_GRAPHQL_URL,
            timeout_seconds=self.TELEMETRY_TIMEOUT_SECONDS,
            max_concurrency=self.TELEMETRY_MAX_CONCURRENCY,
            window_days=self.TELEMETRY_WINDOW_DAYS,
            max_retries=self.TELEMETRY_MAX_RETRIES
        )

    @property
    def polling_settings(self) -> PollingSettings:
        """Get polling intervals as a separate model"""
        return PollingSettings(
            status_interval=self.STATUS_POLL_INTERVAL,
            balance_interval=self.BALANCE_POLL_INTERVAL
        )

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=True
    )

settings = Settings()
