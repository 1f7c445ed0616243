"""
Configuration Management using Pydantic Settings

This file handles infrastructure settings and secrets from environment variables.
Every value is read once per process; there is no live rotation.

Environment Variables:
    - ENCRYPTION_KEY: Symmetric key for sealing stored credentials (REQUIRED)
    - DATABASE_URL: Async database connection (defaults to SQLite)
    - <PROVIDER>_CLIENT_ID / <PROVIDER>_CLIENT_SECRET: OAuth apps used for token refresh

ENCRYPTION_KEY has no default. Starting without it is a configuration error:
substituting a throwaway key would make every previously sealed secret
unreadable after the next restart.
"""

from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Infrastructure and secrets configuration.

    Loaded from environment variables (and an optional .env file).
    """

    # Project Info
    PROJECT_NAME: str = "Autoflow Engine"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development")
    API_V1_PREFIX: str = "/api/v1"

    # Database - SQLite (aiosqlite) or PostgreSQL (asyncpg)
    DATABASE_URL: str = Field(default="sqlite+aiosqlite:///./data/autoflow.db")
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=40)

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Ensure database URL uses an async driver."""
        if not v:
            raise ValueError("DATABASE_URL cannot be empty")
        if not (v.startswith("sqlite+aiosqlite://") or v.startswith("postgresql+asyncpg://")):
            raise ValueError(
                "DATABASE_URL must start with 'sqlite+aiosqlite://' or 'postgresql+asyncpg://'"
            )
        return v

    # Create the credential tables at startup when none exist
    AUTO_CREATE_SCHEMA: bool = Field(default=True)
    SCHEMA_LAYOUT: str = Field(default="inline", description="inline, catalogue or hybrid")

    # Security & Encryption
    ENCRYPTION_KEY: str = Field(
        ...,
        description="Key material for the credential cipher. 64 hex chars are used as raw key bytes."
    )

    @field_validator("ENCRYPTION_KEY")
    @classmethod
    def validate_encryption_key(cls, v: str) -> str:
        """Reject an empty key instead of falling back to a random one."""
        if not v or not v.strip():
            raise ValueError("ENCRYPTION_KEY must be set to a non-empty value")
        return v.strip()

    # Credential resolution
    REFRESH_MARGIN_SECONDS: int = Field(default=300, ge=0)

    # Outbound calls and node execution
    HTTP_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)
    NODE_EXECUTION_TIMEOUT_SECONDS: float = Field(default=120.0, gt=0)

    # File nodes may only touch paths under this directory
    FILES_ROOT: str = Field(default="data/files")

    # AI nodes (OpenAI API, keyed by each user's stored api_key)
    OPENAI_API_BASE: str = Field(default="https://api.openai.com/v1")
    OPENAI_CHAT_MODEL: str = Field(default="gpt-4o-mini")
    OPENAI_VISION_MODEL: str = Field(default="gpt-4o")
    OPENAI_IMAGE_MODEL: str = Field(default="dall-e-3")
    OPENAI_TTS_MODEL: str = Field(default="tts-1")
    OPENAI_STT_MODEL: str = Field(default="whisper-1")

    # OAuth redirect target (used when building authorize URLs)
    OAUTH_REDIRECT_BASE_URL: str = Field(default="http://localhost:3000/api/auth/callback")

    # OAuth apps (refresh_token grants)
    GOOGLE_INTEGRATION_CLIENT_ID: Optional[str] = None
    GOOGLE_INTEGRATION_CLIENT_SECRET: Optional[str] = None
    SLACK_CLIENT_ID: Optional[str] = None
    SLACK_CLIENT_SECRET: Optional[str] = None
    DISCORD_CLIENT_ID: Optional[str] = None
    DISCORD_CLIENT_SECRET: Optional[str] = None
    TWITTER_CLIENT_ID: Optional[str] = None
    TWITTER_CLIENT_SECRET: Optional[str] = None
    ASANA_CLIENT_ID: Optional[str] = None
    ASANA_CLIENT_SECRET: Optional[str] = None
    HUBSPOT_CLIENT_ID: Optional[str] = None
    HUBSPOT_CLIENT_SECRET: Optional[str] = None
    AIRTABLE_CLIENT_ID: Optional[str] = None
    AIRTABLE_CLIENT_SECRET: Optional[str] = None
    JIRA_CLIENT_ID: Optional[str] = None
    JIRA_CLIENT_SECRET: Optional[str] = None
    PAYPAL_CLIENT_ID: Optional[str] = None
    PAYPAL_CLIENT_SECRET: Optional[str] = None
    PAYPAL_SANDBOX: bool = Field(default=False)
    MICROSOFT_CLIENT_ID: Optional[str] = None
    MICROSOFT_CLIENT_SECRET: Optional[str] = None
    MICROSOFT_TENANT_ID: str = Field(default="common")

    # CORS (comma-separated origins)
    CORS_ORIGINS: str = Field(default="http://localhost:3000,http://127.0.0.1:3000")

    def get_cors_origins(self) -> List[str]:
        """Parse CORS_ORIGINS into a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Observability
    LOG_LEVEL: str = Field(default="INFO")
    LOG_DIR: str = Field(default="logs")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    def get_oauth_client(self, provider: str) -> Tuple[Optional[str], Optional[str]]:
        """
        Get (client_id, client_secret) for an OAuth provider.

        Args:
            provider: Provider key (e.g., 'google', 'slack')

        Returns:
            Tuple of client id and secret (either may be None if unconfigured)
        """
        prefixes: Dict[str, str] = {
            "google": "GOOGLE_INTEGRATION",
        }
        prefix = prefixes.get(provider, provider.upper())
        client_id = getattr(self, f"{prefix}_CLIENT_ID", None)
        client_secret = getattr(self, f"{prefix}_CLIENT_SECRET", None)
        return (
            client_id.strip() if client_id else None,
            client_secret.strip() if client_secret else None,
        )


@lru_cache
def get_settings() -> Settings:
    """
    Get the process-wide settings instance.

    Raises:
        pydantic.ValidationError: If required settings (ENCRYPTION_KEY) are missing
    """
    return Settings()
