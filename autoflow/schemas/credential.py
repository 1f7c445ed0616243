"""
Credential Schemas

Value objects passed between the credential store, the refresh
orchestrator and the resolver, plus the pydantic models the API exposes.
"""

import base64
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from autoflow.security.encryption import SealedSecret


class CredentialSource(str, Enum):
    """Where a resolved credential came from."""
    OAUTH = "oauth"
    STATIC = "static"
    DERIVED = "derived"


class ResolutionState(str, Enum):
    """Terminal states of a successful resolution."""
    VALID = "valid"
    REFRESHED = "refreshed"


class TokenType(str, Enum):
    """How a token is presented in the Authorization header."""
    BEARER = "Bearer"
    BOT = "Bot"
    BASIC = "Basic"


# Extras that act as the username half of a Basic credential
BASIC_USERNAME_KINDS = ("username", "account_sid", "email")


class RecordEncoding(str, Enum):
    """Physical encoding a stored integration record was read from."""
    INLINE = "inline"
    CATALOGUE = "catalogue"


@dataclass
class OAuthTokens:
    """Plaintext tokens handed to the store for sealing."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None


@dataclass
class StoredIntegration:
    """
    An OAuth integration record as read from storage.

    Tokens are still sealed; the resolver opens them through the vault.
    """
    user_id: str
    service: str
    access_token: SealedSecret
    refresh_token: Optional[SealedSecret] = None
    expires_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    encoding: RecordEncoding = RecordEncoding.INLINE
    record_id: Optional[str] = None
    is_active: bool = True
    updated_at: Optional[datetime] = None

    @property
    def has_refresh_token(self) -> bool:
        return self.refresh_token is not None


@dataclass
class RefreshedToken:
    """Result of a successful refresh_token grant."""
    access_token: str
    expires_at: Optional[datetime]
    refresh_token: str
    rotated: bool = False
    scope: Optional[str] = None


@dataclass
class ResolvedCredential:
    """A plaintext credential ready for one node execution."""
    service: str
    token: str
    state: ResolutionState = ResolutionState.VALID
    source: CredentialSource = CredentialSource.OAUTH
    credential_kind: str = "oauth"
    token_type: TokenType = TokenType.BEARER
    expires_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    # Additional secrets of a multi-part credential (e.g. Twilio account_sid)
    extras: Dict[str, str] = field(default_factory=dict)
    refresh_error: Optional[str] = None

    def authorization_header(self) -> str:
        """Value for the HTTP Authorization header."""
        if self.token_type == TokenType.BASIC:
            username = next(
                (self.extras[key] for key in BASIC_USERNAME_KINDS if self.extras.get(key)),
                "",
            )
            raw = f"{username}:{self.token}".encode("utf-8")
            return f"Basic {base64.b64encode(raw).decode('ascii')}"
        return f"{self.token_type.value} {self.token}"

    def __repr__(self) -> str:
        return (
            f"<ResolvedCredential(service='{self.service}', state={self.state.value}, "
            f"source={self.source.value}, kind='{self.credential_kind}')>"
        )


# --- API models ---------------------------------------------------------------


class StoreCredentialRequest(BaseModel):
    """Store a manually supplied credential."""
    service: str = Field(..., min_length=1, description="Service id (e.g., 'discord', 'stripe')")
    credential_type: str = Field(..., min_length=1, description="Credential kind (e.g., 'bot_token')")
    value: str = Field(..., min_length=1, description="Secret value (sealed before storage)")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Non-sensitive metadata")

    @field_validator("service", "credential_type")
    @classmethod
    def normalize_identifier(cls, v: str) -> str:
        return v.strip().lower()


class StoreOAuthTokensRequest(BaseModel):
    """Tokens returned by a provider's OAuth callback."""
    service: str = Field(..., min_length=1)
    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = Field(None, description="Omit to keep the stored refresh token")
    expires_in: Optional[int] = Field(None, gt=0, description="Seconds until the access token expires")
    expires_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = Field(None, description="Omit to keep the stored metadata")

    @field_validator("service")
    @classmethod
    def normalize_service(cls, v: str) -> str:
        return v.strip().lower()


class DisconnectRequest(BaseModel):
    """Remove a service's OAuth record and/or static credentials."""
    service: str = Field(..., min_length=1)
    credential_type: Optional[str] = Field(None, description="Only remove this static credential kind")


class ConnectionStatus(BaseModel):
    """One connected service, summarized without decrypting anything."""
    service: str
    oauth_connected: bool = False
    credential_kinds: List[str] = Field(default_factory=list)
    expires_at: Optional[datetime] = None
    needs_refresh: bool = False
    can_refresh: bool = False
