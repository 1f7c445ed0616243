"""
Integration Credential Model

Store manually supplied credentials (API keys, bot tokens, account SIDs).
Several credential kinds may coexist for one service, e.g.
(user, "twilio", "account_sid") and (user, "twilio", "auth_token").
"""

from sqlalchemy import Column, DateTime, Index, String, Text, UniqueConstraint

from autoflow.database.base import Base, get_current_timestamp
from autoflow.database.models.integration import JSONType, new_id


class IntegrationCredential(Base):
    """
    One sealed secret per (user, service, credential kind).

    Security:
        - credential_value holds the sealed JSON payload (never plaintext)
        - credential_metadata holds non-sensitive info (not encrypted)
    """
    __tablename__ = "integration_credentials"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False)
    service_name = Column(String(100), nullable=False)
    credential_type = Column(String(100), nullable=False)

    # {"encrypted": ..., "iv": ..., "authTag": ...}
    credential_value = Column(Text, nullable=False)

    # Note: Using credential_metadata because 'metadata' is reserved by SQLAlchemy
    credential_metadata = Column("metadata", JSONType, nullable=True)

    created_at = Column(DateTime(timezone=True), default=get_current_timestamp, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=get_current_timestamp, onupdate=get_current_timestamp, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "service_name", "credential_type", name="uq_integration_credentials_kind"),
        Index("idx_integration_credentials_user_service", "user_id", "service_name"),
    )

    def __repr__(self) -> str:
        return (
            f"<IntegrationCredential(id={self.id}, service_name='{self.service_name}', "
            f"credential_type='{self.credential_type}')>"
        )
