"""Repositories for credential storage."""

from autoflow.database.repositories.credential import CredentialRepository
from autoflow.database.repositories.integration import IntegrationRepository

__all__ = ["CredentialRepository", "IntegrationRepository"]
