"""Database models."""

from autoflow.database.models.credential import IntegrationCredential
from autoflow.database.models.integration import (
    Integration,
    build_schema_metadata,
    build_user_integrations_table,
    catalogue_name_for,
)

__all__ = [
    "Integration",
    "IntegrationCredential",
    "build_schema_metadata",
    "build_user_integrations_table",
    "catalogue_name_for",
]
