"""
Schema Layout Detection

Deployments carry `user_integrations` in the inline encoding, the catalogue
encoding, or both. The layout is detected once, cached, and handed
explicitly to every store call.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from sqlalchemy import MetaData, Table, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from autoflow.database.base import Base
from autoflow.database.models.credential import IntegrationCredential
from autoflow.database.models.integration import (
    INTEGRATIONS,
    USER_INTEGRATIONS,
    Integration,
    build_schema_metadata,
    build_user_integrations_table,
)
from autoflow.exceptions import StorageError

logger = logging.getLogger(__name__)

# Minimum columns that make each encoding usable
INLINE_REQUIRED = frozenset({"service_name", "access_token"})
CATALOGUE_REQUIRED = frozenset({"integration_id", "config"})


@dataclass(frozen=True)
class SchemaLayout:
    """Which encodings the deployment supports, with tables for the columns present."""

    inline: bool
    catalogue: bool
    columns: FrozenSet[str] = frozenset()
    user_integrations: Optional[Table] = field(default=None, compare=False)
    integrations: Optional[Table] = field(default=None, compare=False)
    credentials: Optional[Table] = field(default=None, compare=False)

    @property
    def name(self) -> str:
        if self.inline and self.catalogue:
            return "hybrid"
        if self.inline:
            return "inline"
        if self.catalogue:
            return "catalogue"
        return "none"

    @property
    def has_is_active(self) -> bool:
        return "is_active" in self.columns

    def has_column(self, name: str) -> bool:
        return name in self.columns

    @classmethod
    def from_columns(
        cls,
        columns: FrozenSet[str],
        has_integrations_table: bool = True,
        has_credentials_table: bool = True,
    ) -> "SchemaLayout":
        """Build a layout from the column names of `user_integrations`."""
        inline = INLINE_REQUIRED <= columns
        catalogue = CATALOGUE_REQUIRED <= columns and has_integrations_table
        table = build_user_integrations_table(MetaData(), columns) if columns else None
        return cls(
            inline=inline,
            catalogue=catalogue,
            columns=columns,
            user_integrations=table,
            integrations=Integration.__table__ if has_integrations_table else None,
            credentials=IntegrationCredential.__table__ if has_credentials_table else None,
        )


def _inspect_layout(sync_conn) -> SchemaLayout:
    inspector = inspect(sync_conn)
    has_integrations = inspector.has_table(INTEGRATIONS)
    has_credentials = inspector.has_table(IntegrationCredential.__tablename__)

    if not inspector.has_table(USER_INTEGRATIONS):
        return SchemaLayout.from_columns(frozenset(), has_integrations, has_credentials)

    columns = frozenset(col["name"] for col in inspector.get_columns(USER_INTEGRATIONS))
    return SchemaLayout.from_columns(columns, has_integrations, has_credentials)


class SchemaDetector:
    """
    Detects the physical layout of the credential tables.

    The first successful detection is cached for the life of the process.
    Concurrent first calls share one inspection.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._layout: Optional[SchemaLayout] = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> Optional[SchemaLayout]:
        return self._layout

    async def detect(self) -> SchemaLayout:
        """
        Inspect the database and return its layout.

        Raises:
            StorageError: If the database cannot be inspected
        """
        if self._layout is not None:
            return self._layout

        async with self._lock:
            if self._layout is not None:
                return self._layout
            try:
                async with self.engine.connect() as conn:
                    layout = await conn.run_sync(_inspect_layout)
            except SQLAlchemyError as e:
                logger.error(f"Failed to detect credential schema layout: {e}")
                raise StorageError("Could not inspect credential tables", cause=e)

            if layout.catalogue and not CATALOGUE_REQUIRED | {"name"} <= layout.columns:
                logger.warning("user_integrations has no 'name' column; catalogue rows are matched by config only")

            logger.info(
                f"🔍 Credential schema layout: {layout.name} "
                f"(inline={layout.inline}, catalogue={layout.catalogue}, columns={len(layout.columns)})"
            )
            self._layout = layout
            return layout

    def invalidate(self) -> None:
        """Forget the cached layout (after a migration)."""
        self._layout = None


async def create_schema(conn: AsyncConnection, layout: str = "inline") -> None:
    """
    Create the credential tables for a fresh deployment.

    Args:
        conn: Open async connection (inside a transaction, e.g. engine.begin())
        layout: "inline", "catalogue" or "hybrid"
    """
    user_metadata = build_schema_metadata(layout)
    await conn.run_sync(Base.metadata.create_all)
    await conn.run_sync(user_metadata.create_all)
    logger.info(f"Created credential schema ({layout} layout)")
