"""
Integration Models

OAuth integration records live in `user_integrations`, which exists in two
physical encodings:

    inline:    one row per (user_id, service_name) with token columns
    catalogue: one row per (user_id, integration_id, name); tokens and the
               original service id are nested in the `config` JSON blob,
               integration_id references the `integrations` catalogue

A deployment mid-migration may carry both column sets (hybrid). Because the
encoding is only known at runtime, `user_integrations` is built as a Core
Table from column factories rather than declared as a mapped class.
"""

import uuid
from typing import Callable, Dict, Iterable, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON

from autoflow.database.base import Base, get_current_timestamp

USER_INTEGRATIONS = "user_integrations"
INTEGRATIONS = "integrations"

INLINE_COLUMNS = ("service_name", "access_token", "refresh_token", "token_expires_at", "metadata")
CATALOGUE_COLUMNS = ("integration_id", "name", "config")

JSONType = JSON().with_variant(JSONB(), "postgresql")


def new_id() -> str:
    return str(uuid.uuid4())


class Integration(Base):
    """
    Catalogue of integrable services.

    One entry per provider family; sub-variants such as `google-sheets`
    and `google-gmail` share the `google` entry.
    """
    __tablename__ = INTEGRATIONS

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False, unique=True)
    display_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=get_current_timestamp, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=get_current_timestamp, onupdate=get_current_timestamp, nullable=False)

    def __repr__(self) -> str:
        return f"<Integration(id={self.id}, name='{self.name}')>"


def _integration_fk(nullable: bool) -> Column:
    return Column(
        "integration_id",
        String(36),
        ForeignKey(Integration.__table__.c.id, ondelete="CASCADE"),
        nullable=nullable,
    )


# Canonical column definitions keyed by name. Each call returns a new Column
# because a Column object can belong to only one Table.
_COLUMN_FACTORIES: Dict[str, Callable[[bool], Column]] = {
    "id": lambda strict: Column("id", String(36), primary_key=True, default=new_id),
    "user_id": lambda strict: Column("user_id", String(64), nullable=False),
    # inline encoding
    "service_name": lambda strict: Column("service_name", String(100), nullable=not strict),
    "access_token": lambda strict: Column("access_token", Text, nullable=not strict),
    "refresh_token": lambda strict: Column("refresh_token", Text, nullable=True),
    "token_expires_at": lambda strict: Column("token_expires_at", DateTime(timezone=True), nullable=True),
    "metadata": lambda strict: Column("metadata", JSONType, nullable=True),
    # catalogue encoding
    "integration_id": lambda strict: _integration_fk(nullable=not strict),
    "name": lambda strict: Column("name", String(100), nullable=True),
    "config": lambda strict: Column("config", JSONType, nullable=True),
    # shared
    "is_active": lambda strict: Column("is_active", Boolean, default=True, nullable=False),
    "last_used_at": lambda strict: Column("last_used_at", DateTime(timezone=True), nullable=True),
    "created_at": lambda strict: Column("created_at", DateTime(timezone=True), default=get_current_timestamp, nullable=False),
    "updated_at": lambda strict: Column(
        "updated_at", DateTime(timezone=True), default=get_current_timestamp, onupdate=get_current_timestamp, nullable=False
    ),
}

SHARED_COLUMNS = ("id", "user_id", "is_active", "last_used_at", "created_at", "updated_at")

LAYOUT_COLUMNS = {
    "inline": SHARED_COLUMNS + INLINE_COLUMNS,
    "catalogue": SHARED_COLUMNS + CATALOGUE_COLUMNS,
    "hybrid": SHARED_COLUMNS + INLINE_COLUMNS + CATALOGUE_COLUMNS,
}


def build_user_integrations_table(
    metadata: MetaData,
    columns: Iterable[str],
    with_constraints: bool = False,
    strict: bool = False,
) -> Table:
    """
    Build a `user_integrations` Table holding exactly the given columns.

    Unknown column names (extra columns a deployment may carry) are ignored.

    Args:
        metadata: MetaData to attach the table to
        columns: Column names present in the physical table
        with_constraints: Add unique constraints and indexes (DDL only)
        strict: Enforce NOT NULL on the encoding's key columns (single-encoding DDL)
    """
    present = [name for name in _COLUMN_FACTORIES if name in set(columns)]
    table_args = [_COLUMN_FACTORIES[name](strict) for name in present]

    if with_constraints:
        if "service_name" in present:
            table_args.append(UniqueConstraint("user_id", "service_name", name="uq_user_integrations_user_service"))
        if "integration_id" in present and "name" in present:
            table_args.append(
                UniqueConstraint("user_id", "integration_id", "name", name="uq_user_integrations_user_integration_name")
            )
        table_args.append(Index("idx_user_integrations_user_id", "user_id"))

    return Table(USER_INTEGRATIONS, metadata, *table_args)


def layout_columns(layout: str) -> tuple:
    try:
        return LAYOUT_COLUMNS[layout]
    except KeyError:
        raise ValueError(f"Unknown layout '{layout}'. Expected one of: {', '.join(LAYOUT_COLUMNS)}")


def catalogue_name_for(service: str) -> str:
    """Catalogue entry shared by a service's sub-variants (google-sheets -> google)."""
    return service.split("-")[0]


def build_schema_metadata(layout: str, metadata: Optional[MetaData] = None) -> MetaData:
    """MetaData with `user_integrations` in the requested layout."""
    metadata = metadata or MetaData()
    build_user_integrations_table(
        metadata,
        layout_columns(layout),
        with_constraints=True,
        strict=layout != "hybrid",
    )
    return metadata
