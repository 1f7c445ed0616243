"""
Integration Repository

Read and write OAuth integration records across both physical encodings of
`user_integrations`. Every call receives the detected SchemaLayout.

Tokens are sealed on the way in and returned sealed on the way out; opening
them is the resolver's job.
"""

import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autoflow.database.layout import SchemaLayout
from autoflow.database.models.integration import catalogue_name_for, new_id
from autoflow.exceptions import CorruptRecordError, StorageError
from autoflow.schemas.credential import OAuthTokens, RecordEncoding, StoredIntegration
from autoflow.security.encryption import CipherVault, SealedSecret, get_cipher_vault
from autoflow.utils.timezone import ensure_aware, parse_timestamp, to_iso, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _as_dict(value: Any, what: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError as e:
            raise CorruptRecordError(f"{what} is not valid JSON", cause=e)
        if isinstance(parsed, dict):
            return parsed
    raise CorruptRecordError(f"{what} has unexpected type {type(value).__name__}")


def _parse_expiry(value: Any) -> Any:
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise CorruptRecordError(f"Unreadable token expiry: {value!r}", cause=e)


class IntegrationRepository:
    """
    Repository for OAuth integration records.

    Writes go to the inline encoding when the deployment has it, else to the
    catalogue encoding. Reads try inline first, then catalogue.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        vault: Optional[CipherVault] = None,
    ):
        """
        Initialize repository.

        Args:
            session_factory: Async session factory; each operation owns its transaction
            vault: Cipher used to seal tokens (defaults to the process-wide vault)
        """
        self._session_factory = session_factory
        self._vault = vault

    @property
    def vault(self) -> CipherVault:
        if self._vault is None:
            self._vault = get_cipher_vault()
        return self._vault

    # ------------------------------------------------------------------ write

    async def upsert(
        self,
        layout: SchemaLayout,
        user_id: str,
        service: str,
        tokens: OAuthTokens,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StoredIntegration:
        """
        Create or update the record for (user, service).

        A refresh_token of None keeps the stored one; metadata of None keeps
        the stored metadata.

        Raises:
            StorageError: If the write fails or no encoding is available
        """
        access = self.vault.seal(tokens.access_token)
        refresh = self.vault.seal(tokens.refresh_token) if tokens.refresh_token else None
        expires_at = ensure_aware(tokens.expires_at)

        if layout.inline:
            writer = self._write_inline
        elif layout.catalogue:
            writer = self._write_catalogue
        else:
            raise StorageError("No usable user_integrations table", layout=layout.name)

        async def write(session: AsyncSession) -> StoredIntegration:
            return await writer(session, layout, user_id, service, access, refresh, expires_at, metadata)

        record = await self._in_transaction(write, retry_on_conflict=True)
        logger.info(f"Stored {service} integration for user {user_id} ({record.encoding.value})")
        return record

    async def _write_inline(
        self,
        session: AsyncSession,
        layout: SchemaLayout,
        user_id: str,
        service: str,
        access: SealedSecret,
        refresh: Optional[SealedSecret],
        expires_at,
        metadata: Optional[Dict[str, Any]],
    ) -> StoredIntegration:
        table = layout.user_integrations
        now = utc_now()
        values: Dict[str, Any] = {
            "access_token": access.to_storage(),
            "token_expires_at": expires_at,
            "updated_at": now,
            "is_active": True,
        }
        if refresh is not None:
            values["refresh_token"] = refresh.to_storage()
        if metadata is not None:
            values["metadata"] = metadata
        values = {k: v for k, v in values.items() if layout.has_column(k)}

        result = await session.execute(
            update(table)
            .where(table.c.user_id == user_id, table.c.service_name == service)
            .values(**values)
        )
        if result.rowcount == 0:
            values.update({"id": new_id(), "user_id": user_id, "service_name": service, "created_at": now})
            values.setdefault("metadata", metadata or {})
            await session.execute(
                insert(table).values(**{k: v for k, v in values.items() if layout.has_column(k)})
            )

        row = (
            await session.execute(
                select(table).where(table.c.user_id == user_id, table.c.service_name == service).limit(1)
            )
        ).one()
        return self._inline_record(row._mapping)

    async def _write_catalogue(
        self,
        session: AsyncSession,
        layout: SchemaLayout,
        user_id: str,
        service: str,
        access: SealedSecret,
        refresh: Optional[SealedSecret],
        expires_at,
        metadata: Optional[Dict[str, Any]],
    ) -> StoredIntegration:
        table = layout.user_integrations
        integration_id = await self._ensure_catalogue_entry(session, layout, catalogue_name_for(service))
        existing = await self._find_catalogue_row(session, layout, user_id, integration_id, service, active_only=False)

        previous = _as_dict(existing["config"], "config") if existing is not None else {}
        config = dict(previous)
        config.update({
            "service": service,
            "access_token": access.to_dict(),
            "expires_at": to_iso(expires_at),
        })
        if refresh is not None:
            config["refresh_token"] = refresh.to_dict()
        if metadata is not None:
            config["metadata"] = metadata
        config.setdefault("metadata", {})

        now = utc_now()
        values: Dict[str, Any] = {"config": config, "updated_at": now, "is_active": True}
        values = {k: v for k, v in values.items() if layout.has_column(k)}

        if existing is not None:
            record_id = existing["id"]
            await session.execute(update(table).where(table.c.id == record_id).values(**values))
        else:
            record_id = new_id()
            values.update({
                "id": record_id,
                "user_id": user_id,
                "integration_id": integration_id,
                "name": service,
                "created_at": now,
            })
            await session.execute(
                insert(table).values(**{k: v for k, v in values.items() if layout.has_column(k)})
            )

        return self._catalogue_record(user_id, record_id, config, is_active=True, updated_at=now)

    async def _ensure_catalogue_entry(self, session: AsyncSession, layout: SchemaLayout, name: str) -> str:
        """Return the catalogue id for `name`, creating the entry when missing."""
        catalogue = layout.integrations
        integration_id = await self._catalogue_id(session, layout, name)
        if integration_id is not None:
            return integration_id

        try:
            async with session.begin_nested():
                integration_id = new_id()
                now = utc_now()
                await session.execute(
                    insert(catalogue).values(
                        id=integration_id,
                        name=name,
                        display_name=name.replace("_", " ").title(),
                        category="integration",
                        is_active=True,
                        created_at=now,
                        updated_at=now,
                    )
                )
                logger.info(f"Created catalogue entry '{name}'")
                return integration_id
        except IntegrityError:
            # Created concurrently
            integration_id = await self._catalogue_id(session, layout, name)
            if integration_id is None:
                raise
            return integration_id

    async def _catalogue_id(self, session: AsyncSession, layout: SchemaLayout, name: str) -> Optional[str]:
        catalogue = layout.integrations
        result = await session.execute(select(catalogue.c.id).where(catalogue.c.name == name))
        return result.scalar_one_or_none()

    async def _find_catalogue_row(
        self,
        session: AsyncSession,
        layout: SchemaLayout,
        user_id: str,
        integration_id: str,
        service: str,
        active_only: bool = True,
    ):
        """Scan the user's rows under `integration_id` for a config naming `service`."""
        table = layout.user_integrations
        query = select(table).where(table.c.user_id == user_id, table.c.integration_id == integration_id)
        if active_only and layout.has_is_active:
            query = query.where(table.c.is_active.is_(True))
        if layout.has_column("updated_at"):
            query = query.order_by(table.c.updated_at.desc())

        for row in (await session.execute(query)).all():
            mapping = row._mapping
            config = _as_dict(mapping["config"], "config")
            fallback = mapping.get("name") if layout.has_column("name") else None
            if config.get("service", fallback) == service:
                return mapping
        return None

    # ------------------------------------------------------------------- read

    async def get(self, layout: SchemaLayout, user_id: str, service: str) -> Optional[StoredIntegration]:
        """
        Get the active record for (user, service).

        Returns:
            StoredIntegration with sealed tokens, or None if not connected

        Raises:
            CorruptRecordError: If the stored payload is malformed
            StorageError: If the database cannot be read
        """
        async def read(session: AsyncSession) -> Optional[StoredIntegration]:
            if layout.inline:
                table = layout.user_integrations
                query = select(table).where(table.c.user_id == user_id, table.c.service_name == service)
                if layout.has_is_active:
                    query = query.where(table.c.is_active.is_(True))
                row = (await session.execute(query.limit(1))).first()
                if row is not None:
                    return self._inline_record(row._mapping)

            if layout.catalogue:
                integration_id = await self._catalogue_id(session, layout, catalogue_name_for(service))
                if integration_id is None:
                    return None
                mapping = await self._find_catalogue_row(session, layout, user_id, integration_id, service)
                if mapping is not None:
                    return self._catalogue_row_record(layout, mapping)
            return None

        return await self._in_session(read)

    async def list_all(self, layout: SchemaLayout, user_id: str) -> List[StoredIntegration]:
        """
        List every active record of a user, one per service.

        Malformed records are logged and skipped. Inline records win over
        catalogue records for the same service.
        """
        if layout.user_integrations is None:
            return []

        async def read(session: AsyncSession) -> List[StoredIntegration]:
            table = layout.user_integrations
            query = select(table).where(table.c.user_id == user_id)
            if layout.has_is_active:
                query = query.where(table.c.is_active.is_(True))
            rows = (await session.execute(query)).all()

            inline: List[StoredIntegration] = []
            catalogue: List[StoredIntegration] = []
            for row in rows:
                mapping = row._mapping
                try:
                    if layout.inline and mapping.get("service_name"):
                        inline.append(self._inline_record(mapping))
                    elif layout.catalogue and mapping.get("config") is not None:
                        catalogue.append(self._catalogue_row_record(layout, mapping))
                except CorruptRecordError as e:
                    logger.error(f"Skipping corrupt integration record {mapping.get('id')} for user {user_id}: {e}")
            return inline + catalogue

        records = await self._in_session(read)
        seen = set()
        unique: List[StoredIntegration] = []
        for record in records:
            if record.service in seen:
                continue
            seen.add(record.service)
            unique.append(record)
        return unique

    # ----------------------------------------------------------------- delete

    async def delete(self, layout: SchemaLayout, user_id: str, service: str) -> bool:
        """
        Remove all rows for (user, service) across both encodings.

        When the database rejects the hard delete and the table has an
        `is_active` column, the rows are deactivated instead.

        Returns:
            True if any row was removed or deactivated
        """
        table = layout.user_integrations
        if table is None:
            return False

        async def collect_ids(session: AsyncSession) -> List[str]:
            ids: List[str] = []
            if layout.inline:
                result = await session.execute(
                    select(table.c.id).where(table.c.user_id == user_id, table.c.service_name == service)
                )
                ids.extend(result.scalars().all())
            if layout.catalogue:
                integration_id = await self._catalogue_id(session, layout, catalogue_name_for(service))
                if integration_id is not None:
                    result = await session.execute(
                        select(table).where(table.c.user_id == user_id, table.c.integration_id == integration_id)
                    )
                    for row in result.all():
                        mapping = row._mapping
                        try:
                            config = _as_dict(mapping["config"], "config")
                        except CorruptRecordError:
                            config = {}
                        fallback = mapping.get("name") if layout.has_column("name") else None
                        if config.get("service", fallback) == service:
                            ids.append(mapping["id"])
            return ids

        ids = await self._in_session(collect_ids)
        if not ids:
            return False

        async def hard_delete(session: AsyncSession) -> int:
            result = await session.execute(delete(table).where(table.c.id.in_(ids)))
            return result.rowcount

        try:
            removed = await self._in_transaction(hard_delete, passthrough=(DBAPIError,))
        except DBAPIError as e:
            if not layout.has_is_active:
                logger.error(f"Failed to delete {service} integration for user {user_id}: {e}")
                raise StorageError(f"Failed to delete {service} integration", cause=e)

            logger.warning(f"Hard delete of {service} rejected, deactivating instead: {e}")

            async def deactivate(session: AsyncSession) -> int:
                result = await session.execute(
                    update(table).where(table.c.id.in_(ids)).values(is_active=False, updated_at=utc_now())
                )
                return result.rowcount

            removed = await self._in_transaction(deactivate)

        logger.info(f"Disconnected {service} for user {user_id} ({removed} row(s))")
        return removed > 0

    # ---------------------------------------------------------------- helpers

    def _inline_record(self, mapping) -> StoredIntegration:
        raw_access = mapping.get("access_token")
        if not raw_access:
            raise CorruptRecordError("Integration record has no access token", record_id=mapping.get("id"))
        raw_refresh = mapping.get("refresh_token")
        return StoredIntegration(
            user_id=mapping["user_id"],
            service=mapping["service_name"],
            access_token=SealedSecret.from_storage(raw_access),
            refresh_token=SealedSecret.from_storage(raw_refresh) if raw_refresh else None,
            expires_at=_parse_expiry(mapping.get("token_expires_at")),
            metadata=_as_dict(mapping.get("metadata"), "metadata"),
            encoding=RecordEncoding.INLINE,
            record_id=mapping.get("id"),
            is_active=bool(mapping.get("is_active", True)),
            updated_at=ensure_aware(mapping.get("updated_at")),
        )

    def _catalogue_row_record(self, layout: SchemaLayout, mapping) -> StoredIntegration:
        config = _as_dict(mapping["config"], "config")
        if "service" not in config and layout.has_column("name") and mapping.get("name"):
            config = {**config, "service": mapping["name"]}
        return self._catalogue_record(
            mapping["user_id"],
            mapping.get("id"),
            config,
            is_active=bool(mapping.get("is_active", True)),
            updated_at=ensure_aware(mapping.get("updated_at")),
        )

    def _catalogue_record(self, user_id: str, record_id, config: Dict[str, Any], is_active: bool, updated_at) -> StoredIntegration:
        service = config.get("service")
        if not service:
            raise CorruptRecordError("Catalogue config has no service id", record_id=record_id)
        if not config.get("access_token"):
            raise CorruptRecordError("Catalogue config has no access token", record_id=record_id)
        raw_refresh = config.get("refresh_token")
        return StoredIntegration(
            user_id=user_id,
            service=service,
            access_token=SealedSecret.from_storage(config["access_token"]),
            refresh_token=SealedSecret.from_storage(raw_refresh) if raw_refresh else None,
            expires_at=_parse_expiry(config.get("expires_at")),
            metadata=_as_dict(config.get("metadata"), "metadata"),
            encoding=RecordEncoding.CATALOGUE,
            record_id=record_id,
            is_active=is_active,
            updated_at=updated_at,
        )

    async def _in_session(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        try:
            async with self._session_factory() as session:
                return await fn(session)
        except SQLAlchemyError as e:
            logger.error(f"Integration store read failed: {e}")
            raise StorageError("Failed to read integration records", cause=e)

    async def _in_transaction(
        self,
        fn: Callable[[AsyncSession], Awaitable[T]],
        retry_on_conflict: bool = False,
        passthrough: tuple = (),
    ) -> T:
        """Run `fn` in its own transaction; a lost insert race is retried once as an update."""
        attempts = 2 if retry_on_conflict else 1
        for attempt in range(1, attempts + 1):
            try:
                async with self._session_factory() as session, session.begin():
                    return await fn(session)
            except SQLAlchemyError as e:
                if isinstance(e, passthrough):
                    raise
                if isinstance(e, IntegrityError) and attempt < attempts:
                    logger.info("Concurrent insert detected, retrying as update")
                    continue
                logger.error(f"Integration store write failed: {e}")
                raise StorageError("Failed to write integration record", cause=e)
        raise StorageError("Failed to write integration record")
