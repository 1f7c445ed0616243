"""
Credential Repository

CRUD operations for manually supplied credentials (API keys, bot tokens,
account SIDs) in `integration_credentials`.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autoflow.database.models.credential import IntegrationCredential
from autoflow.database.models.integration import new_id
from autoflow.exceptions import StorageError
from autoflow.security.encryption import CipherVault, SealedSecret, get_cipher_vault
from autoflow.utils.timezone import utc_now

logger = logging.getLogger(__name__)


class CredentialRepository:
    """
    Repository for static credentials.

    Values are sealed before they are written; get() returns them sealed.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        vault: Optional[CipherVault] = None,
    ):
        self._session_factory = session_factory
        self._vault = vault

    @property
    def vault(self) -> CipherVault:
        if self._vault is None:
            self._vault = get_cipher_vault()
        return self._vault

    async def store(
        self,
        user_id: str,
        service: str,
        kind: str,
        value: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Create or replace the credential (user, service, kind).

        Args:
            user_id: Owner
            service: Service id (e.g., 'discord')
            kind: Credential kind (e.g., 'bot_token')
            value: Plaintext secret (sealed before storage)
            metadata: Optional non-sensitive metadata
        """
        sealed = self.vault.seal(value).to_storage()
        now = utc_now()
        match = (
            IntegrationCredential.user_id == user_id,
            IntegrationCredential.service_name == service,
            IntegrationCredential.credential_type == kind,
        )

        for attempt in (1, 2):
            try:
                async with self._session_factory() as session, session.begin():
                    result = await session.execute(
                        update(IntegrationCredential)
                        .where(*match)
                        .values(credential_value=sealed, credential_metadata=metadata or {}, updated_at=now)
                    )
                    if result.rowcount == 0:
                        await session.execute(
                            insert(IntegrationCredential).values(
                                id=new_id(),
                                user_id=user_id,
                                service_name=service,
                                credential_type=kind,
                                credential_value=sealed,
                                credential_metadata=metadata or {},
                                created_at=now,
                                updated_at=now,
                            )
                        )
                break
            except IntegrityError as e:
                if attempt == 2:
                    logger.error(f"Error storing {service}/{kind} credential: {e}")
                    raise StorageError(f"Failed to store {service} credential", cause=e)
            except SQLAlchemyError as e:
                logger.error(f"Error storing {service}/{kind} credential: {e}")
                raise StorageError(f"Failed to store {service} credential", cause=e)

        logger.info(f"Stored {service}/{kind} credential for user {user_id}")

    async def get(self, user_id: str, service: str, kind: str) -> Optional[SealedSecret]:
        """
        Get a sealed credential.

        Raises:
            CorruptRecordError: If the stored payload is malformed
            StorageError: If the database cannot be read
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(IntegrationCredential.credential_value).where(
                        IntegrationCredential.user_id == user_id,
                        IntegrationCredential.service_name == service,
                        IntegrationCredential.credential_type == kind,
                    )
                )
                raw = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error reading {service}/{kind} credential: {e}")
            raise StorageError(f"Failed to read {service} credential", cause=e)

        if raw is None:
            return None
        return SealedSecret.from_storage(raw)

    async def list_kinds(self, user_id: str, service: str) -> List[str]:
        """Credential kinds stored for one service."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(IntegrationCredential.credential_type)
                    .where(
                        IntegrationCredential.user_id == user_id,
                        IntegrationCredential.service_name == service,
                    )
                    .order_by(IntegrationCredential.credential_type)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error listing {service} credentials: {e}")
            raise StorageError(f"Failed to list {service} credentials", cause=e)

    async def list_services(self, user_id: str) -> Dict[str, List[str]]:
        """Map of service -> stored credential kinds for a user."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(IntegrationCredential.service_name, IntegrationCredential.credential_type)
                    .where(IntegrationCredential.user_id == user_id)
                    .order_by(IntegrationCredential.service_name, IntegrationCredential.credential_type)
                )
                services: Dict[str, List[str]] = {}
                for service, kind in result.all():
                    services.setdefault(service, []).append(kind)
                return services
        except SQLAlchemyError as e:
            logger.error(f"Error listing credentials for user {user_id}: {e}")
            raise StorageError("Failed to list credentials", cause=e)

    async def delete(self, user_id: str, service: str, kind: Optional[str] = None) -> bool:
        """
        Delete one credential kind, or every kind of the service when kind is None.

        Returns:
            True if anything was deleted
        """
        conditions = [
            IntegrationCredential.user_id == user_id,
            IntegrationCredential.service_name == service,
        ]
        if kind is not None:
            conditions.append(IntegrationCredential.credential_type == kind)

        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(delete(IntegrationCredential).where(*conditions))
                removed = result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error deleting {service} credentials: {e}")
            raise StorageError(f"Failed to delete {service} credentials", cause=e)

        if removed:
            logger.info(f"Deleted {removed} {service} credential(s) for user {user_id}")
        return removed > 0
