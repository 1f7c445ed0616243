"""
Credential Resolver

Decides, for one (user, service) at execution time, which credential to use:

    1. OAuth integration record (service, then its aliases)
         - no expiry / expiry beyond the refresh margin -> Valid
         - inside the margin -> refresh -> Refreshed
           (refresh failure: try 2 and 3 first, then the stale token if it
            has not expired yet, else raise the refresh error)
    2. Static credentials in the service's priority order
    3. Token derived from a client id/secret pair (client_credentials grant)
    4. Nothing -> CredentialUnavailableError

DecryptionError and CorruptRecordError propagate unchanged; they are never
reported as "not connected".
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from autoflow.config import Settings, get_settings
from autoflow.database.layout import SchemaDetector
from autoflow.database.repositories.credential import CredentialRepository
from autoflow.database.repositories.integration import IntegrationRepository
from autoflow.exceptions import (
    AutoflowError,
    CredentialUnavailableError,
    ProviderError,
    ReauthorizationRequiredError,
)
from autoflow.schemas.credential import (
    ConnectionStatus,
    CredentialSource,
    ResolutionState,
    ResolvedCredential,
    StoredIntegration,
    TokenType,
)
from autoflow.security.encryption import CipherVault, get_cipher_vault
from autoflow.services.token_refresh import TokenRefreshOrchestrator, provider_for_service
from autoflow.utils.timezone import utc_now

logger = logging.getLogger(__name__)

OAUTH_KIND = "oauth"
DERIVED_KIND = "client_credentials"


@dataclass(frozen=True)
class StaticOption:
    """A static credential kind, plus any kinds that must accompany it."""
    kind: str
    token_type: TokenType = TokenType.BEARER
    extras: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DerivedOption:
    """Two static secrets exchanged for a short-lived token."""
    client_id_kind: str = "client_id"
    client_secret_kind: str = "client_secret"


DEFAULT_STATIC_OPTIONS = (
    StaticOption("api_key"),
    StaticOption("api_token"),
    StaticOption("token"),
)


@dataclass(frozen=True)
class CredentialPolicy:
    """How credentials for one service are looked up, in priority order."""
    oauth_aliases: Tuple[str, ...] = ()
    static_options: Tuple[StaticOption, ...] = DEFAULT_STATIC_OPTIONS
    derived: Optional[DerivedOption] = None
    oauth_token_type: TokenType = TokenType.BEARER

    def kinds(self) -> List[str]:
        kinds = [OAUTH_KIND] + [option.kind for option in self.static_options]
        if self.derived:
            kinds.append(DERIVED_KIND)
        return kinds


GOOGLE_SERVICES = ("google-gmail", "google-sheets", "google-drive", "google-calendar")

CREDENTIAL_POLICIES: Dict[str, CredentialPolicy] = {
    "google": CredentialPolicy(oauth_aliases=GOOGLE_SERVICES, static_options=()),
    "discord": CredentialPolicy(static_options=(StaticOption("bot_token", token_type=TokenType.BOT),)),
    "slack": CredentialPolicy(static_options=(StaticOption("bot_token"),)),
    "notion": CredentialPolicy(static_options=(StaticOption("api_token"),)),
    "airtable": CredentialPolicy(static_options=(StaticOption("api_token"),)),
    "sendgrid": CredentialPolicy(static_options=(StaticOption("api_key"),)),
    "openai": CredentialPolicy(static_options=(StaticOption("api_key"),)),
    "stripe": CredentialPolicy(static_options=(StaticOption("secret_key"),)),
    "twilio": CredentialPolicy(
        static_options=(StaticOption("auth_token", token_type=TokenType.BASIC, extras=("account_sid",)),)
    ),
    "trello": CredentialPolicy(static_options=(StaticOption("token", extras=("api_key",)),)),
    "paypal": CredentialPolicy(static_options=(), derived=DerivedOption()),
    "github": CredentialPolicy(static_options=(StaticOption("personal_access_token"),)),
    "shopify": CredentialPolicy(static_options=(StaticOption("access_token"),)),
    "hubspot": CredentialPolicy(static_options=(StaticOption("private_app_token"),)),
    "jira": CredentialPolicy(
        static_options=(StaticOption("api_token", token_type=TokenType.BASIC, extras=("email",)),)
    ),
    "twitter": CredentialPolicy(static_options=(StaticOption("bearer_token"),)),
    "asana": CredentialPolicy(static_options=(StaticOption("personal_access_token"),)),
}


def policy_for(service: str) -> CredentialPolicy:
    """
    Credential policy for a service.

    Google sub-variants (google-sheets, ...) fall back to the shared `google`
    record. Unknown services use the generic static kinds.
    """
    if service in CREDENTIAL_POLICIES:
        return CREDENTIAL_POLICIES[service]
    if service.startswith("google-"):
        return CredentialPolicy(oauth_aliases=("google",), static_options=())
    return CredentialPolicy()


@dataclass
class _Accept:
    kinds: Optional[frozenset] = field(default=None)

    def allows(self, kind: str) -> bool:
        return self.kinds is None or kind in self.kinds


class CredentialResolver:
    """
    One prioritized resolution algorithm for every service.

    Example:
        >>> credential = await resolver.resolve("user-1", "google-sheets")
        >>> headers = {"Authorization": credential.authorization_header()}
    """

    def __init__(
        self,
        detector: SchemaDetector,
        integrations: IntegrationRepository,
        credentials: CredentialRepository,
        refresher: TokenRefreshOrchestrator,
        vault: Optional[CipherVault] = None,
        settings: Optional[Settings] = None,
    ):
        self.detector = detector
        self.integrations = integrations
        self.credentials = credentials
        self.refresher = refresher
        self._vault = vault
        self.settings = settings or get_settings()

    @property
    def vault(self) -> CipherVault:
        if self._vault is None:
            self._vault = get_cipher_vault()
        return self._vault

    @property
    def refresh_margin(self) -> timedelta:
        return timedelta(seconds=self.settings.REFRESH_MARGIN_SECONDS)

    async def resolve(
        self,
        user_id: str,
        service: str,
        accept: Optional[Iterable[str]] = None,
    ) -> ResolvedCredential:
        """
        Resolve the credential a node should use for `service`.

        Args:
            user_id: Invoking user
            service: Service id (e.g., 'google-sheets', 'discord')
            accept: Credential kinds the caller will take ("oauth" names the
                integration record, "client_credentials" the derived token).
                None accepts every kind in the service's policy.

        Raises:
            CredentialUnavailableError: No acceptable credential exists
            ReauthorizationRequiredError: Token expired and cannot be refreshed
            ProviderError: Token expired and the refresh endpoint failed
            DecryptionError, CorruptRecordError: Stored secret is unreadable
        """
        policy = policy_for(service)
        accepted = _Accept(frozenset(accept) if accept is not None else None)

        stale: Optional[ResolvedCredential] = None
        failure: Optional[AutoflowError] = None
        if accepted.allows(OAUTH_KIND):
            record = await self._load_integration(user_id, service, policy)
            if record is not None:
                credential, failure = await self._from_integration(user_id, service, record, policy)
                if failure is None:
                    return credential
                if credential.expires_at is not None and credential.expires_at > utc_now():
                    credential.refresh_error = failure.message
                    stale = credential

        for option in policy.static_options:
            if not accepted.allows(option.kind):
                continue
            credential = await self._from_static(user_id, service, option)
            if credential is not None:
                if failure is not None:
                    logger.info(f"Using {service} {option.kind} after OAuth refresh failed for user {user_id}")
                return credential

        if policy.derived and accepted.allows(DERIVED_KIND):
            try:
                credential = await self._from_derived(user_id, service, policy.derived)
            except CredentialUnavailableError:
                if failure is None:
                    raise
                credential = None
            if credential is not None:
                return credential

        if stale is not None:
            logger.warning(
                f"⚠️ Using {stale.service} token for user {user_id} until it expires: {stale.refresh_error}"
            )
            return stale
        if failure is not None:
            raise failure

        logger.info(f"No credential for {service} (user {user_id})")
        raise CredentialUnavailableError(service, accepted_kinds=sorted(accepted.kinds) if accepted.kinds else None)

    async def resolve_all(
        self,
        user_id: str,
        services: Sequence[str],
    ) -> Dict[str, Optional[ResolvedCredential]]:
        """
        Resolve several services concurrently.

        Services that are not connected, or need reauthorization, map to None.
        """
        unique = list(dict.fromkeys(services))
        results = await asyncio.gather(
            *(self.resolve(user_id, service) for service in unique),
            return_exceptions=True,
        )

        resolved: Dict[str, Optional[ResolvedCredential]] = {}
        for service, result in zip(unique, results):
            if isinstance(result, (CredentialUnavailableError, ReauthorizationRequiredError)):
                resolved[service] = None
            elif isinstance(result, BaseException):
                raise result
            else:
                resolved[service] = result
        return resolved

    async def connection_status(self, user_id: str) -> List[ConnectionStatus]:
        """Summarize every connected service without decrypting anything."""
        layout = await self.detector.detect()
        records = await self.integrations.list_all(layout, user_id)
        static = await self.credentials.list_services(user_id)
        now = utc_now()

        statuses: Dict[str, ConnectionStatus] = {}
        for record in records:
            needs_refresh = record.expires_at is not None and record.expires_at - now <= self.refresh_margin
            statuses[record.service] = ConnectionStatus(
                service=record.service,
                oauth_connected=True,
                expires_at=record.expires_at,
                needs_refresh=needs_refresh,
                can_refresh=record.has_refresh_token and provider_for_service(record.service) is not None,
            )
        for service, kinds in static.items():
            status = statuses.setdefault(service, ConnectionStatus(service=service))
            status.credential_kinds = kinds

        return sorted(statuses.values(), key=lambda status: status.service)

    # ---------------------------------------------------------------- oauth

    async def _load_integration(
        self, user_id: str, service: str, policy: CredentialPolicy
    ) -> Optional[StoredIntegration]:
        layout = await self.detector.detect()
        for candidate in (service, *policy.oauth_aliases):
            record = await self.integrations.get(layout, user_id, candidate)
            if record is not None:
                if candidate != service:
                    logger.debug(f"Using {candidate} integration for {service}")
                return record
        return None

    async def _from_integration(
        self,
        user_id: str,
        service: str,
        record: StoredIntegration,
        policy: CredentialPolicy,
    ) -> Tuple[ResolvedCredential, Optional[AutoflowError]]:
        """
        Current or refreshed token from an integration record.

        Returns the credential and, when the token is due for refresh and
        could not be refreshed, the error that stopped it. The caller decides
        whether the stale token is still usable.
        """
        access_token = self.vault.open(record.access_token)
        credential = ResolvedCredential(
            service=service,
            token=access_token,
            state=ResolutionState.VALID,
            source=CredentialSource.OAUTH,
            credential_kind=OAUTH_KIND,
            token_type=policy.oauth_token_type,
            expires_at=record.expires_at,
            metadata=dict(record.metadata),
        )

        now = utc_now()
        if record.expires_at is None or record.expires_at - now > self.refresh_margin:
            return credential, None

        if record.refresh_token is None:
            logger.warning(f"⚠️ {record.service} token for user {user_id} is due for refresh and has no refresh token")
            return credential, ReauthorizationRequiredError(
                service, f"{service} token is expiring and no refresh token is stored"
            )

        refresh_token = self.vault.open(record.refresh_token)
        try:
            refreshed = await self.refresher.refresh(user_id, record.service, refresh_token, record.metadata)
        except ReauthorizationRequiredError as e:
            logger.warning(f"⚠️ Refresh of {record.service} failed for user {user_id}: {e.message}")
            if e.service != service:
                return credential, ReauthorizationRequiredError(service, e.message, cause=e)
            return credential, e
        except ProviderError as e:
            logger.warning(f"⚠️ Refresh of {record.service} failed for user {user_id}: {e.message}")
            return credential, e

        credential.token = refreshed.access_token
        credential.state = ResolutionState.REFRESHED
        credential.expires_at = refreshed.expires_at
        if refreshed.scope:
            credential.metadata["scope"] = refreshed.scope
        return credential, None

    # --------------------------------------------------------------- static

    async def _from_static(self, user_id: str, service: str, option: StaticOption) -> Optional[ResolvedCredential]:
        sealed = await self.credentials.get(user_id, service, option.kind)
        if sealed is None:
            return None

        extras: Dict[str, str] = {}
        for extra_kind in option.extras:
            extra = await self.credentials.get(user_id, service, extra_kind)
            if extra is None:
                logger.info(f"{service} {option.kind} is stored without its {extra_kind}; skipping")
                return None
            extras[extra_kind] = self.vault.open(extra)

        return ResolvedCredential(
            service=service,
            token=self.vault.open(sealed),
            state=ResolutionState.VALID,
            source=CredentialSource.STATIC,
            credential_kind=option.kind,
            token_type=option.token_type,
            extras=extras,
        )

    async def _from_derived(self, user_id: str, service: str, derived: DerivedOption) -> Optional[ResolvedCredential]:
        client_id = await self.credentials.get(user_id, service, derived.client_id_kind)
        client_secret = await self.credentials.get(user_id, service, derived.client_secret_kind)
        if client_id is None or client_secret is None:
            return None

        try:
            token = await self.refresher.exchange_client_credentials(
                service, self.vault.open(client_id), self.vault.open(client_secret)
            )
        except ReauthorizationRequiredError as e:
            logger.warning(f"⚠️ {service} rejected the stored API credentials for user {user_id}: {e.message}")
            raise CredentialUnavailableError(
                service, f"Stored {service} API credentials were rejected: {e.message}"
            )

        logger.info(f"Derived {service} token from API credentials for user {user_id}")
        return ResolvedCredential(
            service=service,
            token=token.access_token,
            state=ResolutionState.VALID,
            source=CredentialSource.DERIVED,
            credential_kind=DERIVED_KIND,
            expires_at=token.expires_at,
        )
