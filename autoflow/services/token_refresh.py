"""
Token Refresh Orchestrator

Exchanges refresh tokens for new access tokens and writes the result back
through the integration store. Also performs client-credentials exchanges
for services whose token is derived from two static secrets (PayPal).

Failures are not retried here:
    400/401/403 from the token endpoint -> ReauthorizationRequiredError
    5xx, timeouts, connection errors   -> ProviderError
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

import httpx

from autoflow.config import Settings, get_settings
from autoflow.database.layout import SchemaDetector
from autoflow.database.repositories.integration import IntegrationRepository
from autoflow.exceptions import ExecutionTimeoutError, ProviderError, ReauthorizationRequiredError
from autoflow.schemas.credential import OAuthTokens, RefreshedToken
from autoflow.services.http_client import HttpClient, parse_body
from autoflow.utils.timezone import utc_now

logger = logging.getLogger(__name__)

DEAD_GRANT_STATUSES = frozenset({400, 401, 403})

# Slack answers 200 with {"ok": false, "error": ...}
SLACK_DEAD_GRANT_ERRORS = frozenset({
    "invalid_refresh_token",
    "invalid_grant",
    "token_revoked",
    "token_expired",
    "invalid_client_id",
    "bad_client_secret",
})


@dataclass(frozen=True)
class RefreshProvider:
    """How to talk to one provider's token endpoint."""
    name: str
    token_url: str
    body_format: str = "form"  # "form" | "json"
    client_auth: str = "body"  # "body" | "basic"
    ok_flag: bool = False  # response carries {"ok": bool}


REFRESH_PROVIDERS: Dict[str, RefreshProvider] = {
    "google": RefreshProvider("google", "https://oauth2.googleapis.com/token"),
    "slack": RefreshProvider("slack", "https://slack.com/api/oauth.v2.access", ok_flag=True),
    "discord": RefreshProvider("discord", "https://discord.com/api/oauth2/token"),
    "twitter": RefreshProvider("twitter", "https://api.twitter.com/2/oauth2/token", client_auth="basic"),
    "asana": RefreshProvider("asana", "https://app.asana.com/-/oauth_token"),
    "hubspot": RefreshProvider("hubspot", "https://api.hubapi.com/oauth/v1/token"),
    "airtable": RefreshProvider("airtable", "https://airtable.com/oauth2/v1/token", client_auth="basic"),
    "jira": RefreshProvider("jira", "https://auth.atlassian.com/oauth/token", body_format="json"),
    "paypal": RefreshProvider("paypal", "https://api.paypal.com/v1/oauth2/token", client_auth="basic"),
    "microsoft": RefreshProvider(
        "microsoft", "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
    ),
}

SERVICE_ALIASES = {
    "x": "twitter",
    "outlook": "microsoft",
    "teams": "microsoft",
}

PAYPAL_SANDBOX_TOKEN_URL = "https://api.sandbox.paypal.com/v1/oauth2/token"


def provider_for_service(service: str) -> Optional[RefreshProvider]:
    """
    Find the refresh provider for a service id.

    Sub-variants share their family's provider (google-sheets -> google).
    """
    service = service.lower()
    if service in REFRESH_PROVIDERS:
        return REFRESH_PROVIDERS[service]
    if service in SERVICE_ALIASES:
        return REFRESH_PROVIDERS[SERVICE_ALIASES[service]]
    family = service.split("-")[0]
    return REFRESH_PROVIDERS.get(SERVICE_ALIASES.get(family, family))


class TokenRefreshOrchestrator:
    """
    Refreshes OAuth tokens and persists the result.

    Refreshes are not serialized: two concurrent refreshes of the same record
    both succeed and the later write wins.
    """

    def __init__(
        self,
        store: IntegrationRepository,
        detector: SchemaDetector,
        http: Optional[HttpClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.detector = detector
        self.settings = settings or get_settings()
        self.http = http or HttpClient(timeout=self.settings.HTTP_TIMEOUT_SECONDS)

    async def aclose(self) -> None:
        await self.http.aclose()

    def supports(self, service: str) -> bool:
        return provider_for_service(service) is not None

    def _token_url(self, provider: RefreshProvider) -> str:
        if provider.name == "paypal" and self.settings.PAYPAL_SANDBOX:
            return PAYPAL_SANDBOX_TOKEN_URL
        if provider.name == "microsoft":
            return provider.token_url.format(tenant=self.settings.MICROSOFT_TENANT_ID)
        return provider.token_url

    async def refresh(
        self,
        user_id: str,
        service: str,
        refresh_token: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RefreshedToken:
        """
        Exchange a refresh token and store the new access token.

        Args:
            user_id: Owner of the integration
            service: Service id (e.g., 'google-sheets')
            refresh_token: Current plaintext refresh token
            metadata: Current record metadata (kept, with scope/token_type updated)

        Returns:
            RefreshedToken with the new access token and expiry

        Raises:
            ReauthorizationRequiredError: Grant expired/revoked, refresh unsupported or unconfigured
            ProviderError: Transport failure or provider-side error
        """
        provider = provider_for_service(service)
        if provider is None:
            raise ReauthorizationRequiredError(service, f"'{service}' does not support token refresh")

        client_id, client_secret = self.settings.get_oauth_client(provider.name)
        if not client_id or not client_secret:
            logger.error(f"❌ No OAuth client configured for {provider.name}; cannot refresh {service}")
            raise ReauthorizationRequiredError(
                service, f"OAuth client for '{provider.name}' is not configured", provider=provider.name
            )

        payload = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        logger.info(f"🔄 Refreshing {service} token for user {user_id}")
        data = await self._call_token_endpoint(service, provider, payload, client_id, client_secret)

        access_token = data.get("access_token")
        if not access_token:
            raise ProviderError(
                f"{provider.name} token response has no access_token", body=data, provider=provider.name
            )

        new_refresh = data.get("refresh_token")
        rotated = bool(new_refresh) and new_refresh != refresh_token
        expires_at = None
        if data.get("expires_in"):
            expires_at = utc_now() + timedelta(seconds=int(data["expires_in"]))

        updated_metadata = dict(metadata or {})
        if data.get("scope"):
            updated_metadata["scope"] = data["scope"]
        updated_metadata["token_type"] = data.get("token_type") or "Bearer"

        layout = await self.detector.detect()
        await self.store.upsert(
            layout,
            user_id,
            service,
            OAuthTokens(
                access_token=access_token,
                refresh_token=new_refresh if rotated else refresh_token,
                expires_at=expires_at,
            ),
            metadata=updated_metadata,
        )

        logger.info(f"✅ Refreshed {service} token for user {user_id} (rotated={rotated})")
        return RefreshedToken(
            access_token=access_token,
            expires_at=expires_at,
            refresh_token=new_refresh if rotated else refresh_token,
            rotated=rotated,
            scope=data.get("scope"),
        )

    async def exchange_client_credentials(self, service: str, client_id: str, client_secret: str) -> RefreshedToken:
        """
        Obtain an access token with the client_credentials grant.

        The token is not stored; the caller uses it for one execution.

        Raises:
            ReauthorizationRequiredError: The provider rejected the secret pair
            ProviderError: Transport failure or provider-side error
        """
        provider = provider_for_service(service)
        if provider is None:
            raise ProviderError(f"'{service}' has no token endpoint", provider=service)

        data = await self._call_token_endpoint(
            service, provider, {"grant_type": "client_credentials"}, client_id, client_secret, force_basic=True
        )
        access_token = data.get("access_token")
        if not access_token:
            raise ProviderError(f"{provider.name} token response has no access_token", body=data, provider=provider.name)

        expires_at = None
        if data.get("expires_in"):
            expires_at = utc_now() + timedelta(seconds=int(data["expires_in"]))
        return RefreshedToken(access_token=access_token, expires_at=expires_at, refresh_token="", scope=data.get("scope"))

    async def _call_token_endpoint(
        self,
        service: str,
        provider: RefreshProvider,
        payload: Dict[str, str],
        client_id: str,
        client_secret: str,
        force_basic: bool = False,
    ) -> Dict[str, Any]:
        auth = None
        if provider.client_auth == "basic" or force_basic:
            auth = httpx.BasicAuth(client_id, client_secret)
        else:
            payload = {**payload, "client_id": client_id, "client_secret": client_secret}

        kwargs: Dict[str, Any] = {"headers": {"Accept": "application/json"}, "auth": auth}
        if provider.body_format == "json":
            kwargs["body"] = payload
        else:
            kwargs["data"] = payload

        try:
            response = await self.http.send("POST", self._token_url(provider), provider=provider.name, **kwargs)
        except ProviderError as e:
            if e.upstream_status in DEAD_GRANT_STATUSES:
                logger.warning(f"⚠️ {provider.name} rejected the grant for {service} ({e.upstream_status}): {e.message}")
                raise ReauthorizationRequiredError(
                    service,
                    f"{provider.name} rejected the grant: {e.message}",
                    cause=e,
                    upstream_status=e.upstream_status,
                )
            logger.error(f"❌ {provider.name} token endpoint failed for {service}: {e.message}")
            raise
        except ExecutionTimeoutError as e:
            logger.error(f"❌ {provider.name} token endpoint timed out for {service}")
            raise ProviderError(f"{provider.name} token endpoint timed out", provider=provider.name, cause=e)

        data = parse_body(response)
        if not isinstance(data, dict):
            raise ProviderError(f"{provider.name} token response is not JSON", body=data, provider=provider.name)

        if provider.ok_flag and data.get("ok") is False:
            error = str(data.get("error") or "unknown_error")
            if error in SLACK_DEAD_GRANT_ERRORS:
                raise ReauthorizationRequiredError(service, f"{provider.name} rejected the grant: {error}")
            raise ProviderError(error, upstream_status=response.status_code, body=data, provider=provider.name)

        return data
