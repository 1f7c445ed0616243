"""
Unit Tests for the Credential Resolver

Covers the OAuth path (valid, refreshed, stale fallback, reauthorization),
static credential priority, derived tokens and connection status.
"""

import asyncio
import base64
from datetime import timedelta

import httpx
import pytest
from sqlalchemy import insert

from autoflow.database.models.integration import new_id
from autoflow.exceptions import (
    CorruptRecordError,
    CredentialUnavailableError,
    ProviderError,
    ReauthorizationRequiredError,
)
from autoflow.schemas.credential import CredentialSource, ResolutionState, TokenType
from autoflow.services.credential_resolver import policy_for
from autoflow.utils.timezone import utc_now


def token_endpoint(payload, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=payload)
    return handler


class TestOAuthResolution:
    """Integration records and their refresh policy"""

    async def test_valid_token_is_returned_without_refresh(self, stack):
        await stack.connect("user-1", "slack", access_token="xoxb-live", expires_in=3600)

        credential = await stack.resolver.resolve("user-1", "slack")

        assert credential.token == "xoxb-live"
        assert credential.state == ResolutionState.VALID
        assert credential.source == CredentialSource.OAUTH
        assert credential.authorization_header() == "Bearer xoxb-live"
        assert stack.requests == []

    async def test_token_without_expiry_is_valid(self, stack):
        await stack.connect("user-1", "notion", access_token="secret_x", refresh_token=None, expires_in=None)
        credential = await stack.resolver.resolve("user-1", "notion")
        assert credential.state == ResolutionState.VALID

    async def test_expired_token_is_refreshed(self, make_stack, vault):
        stack = await make_stack(handler=token_endpoint({"access_token": "ya29.fresh", "expires_in": 3599}))
        await stack.connect("user-1", "google-sheets", access_token="ya29.stale", expires_in=-1)

        credential = await stack.resolver.resolve("user-1", "google-sheets")

        assert credential.state == ResolutionState.REFRESHED
        assert credential.token == "ya29.fresh"
        assert credential.expires_at > utc_now()

        layout = await stack.detector.detect()
        record = await stack.integrations.get(layout, "user-1", "google-sheets")
        assert vault.open(record.access_token) == "ya29.fresh"

    async def test_token_inside_margin_is_refreshed(self, make_stack):
        stack = await make_stack(handler=token_endpoint({"access_token": "ya29.fresh", "expires_in": 3599}))
        await stack.connect("user-1", "google", access_token="ya29.soon", expires_in=60)

        credential = await stack.resolver.resolve("user-1", "google")

        assert credential.state == ResolutionState.REFRESHED
        assert len(stack.requests) == 1

    async def test_refresh_failure_before_expiry_returns_stale_token(self, make_stack):
        stack = await make_stack(handler=token_endpoint({"error": "backend_error"}, 500))
        await stack.connect("user-1", "google", access_token="ya29.stale", expires_in=120)

        credential = await stack.resolver.resolve("user-1", "google")

        assert credential.token == "ya29.stale"
        assert credential.state == ResolutionState.VALID
        assert credential.refresh_error

    async def test_dead_grant_after_expiry_requires_reauthorization(self, make_stack):
        stack = await make_stack(handler=token_endpoint({"error": "invalid_grant"}, 400))
        await stack.connect("user-1", "google-gmail", expires_in=-1)

        with pytest.raises(ReauthorizationRequiredError) as exc_info:
            await stack.resolver.resolve("user-1", "google-gmail")

        assert exc_info.value.service == "google-gmail"
        assert len(stack.requests) == 1

    async def test_provider_failure_after_expiry_propagates(self, make_stack):
        stack = await make_stack(handler=token_endpoint({"error": "backend_error"}, 502))
        await stack.connect("user-1", "google", expires_in=-1)

        with pytest.raises(ProviderError):
            await stack.resolver.resolve("user-1", "google")

    async def test_expired_without_refresh_token(self, stack):
        await stack.connect("user-1", "slack", refresh_token=None, expires_in=-1)
        with pytest.raises(ReauthorizationRequiredError):
            await stack.resolver.resolve("user-1", "slack")

    async def test_near_expiry_without_refresh_token_returns_stale(self, stack):
        await stack.connect("user-1", "slack", access_token="xoxb-soon", refresh_token=None, expires_in=60)
        credential = await stack.resolver.resolve("user-1", "slack")
        assert credential.token == "xoxb-soon"
        assert credential.refresh_error

    async def test_dead_grant_falls_through_to_static_token(self, make_stack):
        stack = await make_stack(handler=token_endpoint({"error": "invalid_grant"}, 400))
        await stack.connect("user-1", "slack", access_token="xoxe.expired", expires_in=-1)
        await stack.credentials.store("user-1", "slack", "bot_token", "xoxb-static")

        credential = await stack.resolver.resolve("user-1", "slack")

        assert credential.token == "xoxb-static"
        assert credential.source == CredentialSource.STATIC
        assert credential.credential_kind == "bot_token"
        assert len(stack.requests) == 1

    async def test_static_token_preferred_over_stale_token(self, make_stack):
        stack = await make_stack(handler=token_endpoint({"error": "backend_error"}, 500))
        await stack.connect("user-1", "slack", access_token="xoxe.stale", expires_in=60)
        await stack.credentials.store("user-1", "slack", "bot_token", "xoxb-static")

        credential = await stack.resolver.resolve("user-1", "slack")

        assert credential.token == "xoxb-static"
        assert credential.refresh_error is None

    async def test_dead_grant_without_static_token_still_raises(self, make_stack):
        stack = await make_stack(handler=token_endpoint({"error": "invalid_grant"}, 400))
        await stack.connect("user-1", "slack", expires_in=-1)
        await stack.credentials.store("user-1", "slack", "webhook_url", "https://hooks.slack.com/x")

        with pytest.raises(ReauthorizationRequiredError) as exc_info:
            await stack.resolver.resolve("user-1", "slack")
        assert exc_info.value.service == "slack"

    async def test_google_variant_falls_back_to_shared_record(self, stack):
        await stack.connect("user-1", "google", access_token="ya29.shared")

        credential = await stack.resolver.resolve("user-1", "google-calendar")

        assert credential.token == "ya29.shared"
        assert credential.service == "google-calendar"

    async def test_catalogue_layout_resolves(self, make_stack):
        stack = await make_stack("catalogue")
        await stack.connect("user-1", "google-drive", access_token="ya29.catalogue")
        credential = await stack.resolver.resolve("user-1", "google-drive")
        assert credential.token == "ya29.catalogue"

    async def test_corrupt_record_propagates(self, stack):
        layout = await stack.detector.detect()
        async with stack.engine.begin() as conn:
            await conn.execute(insert(layout.user_integrations).values(
                id=new_id(), user_id="user-1", service_name="slack", access_token="garbage",
                is_active=True, created_at=utc_now(), updated_at=utc_now(),
            ))

        with pytest.raises(CorruptRecordError):
            await stack.resolver.resolve("user-1", "slack")

    async def test_concurrent_resolves_leave_consistent_record(self, make_stack, vault):
        counter = {"calls": 0}

        def handler(request):
            counter["calls"] += 1
            return httpx.Response(200, json={"access_token": f"ya29.{counter['calls']}", "expires_in": 3600})

        stack = await make_stack(handler=handler)
        await stack.connect("user-1", "google", expires_in=-1)

        results = await asyncio.gather(
            stack.resolver.resolve("user-1", "google"),
            stack.resolver.resolve("user-1", "google"),
        )

        layout = await stack.detector.detect()
        record = await stack.integrations.get(layout, "user-1", "google")
        assert vault.open(record.access_token) in {result.token for result in results}
        assert record.expires_at > utc_now() + timedelta(minutes=50)


class TestStaticResolution:
    """Static credentials and their priority order"""

    async def test_discord_bot_token_after_storing(self, stack):
        with pytest.raises(CredentialUnavailableError):
            await stack.resolver.resolve("user-1", "discord")

        await stack.credentials.store("user-1", "discord", "bot_token", "MTIz.bot")
        credential = await stack.resolver.resolve("user-1", "discord")

        assert credential.state == ResolutionState.VALID
        assert credential.source == CredentialSource.STATIC
        assert credential.credential_kind == "bot_token"
        assert credential.authorization_header() == "Bot MTIz.bot"

    async def test_oauth_record_wins_over_static(self, stack):
        await stack.connect("user-1", "slack", access_token="xoxp-user")
        await stack.credentials.store("user-1", "slack", "bot_token", "xoxb-bot")

        assert (await stack.resolver.resolve("user-1", "slack")).token == "xoxp-user"

    async def test_accept_narrows_kinds(self, stack):
        await stack.connect("user-1", "slack", access_token="xoxp-user")
        await stack.credentials.store("user-1", "slack", "bot_token", "xoxb-bot")

        credential = await stack.resolver.resolve("user-1", "slack", accept=["bot_token"])
        assert credential.token == "xoxb-bot"

    async def test_twilio_basic_auth_uses_account_sid(self, stack):
        await stack.credentials.store("user-1", "twilio", "account_sid", "AC123")
        await stack.credentials.store("user-1", "twilio", "auth_token", "secret")

        credential = await stack.resolver.resolve("user-1", "twilio")

        assert credential.token_type == TokenType.BASIC
        assert credential.extras == {"account_sid": "AC123"}
        expected = base64.b64encode(b"AC123:secret").decode()
        assert credential.authorization_header() == f"Basic {expected}"

    async def test_multi_part_credential_missing_extra_is_unavailable(self, stack):
        await stack.credentials.store("user-1", "twilio", "auth_token", "secret")
        with pytest.raises(CredentialUnavailableError):
            await stack.resolver.resolve("user-1", "twilio")

    async def test_unknown_service_uses_generic_kinds(self, stack):
        await stack.credentials.store("user-1", "acme", "api_token", "acme-secret")
        credential = await stack.resolver.resolve("user-1", "acme")
        assert credential.credential_kind == "api_token"

    async def test_unavailable_error_is_user_actionable(self, stack):
        with pytest.raises(CredentialUnavailableError) as exc_info:
            await stack.resolver.resolve("user-1", "notion")
        assert "notion" in exc_info.value.user_message
        assert exc_info.value.to_dict()["error_code"] == "CREDENTIAL_UNAVAILABLE"


class TestDerivedResolution:
    """Tokens exchanged from a client id/secret pair"""

    async def test_paypal_client_credentials(self, make_stack):
        stack = await make_stack(handler=token_endpoint({"access_token": "A21AA.derived", "expires_in": 32400}))
        await stack.credentials.store("user-1", "paypal", "client_id", "AYx")
        await stack.credentials.store("user-1", "paypal", "client_secret", "EKy")

        credential = await stack.resolver.resolve("user-1", "paypal")

        assert credential.token == "A21AA.derived"
        assert credential.source == CredentialSource.DERIVED
        assert stack.requests[0].headers["Authorization"] == "Basic " + base64.b64encode(b"AYx:EKy").decode()

    async def test_rejected_pair_is_unavailable(self, make_stack):
        stack = await make_stack(handler=token_endpoint({"error": "invalid_client"}, 401))
        await stack.credentials.store("user-1", "paypal", "client_id", "AYx")
        await stack.credentials.store("user-1", "paypal", "client_secret", "wrong")

        with pytest.raises(CredentialUnavailableError):
            await stack.resolver.resolve("user-1", "paypal")


class TestResolveAll:
    """Tests for resolve_all()"""

    async def test_unavailable_services_map_to_none(self, stack):
        await stack.connect("user-1", "slack", access_token="xoxb")
        await stack.connect("user-1", "google", refresh_token=None, expires_in=-1)

        resolved = await stack.resolver.resolve_all("user-1", ["slack", "discord", "google", "slack"])

        assert list(resolved) == ["slack", "discord", "google"]
        assert resolved["slack"].token == "xoxb"
        assert resolved["discord"] is None
        assert resolved["google"] is None


class TestConnectionStatus:
    """Tests for connection_status()"""

    async def test_summarizes_oauth_and_static(self, stack):
        await stack.connect("user-1", "google-sheets", expires_in=60)
        await stack.connect("user-1", "slack", refresh_token=None, expires_in=None)
        await stack.credentials.store("user-1", "slack", "bot_token", "xoxb")
        await stack.credentials.store("user-1", "openai", "api_key", "sk-x")

        statuses = {status.service: status for status in await stack.resolver.connection_status("user-1")}

        assert list(statuses) == ["google-sheets", "openai", "slack"]
        assert statuses["google-sheets"].oauth_connected is True
        assert statuses["google-sheets"].needs_refresh is True
        assert statuses["google-sheets"].can_refresh is True
        assert statuses["slack"].can_refresh is False
        assert statuses["slack"].credential_kinds == ["bot_token"]
        assert statuses["openai"].oauth_connected is False
        assert statuses["openai"].credential_kinds == ["api_key"]
        assert stack.requests == []


class TestPolicies:
    """Tests for policy_for()"""

    def test_google_variant_policy(self):
        assert policy_for("google-sheets").oauth_aliases == ("google",)
        assert "google-sheets" in policy_for("google").oauth_aliases

    def test_unknown_service_policy(self):
        assert [option.kind for option in policy_for("acme").static_options] == ["api_key", "api_token", "token"]
