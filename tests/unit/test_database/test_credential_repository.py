"""
Unit Tests for the Credential Repository

Static credentials (API keys, bot tokens, account SIDs) keyed by
(user, service, credential kind).
"""

import pytest
from sqlalchemy import select

from autoflow.database.models.credential import IntegrationCredential


@pytest.fixture
def credentials(stack):
    return stack.credentials


class TestStore:
    """Tests for store()"""

    async def test_store_and_get(self, credentials, vault):
        await credentials.store("user-1", "discord", "bot_token", "MTIz.bot", {"label": "My bot"})

        sealed = await credentials.get("user-1", "discord", "bot_token")
        assert vault.open(sealed) == "MTIz.bot"

    async def test_value_is_sealed_at_rest(self, credentials, stack):
        await credentials.store("user-1", "stripe", "secret_key", "sk_test_plain")

        async with stack.engine.connect() as conn:
            row = (await conn.execute(select(IntegrationCredential.__table__))).one()._mapping
        assert "sk_test_plain" not in row["credential_value"]
        assert row["metadata"] == {}

    async def test_store_replaces_existing_kind(self, credentials, vault):
        await credentials.store("user-1", "openai", "api_key", "sk-old")
        await credentials.store("user-1", "openai", "api_key", "sk-new")

        assert vault.open(await credentials.get("user-1", "openai", "api_key")) == "sk-new"
        assert await credentials.list_kinds("user-1", "openai") == ["api_key"]

    async def test_several_kinds_per_service(self, credentials):
        await credentials.store("user-1", "twilio", "account_sid", "AC123")
        await credentials.store("user-1", "twilio", "auth_token", "tok")

        assert await credentials.list_kinds("user-1", "twilio") == ["account_sid", "auth_token"]


class TestRead:
    """Tests for get() / list_services()"""

    async def test_missing_credential_is_none(self, credentials):
        assert await credentials.get("user-1", "notion", "api_token") is None

    async def test_credentials_are_scoped_per_user(self, credentials):
        await credentials.store("user-1", "notion", "api_token", "secret_1")
        assert await credentials.get("user-2", "notion", "api_token") is None

    async def test_list_services(self, credentials):
        await credentials.store("user-1", "twilio", "auth_token", "tok")
        await credentials.store("user-1", "twilio", "account_sid", "AC1")
        await credentials.store("user-1", "discord", "bot_token", "bot")
        await credentials.store("user-2", "slack", "bot_token", "other")

        assert await credentials.list_services("user-1") == {
            "discord": ["bot_token"],
            "twilio": ["account_sid", "auth_token"],
        }


class TestDelete:
    """Tests for delete()"""

    async def test_delete_one_kind(self, credentials):
        await credentials.store("user-1", "twilio", "account_sid", "AC1")
        await credentials.store("user-1", "twilio", "auth_token", "tok")

        assert await credentials.delete("user-1", "twilio", "auth_token") is True
        assert await credentials.list_kinds("user-1", "twilio") == ["account_sid"]

    async def test_delete_all_kinds(self, credentials):
        await credentials.store("user-1", "twilio", "account_sid", "AC1")
        await credentials.store("user-1", "twilio", "auth_token", "tok")

        assert await credentials.delete("user-1", "twilio") is True
        assert await credentials.list_kinds("user-1", "twilio") == []

    async def test_delete_nothing(self, credentials):
        assert await credentials.delete("user-1", "twilio") is False
