"""
Unit Tests for the Integration Repository

OAuth records in the inline, catalogue and hybrid layouts of
user_integrations.
"""

import dataclasses
import json
from datetime import timedelta

import pytest
from sqlalchemy import insert, select

from autoflow.database.layout import SchemaDetector
from autoflow.database.models.integration import new_id
from autoflow.database.session import create_engine_for_url
from autoflow.exceptions import CorruptRecordError
from autoflow.schemas.credential import OAuthTokens, RecordEncoding
from autoflow.utils.timezone import utc_now


class TestSchemaDetection:
    """Tests for SchemaDetector"""

    @pytest.mark.parametrize(
        "layout, inline, catalogue",
        [("inline", True, False), ("catalogue", False, True), ("hybrid", True, True)],
    )
    async def test_detects_layout(self, make_stack, layout, inline, catalogue):
        stack = await make_stack(layout)
        detected = await stack.detector.detect()
        assert detected.inline is inline
        assert detected.catalogue is catalogue
        assert detected.name == layout

    async def test_layout_is_cached(self, stack):
        first = await stack.detector.detect()
        assert stack.detector.cached is first
        assert await stack.detector.detect() is first

    async def test_empty_database_has_no_layout(self, tmp_path, test_settings):
        engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}", test_settings)
        try:
            layout = await SchemaDetector(engine).detect()
            assert layout.name == "none"
            assert layout.user_integrations is None
        finally:
            await engine.dispose()


@pytest.mark.parametrize("layout_name", ["inline", "catalogue", "hybrid"])
class TestUpsertAndGet:
    """Write/read behaviour shared by every layout"""

    async def test_round_trip(self, make_stack, vault, layout_name):
        stack = await make_stack(layout_name)
        expires_at = utc_now() + timedelta(hours=1)
        await stack.connect("user-1", "google-sheets", access_token="ya29.a", refresh_token="1//r",
                            expires_in=3600, metadata={"email": "me@example.com"})

        layout = await stack.detector.detect()
        record = await stack.integrations.get(layout, "user-1", "google-sheets")

        assert record is not None
        assert record.service == "google-sheets"
        assert vault.open(record.access_token) == "ya29.a"
        assert vault.open(record.refresh_token) == "1//r"
        assert record.metadata == {"email": "me@example.com"}
        assert record.expires_at.tzinfo is not None
        assert abs((record.expires_at - expires_at).total_seconds()) < 5

    async def test_missing_record_is_none(self, make_stack, layout_name):
        stack = await make_stack(layout_name)
        layout = await stack.detector.detect()
        assert await stack.integrations.get(layout, "user-1", "slack") is None

    async def test_update_keeps_refresh_token_and_metadata(self, make_stack, vault, layout_name):
        stack = await make_stack(layout_name)
        await stack.connect("user-1", "slack", access_token="old", refresh_token="keep-me", metadata={"team": "T1"})

        layout = await stack.detector.detect()
        await stack.integrations.upsert(
            layout, "user-1", "slack", OAuthTokens(access_token="new", refresh_token=None, expires_at=None)
        )
        record = await stack.integrations.get(layout, "user-1", "slack")

        assert vault.open(record.access_token) == "new"
        assert vault.open(record.refresh_token) == "keep-me"
        assert record.metadata == {"team": "T1"}
        assert record.expires_at is None

    async def test_records_are_scoped_per_user(self, make_stack, layout_name):
        stack = await make_stack(layout_name)
        await stack.connect("user-1", "slack")
        layout = await stack.detector.detect()
        assert await stack.integrations.get(layout, "user-2", "slack") is None

    async def test_delete(self, make_stack, layout_name):
        stack = await make_stack(layout_name)
        await stack.connect("user-1", "discord")
        layout = await stack.detector.detect()

        assert await stack.integrations.delete(layout, "user-1", "discord") is True
        assert await stack.integrations.get(layout, "user-1", "discord") is None
        assert await stack.integrations.delete(layout, "user-1", "discord") is False


class TestInlineLayout:
    """Inline encoding specifics"""

    async def test_tokens_are_sealed_at_rest(self, stack):
        await stack.connect("user-1", "slack", access_token="xoxb-plain", refresh_token="xoxr-plain")
        layout = await stack.detector.detect()
        table = layout.user_integrations

        async with stack.engine.connect() as conn:
            row = (await conn.execute(select(table))).one()._mapping

        assert "xoxb-plain" not in row["access_token"]
        assert set(json.loads(row["access_token"])) == {"encrypted", "iv", "authTag"}
        assert "xoxr-plain" not in row["refresh_token"]

    async def test_one_row_per_user_and_service(self, stack):
        await stack.connect("user-1", "slack", access_token="a")
        await stack.connect("user-1", "slack", access_token="b")
        layout = await stack.detector.detect()

        async with stack.engine.connect() as conn:
            rows = (await conn.execute(select(layout.user_integrations))).all()
        assert len(rows) == 1

    async def test_corrupt_record_raises_on_get(self, stack):
        layout = await stack.detector.detect()
        async with stack.engine.begin() as conn:
            await conn.execute(insert(layout.user_integrations).values(
                id=new_id(), user_id="user-1", service_name="notion", access_token="not-a-sealed-value",
                is_active=True, created_at=utc_now(), updated_at=utc_now(),
            ))

        with pytest.raises(CorruptRecordError):
            await stack.integrations.get(layout, "user-1", "notion")

    async def test_list_all_skips_corrupt_records(self, stack):
        await stack.connect("user-1", "slack")
        layout = await stack.detector.detect()
        async with stack.engine.begin() as conn:
            await conn.execute(insert(layout.user_integrations).values(
                id=new_id(), user_id="user-1", service_name="notion", access_token="{truncated",
                is_active=True, created_at=utc_now(), updated_at=utc_now(),
            ))

        records = await stack.integrations.list_all(layout, "user-1")
        assert [record.service for record in records] == ["slack"]


class TestCatalogueLayout:
    """Catalogue encoding specifics"""

    async def test_config_blob_holds_nested_sealed_tokens(self, make_stack):
        stack = await make_stack("catalogue")
        await stack.connect("user-1", "google-gmail", access_token="ya29.plain", refresh_token="1//plain")
        layout = await stack.detector.detect()

        async with stack.engine.connect() as conn:
            row = (await conn.execute(select(layout.user_integrations))).one()._mapping

        config = row["config"] if isinstance(row["config"], dict) else json.loads(row["config"])
        assert config["service"] == "google-gmail"
        assert set(config["access_token"]) == {"encrypted", "iv", "authTag"}
        assert "ya29.plain" not in json.dumps(config)
        assert row["name"] == "google-gmail"

    async def test_sub_variants_share_one_catalogue_entry(self, make_stack, vault):
        stack = await make_stack("catalogue")
        await stack.connect("user-1", "google-gmail", access_token="gmail-token")
        await stack.connect("user-1", "google-sheets", access_token="sheets-token")
        layout = await stack.detector.detect()

        async with stack.engine.connect() as conn:
            entries = (await conn.execute(select(layout.integrations.c.name))).scalars().all()
        assert entries == ["google"]

        gmail = await stack.integrations.get(layout, "user-1", "google-gmail")
        sheets = await stack.integrations.get(layout, "user-1", "google-sheets")
        assert vault.open(gmail.access_token) == "gmail-token"
        assert vault.open(sheets.access_token) == "sheets-token"
        assert gmail.encoding == RecordEncoding.CATALOGUE

    async def test_list_all(self, make_stack):
        stack = await make_stack("catalogue")
        await stack.connect("user-1", "google-gmail")
        await stack.connect("user-1", "slack")
        layout = await stack.detector.detect()

        services = sorted(record.service for record in await stack.integrations.list_all(layout, "user-1"))
        assert services == ["google-gmail", "slack"]


class TestHybridLayout:
    """Deployments carrying both column sets"""

    async def test_writes_use_inline_encoding(self, make_stack):
        stack = await make_stack("hybrid")
        record = await stack.connect("user-1", "slack")
        assert record.encoding == RecordEncoding.INLINE

    async def test_reads_fall_back_to_catalogue_rows(self, make_stack, vault):
        stack = await make_stack("hybrid")
        layout = await stack.detector.detect()
        catalogue_only = dataclasses.replace(layout, inline=False)
        await stack.integrations.upsert(
            catalogue_only, "user-1", "google-drive", OAuthTokens(access_token="from-catalogue")
        )

        record = await stack.integrations.get(layout, "user-1", "google-drive")
        assert record.encoding == RecordEncoding.CATALOGUE
        assert vault.open(record.access_token) == "from-catalogue"

    async def test_list_all_returns_record_in_both_encodings_once(self, make_stack, vault):
        stack = await make_stack("hybrid")
        layout = await stack.detector.detect()
        await stack.integrations.upsert(
            dataclasses.replace(layout, inline=False), "user-1", "slack", OAuthTokens(access_token="from-catalogue")
        )
        await stack.connect("user-1", "slack", access_token="from-inline")
        await stack.connect("user-1", "notion", access_token="notion-token")

        records = await stack.integrations.list_all(layout, "user-1")

        assert sorted(record.service for record in records) == ["notion", "slack"]
        slack = next(record for record in records if record.service == "slack")
        assert slack.encoding == RecordEncoding.INLINE
        assert vault.open(slack.access_token) == "from-inline"

    async def test_delete_removes_both_encodings(self, make_stack):
        stack = await make_stack("hybrid")
        layout = await stack.detector.detect()
        await stack.integrations.upsert(
            dataclasses.replace(layout, inline=False), "user-1", "slack", OAuthTokens(access_token="old")
        )
        await stack.connect("user-1", "slack", access_token="new")
        assert len(await stack.integrations.list_all(layout, "user-1")) == 1

        assert await stack.integrations.delete(layout, "user-1", "slack") is True
        assert await stack.integrations.get(layout, "user-1", "slack") is None
        assert await stack.integrations.list_all(layout, "user-1") == []
