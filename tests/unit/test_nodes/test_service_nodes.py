"""
Unit Tests for Service-Backed Nodes

Communication and AI nodes resolve the user's credential through the
context and call the provider over the mocked transport.
"""

import base64
import json
from urllib.parse import parse_qs

import httpx

from autoflow.database.repositories.credential import CredentialRepository
from autoflow.database.session import create_session_factory
from autoflow.security.encryption import CipherVault


def respond(payload, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=payload)
    return handler


def openai_reply(content: str):
    return respond({"choices": [{"message": {"role": "assistant", "content": content}}]})


class TestDiscordNode:
    """send-discord-message"""

    CONFIG = {"guildId": "g1", "channelId": "c1", "message": "Deploy finished"}

    async def test_not_connected_then_bot_token(self, stack, dispatcher):
        before = await dispatcher.execute("send-discord-message", self.CONFIG, {}, "user-1")
        assert before.success is False
        assert before.error.code == "CREDENTIAL_UNAVAILABLE"
        assert before.error.service == "discord"
        assert stack.requests == []

        await stack.credentials.store("user-1", "discord", "bot_token", "MTIz.bot")
        stack.handler = respond({"id": "m1", "channel_id": "c1", "content": "Deploy finished"})

        after = await dispatcher.execute("send-discord-message", self.CONFIG, {}, "user-1")

        assert after.success, after.error
        assert after.outputs["id"] == "m1"
        request = stack.requests[0]
        assert request.url == "https://discord.com/api/v10/channels/c1/messages"
        assert request.headers["Authorization"] == "Bot MTIz.bot"
        assert json.loads(request.content) == {"content": "Deploy finished", "embeds": []}

    async def test_upstream_error_keeps_status_and_body(self, stack, dispatcher):
        await stack.credentials.store("user-1", "discord", "bot_token", "MTIz.bot")
        stack.handler = respond({"message": "Missing Access", "code": 50001}, 403)

        result = await dispatcher.execute("send-discord-message", self.CONFIG, {}, "user-1")

        assert result.success is False
        assert result.error.code == "PROVIDER_ERROR"
        assert result.error.message == "Missing Access"
        assert result.error.upstream_status == 403
        assert result.error.body == {"message": "Missing Access", "code": 50001}

    async def test_secret_sealed_under_another_key(self, stack, dispatcher):
        other_key = CredentialRepository(create_session_factory(stack.engine), CipherVault.from_material("rotated-key"))
        await other_key.store("user-1", "discord", "bot_token", "MTIz.bot")

        result = await dispatcher.execute("send-discord-message", self.CONFIG, {}, "user-1")

        error = result.to_dict()["error"]
        assert error["code"] == "DECRYPTION_FAILED"
        assert "detail" not in error
        assert "authentication" not in str(error).lower()
        assert stack.requests == []


class TestSlackNode:
    """post-to-slack-channel"""

    async def test_posts_with_oauth_token(self, stack, dispatcher):
        await stack.connect("user-1", "slack", access_token="xoxb-oauth")
        stack.handler = respond({"ok": True, "ts": "1700000000.1", "channel": "C1"})

        result = await dispatcher.execute(
            "post-to-slack-channel", {"channel": "C1", "message": "Hi {{inputData.name}}"}, {"name": "Ada"}, "user-1"
        )

        assert result.outputs["ts"] == "1700000000.1"
        request = stack.requests[0]
        assert request.headers["Authorization"] == "Bearer xoxb-oauth"
        assert json.loads(request.content) == {"channel": "C1", "text": "Hi Ada"}

    async def test_ok_false_is_provider_error(self, stack, dispatcher):
        await stack.connect("user-1", "slack")
        stack.handler = respond({"ok": False, "error": "channel_not_found"})

        result = await dispatcher.execute("post-to-slack-channel", {"channel": "C9", "message": "x"}, {}, "user-1")

        assert result.success is False
        assert result.error.message == "channel_not_found"

    async def test_expired_token_refreshed_before_posting(self, stack, dispatcher):
        await stack.connect("user-1", "slack", access_token="xoxe.old", expires_in=-1)

        def handler(request):
            if request.url.path == "/api/oauth.v2.access":
                return httpx.Response(200, json={"ok": True, "access_token": "xoxe.new", "expires_in": 43200})
            return httpx.Response(200, json={"ok": True, "ts": "1", "channel": "C1"})

        stack.handler = handler
        result = await dispatcher.execute("post-to-slack-channel", {"channel": "C1", "message": "x"}, {}, "user-1")

        assert result.success, result.error
        assert [request.url.path for request in stack.requests] == ["/api/oauth.v2.access", "/api/chat.postMessage"]
        assert stack.requests[1].headers["Authorization"] == "Bearer xoxe.new"

    async def test_dead_grant_asks_user_to_reconnect(self, stack, dispatcher):
        await stack.connect("user-1", "slack", expires_in=-1)
        stack.handler = respond({"ok": False, "error": "invalid_refresh_token"})

        result = await dispatcher.execute("post-to-slack-channel", {"channel": "C1", "message": "x"}, {}, "user-1")

        assert result.error.code == "REAUTHORIZATION_REQUIRED"
        assert "reconnect slack" in result.error.message.lower()
        assert len(stack.requests) == 1


class TestTwilioNode:
    """send-sms-via-twilio"""

    async def test_sends_form_with_basic_auth(self, stack, dispatcher):
        await stack.credentials.store("user-1", "twilio", "account_sid", "AC123")
        await stack.credentials.store("user-1", "twilio", "auth_token", "secret")
        stack.handler = respond({"sid": "SM1", "status": "queued", "to": "+15550002", "from": "+15550001"}, 201)

        result = await dispatcher.execute(
            "send-sms-via-twilio", {"to": "+15550002", "from": "+15550001", "message": "Hello"}, {}, "user-1"
        )

        assert result.outputs["messageSid"] == "SM1"
        request = stack.requests[0]
        assert request.url.path == "/2010-04-01/Accounts/AC123/Messages.json"
        assert request.headers["Authorization"] == "Basic " + base64.b64encode(b"AC123:secret").decode()
        assert parse_qs(request.content.decode())["Body"] == ["Hello"]

    async def test_message_too_long(self, stack, dispatcher):
        result = await dispatcher.execute(
            "send-sms-via-twilio", {"to": "+1", "from": "+2", "message": "x" * 1601}, {}, "user-1"
        )
        assert result.success is False
        assert stack.requests == []


class TestGmailNode:
    """send-email-gmail"""

    async def test_uses_shared_google_record(self, stack, dispatcher):
        await stack.connect("user-1", "google", access_token="ya29.shared")
        stack.handler = respond({"id": "msg-1", "threadId": "t-1"})

        result = await dispatcher.execute(
            "send-email-gmail", {"to": "a@example.com", "subject": "Hi", "body": "<p>Hello</p>"}, {}, "user-1"
        )

        assert result.outputs == {"success": True, "messageId": "msg-1", "threadId": "t-1", "status": "sent"}
        raw = json.loads(stack.requests[0].content)["raw"]
        decoded = base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)).decode()
        assert "To: a@example.com" in decoded
        assert "Subject: Hi" in decoded

    async def test_missing_fields_listed_together(self, dispatcher):
        result = await dispatcher.execute("send-email-gmail", {"subject": "x"}, {}, "user-1")
        assert result.error.code == "INVALID_CONFIG"
        assert result.error.missing_fields == ["to", "body"]


class TestAiNodes:
    """OpenAI-backed nodes"""

    async def test_sentiment(self, stack, dispatcher):
        await stack.credentials.store("user-1", "openai", "api_key", "sk-test")
        stack.handler = openai_reply('{"sentiment": "positive", "score": 0.8, "confidence": 0.9}')

        result = await dispatcher.execute("sentiment-analysis", {}, {"text": "I love it"}, "user-1")

        assert result.outputs == {"sentiment": "positive", "score": 0.8, "confidence": 0.9}
        request = stack.requests[0]
        assert request.url.path.endswith("/chat/completions")
        assert request.headers["Authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["response_format"] == {"type": "json_object"}
        assert "I love it" in body["messages"][-1]["content"]

    async def test_classify_falls_back_to_first_category(self, stack, dispatcher):
        await stack.credentials.store("user-1", "openai", "api_key", "sk-test")
        stack.handler = openai_reply('{"category": "unknown", "confidence": 0.99}')

        result = await dispatcher.execute(
            "classify-text", {"text": "meh", "categories": '["bug", "feature"]'}, {}, "user-1"
        )

        assert result.outputs["category"] == "bug"
        assert result.outputs["confidence"] == 0.0

    async def test_summary_without_key(self, dispatcher):
        result = await dispatcher.execute("generate-summary-with-ai", {"text": "long text"}, {}, "user-1")
        assert result.error.code == "CREDENTIAL_UNAVAILABLE"
