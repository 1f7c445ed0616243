"""
Unit Tests for HttpClient
"""

import json

import httpx
import pytest

from autoflow.exceptions import ExecutionTimeoutError, ProviderError
from autoflow.services.http_client import HttpClient, error_message_from_body


def client_for(handler) -> HttpClient:
    return HttpClient(timeout=2, transport=httpx.MockTransport(handler), provider="example")


class TestRequests:
    """Tests for the verb helpers"""

    async def test_get_parses_json(self):
        async with client_for(lambda request: httpx.Response(200, json={"items": [1, 2]})) as http:
            assert await http.get("https://api.example.com/items") == {"items": [1, 2]}

    async def test_post_sends_json_body(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json={"id": "abc"})

        async with client_for(handler) as http:
            result = await http.post("https://api.example.com/items", {"name": "x"}, headers={"X-Test": "1"})

        assert result == {"id": "abc"}
        assert json.loads(seen[0].content) == {"name": "x"}
        assert seen[0].headers["X-Test"] == "1"

    async def test_text_and_empty_bodies(self):
        async with client_for(lambda request: httpx.Response(200, text="plain")) as http:
            assert await http.get("https://example.com") == "plain"
        async with client_for(lambda request: httpx.Response(204)) as http:
            assert await http.delete("https://example.com/1") is None


class TestErrors:
    """Tests for error classification"""

    async def test_non_2xx_is_provider_error(self):
        def handler(request):
            return httpx.Response(404, json={"error": {"message": "Channel not found"}})

        async with client_for(handler) as http:
            with pytest.raises(ProviderError) as exc_info:
                await http.get("https://api.example.com/channels/1")

        error = exc_info.value
        assert error.upstream_status == 404
        assert error.message == "Channel not found"
        assert error.body == {"error": {"message": "Channel not found"}}
        assert error.provider == "example"

    async def test_timeout(self):
        def handler(request):
            raise httpx.ConnectTimeout("slow", request=request)

        async with client_for(handler) as http:
            with pytest.raises(ExecutionTimeoutError) as exc_info:
                await http.get("https://api.example.com")
        assert exc_info.value.timeout == 2

    async def test_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with client_for(handler) as http:
            with pytest.raises(ProviderError) as exc_info:
                await http.get("https://api.example.com")
        assert exc_info.value.upstream_status is None


class TestErrorMessage:
    """Tests for error_message_from_body()"""

    @pytest.mark.parametrize(
        "body, expected",
        [
            ({"message": "Invalid token"}, "Invalid token"),
            ({"error_description": "Bad grant", "error": "invalid_grant"}, "Bad grant"),
            ({"error": "not_authed"}, "not_authed"),
            ({"errors": [{"message": "First"}]}, "First"),
            ("  raw text  ", "raw text"),
            (None, "HTTP 500"),
        ],
    )
    def test_messages(self, body, expected):
        assert error_message_from_body(body, 500) == expected
