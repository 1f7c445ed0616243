"""
Unit Tests for Utility Nodes
"""

import json

import httpx


class TestHttpRequestNode:
    """http-request"""

    async def test_get_with_query_and_headers(self, stack, dispatcher):
        stack.handler = lambda request: httpx.Response(200, json={"ok": True})
        config = {
            "url": "https://api.example.com/items",
            "headers": '{"X-Api-Key": "k"}',
            "queryParams": '{"page": 2}',
        }

        result = await dispatcher.execute("http-request", config, {}, "user-1")

        assert result.success
        assert result.outputs["status"] == 200
        assert result.outputs["body"] == {"ok": True}
        request = stack.requests[0]
        assert request.method == "GET"
        assert request.url.params["page"] == "2"
        assert request.headers["X-Api-Key"] == "k"

    async def test_post_json_body_from_template(self, stack, dispatcher):
        stack.handler = lambda request: httpx.Response(201, json={"id": 7})
        config = {"method": "POST", "url": "https://api.example.com/items", "body": '{"name": "{{inputData.name}}"}'}

        result = await dispatcher.execute("http-request", config, {"name": "Ada"}, "user-1")

        assert result.outputs["status"] == 201
        assert json.loads(stack.requests[0].content) == {"name": "Ada"}

    async def test_error_status_is_returned_not_raised(self, stack, dispatcher):
        stack.handler = lambda request: httpx.Response(404, json={"message": "Not here"})

        result = await dispatcher.execute("http-request", {"url": "https://api.example.com/x"}, {}, "user-1")

        assert result.success is True
        assert result.outputs["success"] is False
        assert result.outputs["status"] == 404
        assert result.outputs["error"] == "Not here"

    async def test_connection_failure_fails_execution(self, stack, dispatcher):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        stack.handler = handler
        result = await dispatcher.execute("http-request", {"url": "https://api.example.com/x"}, {}, "user-1")

        assert result.success is False
        assert result.error.code == "PROVIDER_ERROR"

    async def test_unsupported_method(self, dispatcher):
        result = await dispatcher.execute("http-request", {"method": "TRACE", "url": "https://x.io"}, {}, "user-1")
        assert result.success is False
        assert "Unsupported HTTP method" in result.error.message


class TestFlowNodes:
    """log-print, stop-workflow, comment-note, delay-execution, wait-for-webhook"""

    async def test_log_print_records_entry(self, dispatcher):
        result = await dispatcher.execute(
            "log-print", {"message": "Hello {{inputData.name}}", "level": "warning"}, {"name": "Ada"}, "user-1"
        )

        assert result.outputs["message"] == "Hello Ada"
        assert result.outputs["data"] == {"name": "Ada"}
        assert {"level": "WARNING", "message": "Hello Ada"}.items() <= result.logs[0].items()

    async def test_stop_workflow(self, dispatcher):
        result = await dispatcher.execute("stop-workflow", {}, {"x": 1}, "user-1")
        assert result.outputs == {"stop": True, "reason": "Workflow stopped", "data": {"x": 1}}

    async def test_comment_requires_text(self, dispatcher):
        result = await dispatcher.execute("comment-note", {}, {}, "user-1")
        assert result.success is False
        assert result.error.missing_fields == ["comment"]

    async def test_delay_passes_input_through(self, dispatcher):
        result = await dispatcher.execute("delay-execution", {"delayMs": 0}, {"x": 1}, "user-1")
        assert result.outputs == {"delayed": True, "delayMs": 0, "inputData": {"x": 1}}

    async def test_delay_out_of_range(self, dispatcher):
        result = await dispatcher.execute("delay-execution", {"delayMs": -5}, {}, "user-1")
        assert result.success is False

    async def test_wait_for_webhook_then_resume(self, dispatcher):
        waiting = await dispatcher.execute("wait-for-webhook", {"webhookPath": "orders"}, {}, "user-1")
        assert waiting.outputs["waiting"] is True
        assert waiting.outputs["webhookPath"] == "orders"

        resumed = await dispatcher.execute(
            "wait-for-webhook", {"webhookPath": "orders"}, {"webhook": {"body": {"id": 1}}}, "user-1"
        )
        assert resumed.outputs["waiting"] is False
        assert resumed.outputs["data"] == {"id": 1}


class TestDownloadNode:
    """download-file"""

    async def test_download_base64(self, stack, dispatcher):
        stack.handler = lambda request: httpx.Response(
            200, content=b"\x89PNG", headers={"content-type": "image/png"}
        )

        result = await dispatcher.execute("download-file", {"url": "https://cdn.example.com/a/logo.png?v=2"}, {},
                                          "user-1")

        assert result.outputs["content"] == "iVBORw=="
        assert result.outputs["filename"] == "logo.png"
        assert result.outputs["mimeType"] == "image/png"
        assert result.outputs["size"] == 4
