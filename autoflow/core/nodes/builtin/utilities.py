"""
Utility Nodes - flow control, raw HTTP, logging
"""

import asyncio
import logging
import re
import uuid
from datetime import timedelta
from typing import Any, Dict, Mapping

from autoflow.core.nodes.builtin._helpers import (
    DATA_INPUT,
    TRUE_FALSE_OPTIONS,
    as_bool,
    decode_content,
    encode_content,
    options,
    parse_json_field,
)
from autoflow.core.nodes.registry import register_node
from autoflow.exceptions import ProviderError
from autoflow.schemas.workflow import NodeCategory, NodeKind, PortType
from autoflow.services.http_client import parse_body
from autoflow.utils.timezone import to_iso, utc_now

logger = logging.getLogger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")
MAX_DELAY_MS = 5 * 60 * 1000

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def header_map(value: Any) -> Dict[str, str]:
    headers = parse_json_field(value, "headers") or {}
    if not isinstance(headers, Mapping):
        raise ValueError("Headers must be a JSON object")
    return {str(key): str(item) for key, item in headers.items()}


def timeout_seconds(value: Any) -> float:
    """Millisecond config value -> seconds for the HTTP client."""
    try:
        return max(float(value), 1.0) / 1000
    except (TypeError, ValueError):
        raise ValueError(f"Invalid timeout: {value}")


@register_node(
    node_type="delay-execution",
    name="Delay Execution",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.UTILITIES,
    description="Pauses the workflow for a fixed time, then passes input through.",
    icon="Clock",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "delayed", "type": PortType.BOOLEAN},
        {"name": "inputData", "type": PortType.UNIVERSAL},
    ],
    config_schema={
        "delayMs": {"type": "integer", "label": "Delay (ms)", "description": "Delay duration in milliseconds",
                    "required": True, "default": 1000},
    },
)
async def delay_execution(input_data, config, context):
    delay_ms = int(config["delayMs"])
    if delay_ms < 0 or delay_ms > MAX_DELAY_MS:
        raise ValueError(f"Delay must be between 0 and {MAX_DELAY_MS} ms")
    await asyncio.sleep(delay_ms / 1000)
    return {"delayed": True, "delayMs": delay_ms, "inputData": input_data}


@register_node(
    node_type="http-request",
    name="HTTP Request",
    kind=NodeKind.ACTION,
    category=NodeCategory.UTILITIES,
    description="Makes an HTTP request to any URL. Error statuses are returned, not raised.",
    icon="Globe",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "status", "type": PortType.NUMBER},
        {"name": "headers", "type": PortType.OBJECT},
        {"name": "body", "type": PortType.UNIVERSAL},
        {"name": "success", "type": PortType.BOOLEAN},
    ],
    config_schema={
        "method": {"type": "select", "label": "Method", "required": True, "default": "GET",
                   "options": options(*HTTP_METHODS)},
        "url": {"type": "url", "label": "URL", "description": "Request URL", "required": True},
        "headers": {"type": "json", "label": "Headers", "description": 'e.g. {"Authorization": "Bearer token"}'},
        "body": {"type": "text", "label": "Body", "description": "Request body (JSON or raw text)"},
        "queryParams": {"type": "json", "label": "Query Parameters", "description": "URL query parameters (JSON object)"},
        "timeout": {"type": "integer", "label": "Timeout (ms)", "description": "Request timeout in milliseconds",
                    "default": 30000},
    },
)
async def http_request(input_data, config, context):
    method = str(config["method"]).upper()
    if method not in HTTP_METHODS:
        raise ValueError(f"Unsupported HTTP method: {method}")

    params = parse_json_field(config.get("queryParams"), "query parameters") or None
    kwargs: Dict[str, Any] = {
        "headers": header_map(config.get("headers")),
        "params": params,
        "timeout": timeout_seconds(config["timeout"]),
    }

    body = config.get("body")
    if isinstance(body, str) and body.strip():
        try:
            kwargs["body"] = parse_json_field(body, "body")
        except ValueError:
            kwargs["content"] = body.encode("utf-8")
    elif body not in (None, ""):
        kwargs["body"] = body

    try:
        response = await context.http.send(method, config["url"], **kwargs)
    except ProviderError as e:
        if e.upstream_status is None:
            raise
        context.logger.warning(f"{method} {config['url']} returned {e.upstream_status}")
        return {"status": e.upstream_status, "headers": {}, "body": e.body, "success": False, "error": e.message}

    return {
        "status": response.status_code,
        "headers": dict(response.headers),
        "body": parse_body(response),
        "success": True,
    }


@register_node(
    node_type="stop-workflow",
    name="Stop Workflow",
    kind=NodeKind.ACTION,
    category=NodeCategory.UTILITIES,
    description="Signals the workflow runner to stop after this node.",
    icon="StopCircle",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "stop", "type": PortType.BOOLEAN},
        {"name": "reason", "type": PortType.TEXT},
    ],
    config_schema={"reason": {"type": "string", "label": "Reason", "description": "Reason for stopping workflow"}},
)
async def stop_workflow(input_data, config, context):
    reason = config.get("reason") or "Workflow stopped"
    context.logger.info(f"Stop requested: {reason}")
    return {"stop": True, "reason": reason, "data": input_data}


@register_node(
    node_type="log-print",
    name="Log / Print",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.UTILITIES,
    description="Writes a message to the execution log and passes input through.",
    icon="Terminal",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "logged", "type": PortType.BOOLEAN},
        {"name": "data", "type": PortType.UNIVERSAL},
    ],
    config_schema={
        "message": {"type": "text", "label": "Message", "description": "Message to log; may reference {{inputData.x}}"},
        "level": {"type": "select", "label": "Level", "default": "info", "options": options(*LOG_LEVELS)},
        "includeInput": {"type": "select", "label": "Include Input", "default": "false",
                         "options": TRUE_FALSE_OPTIONS},
    },
)
async def log_print(input_data, config, context):
    message = config.get("message") or str(input_data)
    if as_bool(config.get("includeInput")):
        message = f"{message} | input={input_data!r}"
    context.logger.log(LOG_LEVELS.get(config.get("level"), logging.INFO), message)
    return {"logged": True, "message": message, "data": input_data}


@register_node(
    node_type="comment-note",
    name="Comment / Note",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.UTILITIES,
    description="A note on the canvas. Passes input through unchanged.",
    icon="StickyNote",
    inputs=DATA_INPUT,
    outputs=[{"name": "data", "type": PortType.UNIVERSAL}],
    config_schema={"comment": {"type": "text", "label": "Comment", "description": "Comment or note text",
                               "required": True}},
)
async def comment_note(input_data, config, context):
    return {"data": input_data}


@register_node(
    node_type="download-file",
    name="Download File",
    kind=NodeKind.ACTION,
    category=NodeCategory.UTILITIES,
    description="Downloads a file from a URL.",
    icon="Download",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "content", "type": PortType.FILE, "description": "File content (base64 or text)"},
        {"name": "size", "type": PortType.NUMBER, "description": "Size in bytes"},
        {"name": "mimeType", "type": PortType.TEXT},
        {"name": "filename", "type": PortType.TEXT},
    ],
    config_schema={
        "url": {"type": "url", "label": "URL", "description": "URL of file to download", "required": True},
        "headers": {"type": "json", "label": "Headers", "description": "HTTP headers (JSON object)"},
        "encoding": {"type": "select", "label": "Encoding", "default": "base64",
                     "options": options("base64", "binary", "text")},
        "timeout": {"type": "integer", "label": "Timeout (ms)", "default": 30000},
    },
)
async def download_file(input_data, config, context):
    response = await context.http.send(
        "GET", config["url"], headers=header_map(config.get("headers")), timeout=timeout_seconds(config["timeout"])
    )
    data = response.content
    if config["encoding"] == "base64":
        content = encode_content(data)
    else:
        content = data.decode(response.encoding or "utf-8", errors="replace")

    match = re.search(r'filename="?([^";]+)"?', response.headers.get("content-disposition", ""), re.IGNORECASE)
    filename = match.group(1) if match else config["url"].rstrip("/").rsplit("/", 1)[-1].split("?")[0] or None
    return {
        "content": content,
        "encoding": config["encoding"],
        "size": len(data),
        "mimeType": response.headers.get("content-type", "application/octet-stream"),
        "filename": filename,
    }


@register_node(
    node_type="upload-file",
    name="Upload File",
    kind=NodeKind.ACTION,
    category=NodeCategory.UTILITIES,
    description="Uploads a file to a URL as multipart form data.",
    icon="Upload",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "success", "type": PortType.BOOLEAN},
        {"name": "response", "type": PortType.UNIVERSAL},
    ],
    config_schema={
        "url": {"type": "url", "label": "Upload URL", "required": True},
        "method": {"type": "select", "label": "Method", "default": "POST", "options": options("POST", "PUT")},
        "fileContent": {"type": "text", "label": "File Content", "description": "base64 or text; defaults to input"},
        "fileName": {"type": "string", "label": "File Name", "required": True},
        "fieldName": {"type": "string", "label": "Field Name", "default": "file"},
        "mimeType": {"type": "string", "label": "MIME Type", "default": "application/octet-stream"},
        "headers": {"type": "json", "label": "Headers", "description": "Additional HTTP headers"},
    },
)
async def upload_file(input_data, config, context):
    content = config.get("fileContent")
    if content in (None, ""):
        if isinstance(input_data, Mapping):
            content = input_data.get("content") or input_data.get("fileContent")
        else:
            content = input_data
    if content in (None, ""):
        raise ValueError("No file content: set File Content or connect a node that outputs content")

    headers = header_map(config.get("headers"))
    headers.pop("Content-Type", None)
    files = {config["fieldName"]: (config["fileName"], decode_content(content), config["mimeType"])}

    response = await context.http.request(config["method"], config["url"], files=files, headers=headers)
    return {"success": True, "response": response, "url": config["url"]}


@register_node(
    node_type="wait-for-webhook",
    name="Wait for Webhook",
    kind=NodeKind.ACTION,
    category=NodeCategory.UTILITIES,
    description="Pauses the workflow until a webhook call arrives on the given path.",
    icon="Webhook",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "waiting", "type": PortType.BOOLEAN, "description": "True until the webhook has been received"},
        {"name": "webhookPath", "type": PortType.TEXT},
        {"name": "data", "type": PortType.UNIVERSAL, "description": "Webhook payload once received"},
    ],
    config_schema={
        "timeout": {"type": "integer", "label": "Timeout (seconds)", "description": "Maximum time to wait",
                    "default": 300},
        "webhookPath": {"type": "string", "label": "Webhook Path", "description": "Auto-generated if empty"},
    },
)
async def wait_for_webhook(input_data, config, context):
    """
    The webhook ingress resumes the workflow by re-running this node with the
    received call under input_data["webhook"]. Until then the node reports
    where it is waiting and until when.
    """
    path = config.get("webhookPath") or f"webhook_{uuid.uuid4().hex[:12]}"
    if isinstance(input_data, Mapping) and isinstance(input_data.get("webhook"), Mapping):
        received = input_data["webhook"]
        return {
            "waiting": False,
            "timeout": False,
            "webhookPath": path,
            "data": received.get("body"),
            "headers": received.get("headers") or {},
            "receivedAt": received.get("receivedAt") or to_iso(utc_now()),
        }

    expires_at = utc_now() + timedelta(seconds=int(config["timeout"]))
    context.logger.info(f"Waiting for webhook at path {path} until {to_iso(expires_at)}")
    return {"waiting": True, "timeout": False, "webhookPath": path, "expiresAt": to_iso(expires_at), "data": None}
