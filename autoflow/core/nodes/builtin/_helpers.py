"""
Shared helpers for builtin nodes.

Not a node module: the loader skips underscore-prefixed modules.
"""

import base64
import binascii
import json
from typing import Any, Dict, List, Mapping, Optional

from autoflow.schemas.credential import ResolvedCredential
from autoflow.schemas.workflow import PortType

# The single "data" input every action/transform node accepts
DATA_INPUT = [{"name": "data", "type": PortType.UNIVERSAL, "description": "Input data from previous node"}]

TRUE_FALSE_OPTIONS = [{"value": "true", "label": "Yes"}, {"value": "false", "label": "No"}]


def options(*values: str) -> List[Dict[str, str]]:
    """Select options whose label is the value."""
    return [{"value": value, "label": value} for value in values]


def as_bool(value: Any) -> bool:
    """Select fields carry 'true'/'false' strings."""
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def parse_json_field(value: Any, label: str) -> Any:
    """
    Accept a JSON-encoded string or an already-parsed value.

    Raises:
        ValueError: If a string is not valid JSON
    """
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            return json.loads(value)
        except ValueError as e:
            raise ValueError(f"Invalid {label} JSON: {e}")
    return value


def text_from(config_value: Any, input_data: Any, *keys: str) -> str:
    """
    Text from the config, else from the previous node's output.

    Falls back to the first matching key of a dict input, then to str(input).
    """
    if isinstance(config_value, str) and config_value.strip():
        return config_value
    if config_value not in (None, ""):
        return str(config_value)
    if isinstance(input_data, str):
        return input_data
    if isinstance(input_data, Mapping):
        for key in keys or ("text", "content", "body", "message"):
            value = input_data.get(key)
            if isinstance(value, str) and value:
                return value
        return json.dumps(dict(input_data), default=str) if input_data else ""
    if input_data is None:
        return ""
    return str(input_data)


def list_from(config_value: Any, input_data: Any, label: str = "Input") -> List[Any]:
    """
    Array from the config, else from the previous node's output.

    Dict inputs are searched for an 'items', 'data' or 'rows' list.

    Raises:
        ValueError: If no array can be found
    """
    value = parse_json_field(config_value, label) if config_value not in (None, "") else input_data
    if isinstance(value, list):
        return value
    if isinstance(value, Mapping):
        for key in ("items", "data", "rows", "records", "results"):
            if isinstance(value.get(key), list):
                return value[key]
    raise ValueError(f"{label} must be an array")


def object_from(config_value: Any, input_data: Any, label: str = "Input") -> Dict[str, Any]:
    value = parse_json_field(config_value, label) if config_value not in (None, "") else input_data
    if not isinstance(value, Mapping):
        raise ValueError(f"{label} must be an object")
    return dict(value)


def decode_content(value: Any) -> bytes:
    """Bytes from base64 (or data: URL) content, falling back to UTF-8 text."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if value is None:
        return b""
    text = str(value)
    if text.startswith("data:") and "," in text:
        text = text.split(",", 1)[1]
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        return text.encode("utf-8")


def encode_content(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def auth_headers(credential: ResolvedCredential, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    headers = {"Authorization": credential.authorization_header()}
    headers.update(extra or {})
    return headers


def first(items: List[Any]) -> Any:
    return items[0] if items else None
