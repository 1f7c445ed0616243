"""
Transform Nodes

Pure data manipulation: no credentials, no network. Each node reads its
subject from the config when given, else from the previous node's output.
"""

import base64
import binascii
import calendar
import copy
import html
import json
import math
import random
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping
from urllib.parse import quote, unquote
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from autoflow.core.nodes.builtin._helpers import (
    DATA_INPUT,
    TRUE_FALSE_OPTIONS,
    as_bool,
    list_from,
    object_from,
    options,
    parse_json_field,
    text_from,
)
from autoflow.core.nodes.registry import register_node
from autoflow.core.nodes.variables import TEMPLATE_PATTERN, get_value
from autoflow.schemas.workflow import NodeCategory, NodeKind, PortType
from autoflow.utils.timezone import parse_timestamp, utc_now

ARRAY_INPUT = [{"name": "data", "type": PortType.ARRAY, "description": "Input array from previous node"}]
TEXT_INPUT = [{"name": "data", "type": PortType.TEXT, "description": "Input text from previous node"}]

# YYYY-MM-DD HH:mm:ss style tokens -> strftime
DATE_TOKENS = [
    ("YYYY", "%Y"),
    ("YY", "%y"),
    ("MM", "%m"),
    ("DD", "%d"),
    ("HH", "%H"),
    ("mm", "%M"),
    ("ss", "%S"),
]
DATE_TOKEN_PATTERN = re.compile("|".join(token for token, _ in DATE_TOKENS))


def subject_text(config: Mapping[str, Any], input_data: Any) -> str:
    """Config text, else a string input, else the input as JSON."""
    text = config.get("text")
    if isinstance(text, str) and text:
        return text
    if isinstance(input_data, str):
        return input_data
    return json.dumps(input_data, default=str)


def map_item(item: Any, mapping: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Build one output object from a field mapping.

    A plain path copies the value (keeping its type); a template string
    interpolates every {{path}} as text.
    """
    result = {}
    for output_key, source in mapping.items():
        source = str(source)
        if TEMPLATE_PATTERN.search(source):
            result[output_key] = TEMPLATE_PATTERN.sub(
                lambda match: _as_text(get_value(item, match.group(1).strip())), source
            )
        else:
            result[output_key] = get_value(item, source)
    return result


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def field_value(item: Any, field: str) -> Any:
    if not field:
        return item
    return get_value(item, field)


def to_number(value: Any) -> float:
    """Numeric value of an item field; non-numeric counts as 0."""
    if isinstance(value, bool):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def sort_key(value: Any, data_type: str):
    if data_type == "number":
        return to_number(value)
    if data_type == "date":
        try:
            parsed = parse_timestamp(value)
        except ValueError:
            parsed = None
        return parsed.timestamp() if parsed else float("-inf")
    return "" if value is None else str(value).lower()


def detect_type(values: List[Any]) -> str:
    present = [value for value in values if value is not None]
    if present and all(isinstance(value, (int, float)) and not isinstance(value, bool) for value in present):
        return "number"
    return "string"


def clean_number(value: float) -> Any:
    """3.0 -> 3 so integer arithmetic reads naturally downstream."""
    if isinstance(value, float) and value.is_integer() and abs(value) < 2 ** 53:
        return int(value)
    return value


@register_node(
    node_type="map-transform-data",
    name="Map / Transform Data",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.TRANSFORMS,
    description="Reshapes an object (or each item of an array) using a field mapping.",
    icon="ArrowRightLeft",
    inputs=[{"name": "data", "type": PortType.OBJECT, "description": "Input data from previous node"}],
    outputs=[
        {"name": "mapped", "type": PortType.OBJECT},
        {"name": "original", "type": PortType.OBJECT},
    ],
    config_schema={
        "mapping": {
            "type": "json",
            "label": "Field Mapping",
            "description": 'e.g. {"newField": "oldField", "fullName": "{{firstName}} {{lastName}}"}',
            "required": True,
        },
        "inputType": {"type": "select", "label": "Input Type", "default": "object", "options": options("object", "array")},
    },
)
async def map_transform_data(input_data, config, context):
    mapping = parse_json_field(config["mapping"], "mapping")
    if not isinstance(mapping, Mapping):
        raise ValueError("Mapping must be a JSON object")

    if config["inputType"] == "array":
        items = list_from(None, input_data)
        return {"mapped": [map_item(item, mapping) for item in items], "original": items}
    return {"mapped": map_item(input_data, mapping), "original": input_data}


@register_node(
    node_type="sort-data",
    name="Sort Data",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.TRANSFORMS,
    description="Sorts an array by a field in ascending or descending order.",
    icon="ArrowUpDown",
    inputs=ARRAY_INPUT,
    outputs=[
        {"name": "sorted", "type": PortType.ARRAY},
        {"name": "original", "type": PortType.ARRAY},
    ],
    config_schema={
        "field": {"type": "string", "label": "Field", "description": "Leave empty to sort an array of plain values"},
        "order": {"type": "select", "label": "Order", "default": "asc", "options": options("asc", "desc")},
        "dataType": {"type": "select", "label": "Data Type", "default": "auto",
                     "options": options("auto", "string", "number", "date")},
    },
)
async def sort_data(input_data, config, context):
    items = list_from(None, input_data)
    field = config.get("field") or ""
    data_type = config["dataType"]
    if data_type == "auto":
        data_type = detect_type([field_value(item, field) for item in items])

    ordered = sorted(
        items,
        key=lambda item: sort_key(field_value(item, field), data_type),
        reverse=config["order"] == "desc",
    )
    return {"sorted": ordered, "original": items}


@register_node(
    node_type="group-data",
    name="Group Data",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.TRANSFORMS,
    description="Groups array items by the value of a field.",
    icon="Layers",
    inputs=ARRAY_INPUT,
    outputs=[
        {"name": "grouped", "type": PortType.OBJECT},
        {"name": "groups", "type": PortType.ARRAY},
        {"name": "count", "type": PortType.NUMBER},
    ],
    config_schema={"field": {"type": "string", "label": "Group By Field", "required": True}},
)
async def group_data(input_data, config, context):
    grouped: Dict[str, List[Any]] = {}
    for item in list_from(None, input_data):
        key = field_value(item, config["field"])
        grouped.setdefault("" if key is None else str(key), []).append(item)
    return {"grouped": grouped, "groups": list(grouped), "count": len(grouped)}


@register_node(
    node_type="aggregate-data",
    name="Aggregate Data",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.TRANSFORMS,
    description="Sum, average, count, min, max or count-distinct over an array.",
    icon="Sigma",
    inputs=ARRAY_INPUT,
    outputs=[
        {"name": "result", "type": PortType.NUMBER},
        {"name": "operation", "type": PortType.TEXT},
        {"name": "count", "type": PortType.NUMBER},
    ],
    config_schema={
        "operation": {"type": "select", "label": "Operation", "required": True,
                      "options": options("sum", "average", "count", "min", "max", "countDistinct")},
        "field": {"type": "string", "label": "Field", "description": "Leave empty for count"},
    },
)
async def aggregate_data(input_data, config, context):
    items = list_from(None, input_data)
    operation = config["operation"]
    field = config.get("field")

    if operation == "count":
        result: Any = len(items)
    else:
        if not field:
            raise ValueError(f"Field is required for {operation} operation")
        values = [field_value(item, field) for item in items]
        if operation == "countDistinct":
            result = len({json.dumps(value, sort_keys=True, default=str) for value in values})
        else:
            numbers = [to_number(value) for value in values]
            if operation == "sum":
                result = sum(numbers)
            elif operation == "average":
                result = sum(numbers) / len(numbers) if numbers else 0
            elif operation == "min":
                result = min(numbers) if numbers else None
            elif operation == "max":
                result = max(numbers) if numbers else None
            else:
                raise ValueError(f"Unknown aggregation operation: {operation}")
            if result is not None:
                result = clean_number(result)

    return {"result": result, "operation": operation, "count": len(items)}


@register_node(
    node_type="find-replace-text",
    name="Find and Replace Text",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.TRANSFORMS,
    description="Replaces plain-text or regex matches in a string.",
    icon="Replace",
    inputs=TEXT_INPUT,
    outputs=[
        {"name": "result", "type": PortType.TEXT},
        {"name": "replacements", "type": PortType.NUMBER},
        {"name": "original", "type": PortType.TEXT},
    ],
    config_schema={
        "text": {"type": "text", "label": "Text", "description": "Leave empty to use input from previous node"},
        "find": {"type": "string", "label": "Find", "description": "Text or regex pattern", "required": True},
        "replace": {"type": "string", "label": "Replace", "description": "Replacement text (may be empty)"},
        "useRegex": {"type": "select", "label": "Use Regex", "default": "false", "options": TRUE_FALSE_OPTIONS},
        "caseSensitive": {"type": "select", "label": "Case Sensitive", "default": "false", "options": TRUE_FALSE_OPTIONS},
    },
)
async def find_replace_text(input_data, config, context):
    text = subject_text(config, input_data)
    find = config["find"]
    replacement = config.get("replace") or ""
    pattern = find if as_bool(config["useRegex"]) else re.escape(find)
    flags = 0 if as_bool(config["caseSensitive"]) else re.IGNORECASE

    try:
        compiled = re.compile(pattern, flags)
    except re.error as e:
        raise ValueError(f"Invalid regular expression: {e}")

    # Literal replacement: backslashes in the replacement are not group references
    result, count = compiled.subn(lambda match: replacement, text)
    return {"result": result, "replacements": count, "original": text}


def encode_text(text: str, encoding: str) -> str:
    if encoding == "base64":
        return base64.b64encode(text.encode("utf-8")).decode("ascii")
    if encoding == "url":
        return quote(text, safe="")
    if encoding == "html":
        return html.escape(text, quote=True)
    if encoding == "hex":
        return text.encode("utf-8").hex()
    raise ValueError(f"Unknown encoding type: {encoding}")


def decode_text(text: str, encoding: str) -> str:
    try:
        if encoding == "base64":
            return base64.b64decode(text, validate=True).decode("utf-8")
        if encoding == "url":
            return unquote(text)
        if encoding == "html":
            return html.unescape(text)
        if encoding == "hex":
            return bytes.fromhex(text).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError(f"Input is not valid {encoding}: {e}")
    raise ValueError(f"Unknown encoding type: {encoding}")


@register_node(
    node_type="encode-decode",
    name="Encode / Decode",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.TRANSFORMS,
    description="Base64, URL, HTML-entity or hex encoding and decoding.",
    icon="Code",
    inputs=TEXT_INPUT,
    outputs=[
        {"name": "result", "type": PortType.TEXT},
        {"name": "original", "type": PortType.TEXT},
    ],
    config_schema={
        "operation": {"type": "select", "label": "Operation", "required": True, "options": options("encode", "decode")},
        "encoding": {"type": "select", "label": "Encoding Type", "required": True,
                     "options": options("base64", "url", "html", "hex")},
        "text": {"type": "text", "label": "Text", "description": "Leave empty to use input from previous node"},
    },
)
async def encode_decode(input_data, config, context):
    text = subject_text(config, input_data)
    if config["operation"] == "encode":
        result = encode_text(text, config["encoding"])
    elif config["operation"] == "decode":
        result = decode_text(text, config["encoding"])
    else:
        raise ValueError(f"Unknown operation: {config['operation']}")
    return {"result": result, "original": text}


def shift_months(moment: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping to the last day of the month."""
    index = moment.month - 1 + months
    year, month = moment.year + index // 12, index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def shift(moment: datetime, amount: float, unit: str) -> datetime:
    if unit in ("months", "years"):
        months = int(amount) * (12 if unit == "years" else 1)
        return shift_months(moment, months)
    if unit not in ("milliseconds", "seconds", "minutes", "hours", "days", "weeks"):
        raise ValueError(f"Unknown time unit: {unit}")
    return moment + timedelta(**{unit: amount})


def format_date(moment: datetime, pattern: str) -> str:
    tokens = dict(DATE_TOKENS)
    return moment.strftime(DATE_TOKEN_PATTERN.sub(lambda match: tokens[match.group(0)], pattern))


def extract_part(moment: datetime, part: str) -> Any:
    if part == "dayOfWeek":
        # Sunday = 0
        return (moment.weekday() + 1) % 7
    if part == "timestamp":
        return int(moment.timestamp() * 1000)
    if part in ("year", "month", "day", "hour", "minute", "second"):
        return getattr(moment, part)
    raise ValueError(f"Unknown extract part: {part}")


@register_node(
    node_type="date-time-manipulation",
    name="Date / Time Manipulation",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.TRANSFORMS,
    description="Formats, parses, shifts, extracts from and converts dates.",
    icon="Calendar",
    inputs=TEXT_INPUT,
    outputs=[
        {"name": "result", "type": PortType.UNIVERSAL},
        {"name": "original", "type": PortType.TEXT},
    ],
    config_schema={
        "operation": {"type": "select", "label": "Operation", "required": True,
                      "options": options("format", "parse", "add", "subtract", "extract", "convertTimezone", "now")},
        "inputDate": {"type": "string", "label": "Input Date", "description": "ISO date (defaults to previous output)"},
        "format": {"type": "string", "label": "Format", "description": 'e.g. "YYYY-MM-DD HH:mm:ss"'},
        "amount": {"type": "number", "label": "Amount"},
        "unit": {"type": "select", "label": "Unit",
                 "options": options("milliseconds", "seconds", "minutes", "hours", "days", "weeks", "months", "years")},
        "extractPart": {"type": "select", "label": "Extract Part",
                        "options": options("year", "month", "day", "hour", "minute", "second", "dayOfWeek", "timestamp")},
        "timezone": {"type": "string", "label": "Timezone", "description": 'e.g. "America/New_York"'},
    },
)
async def date_time_manipulation(input_data, config, context):
    operation = config["operation"]
    if operation == "now":
        moment = utc_now()
    else:
        raw = config.get("inputDate") or text_from(None, input_data, "date", "datetime", "timestamp")
        try:
            moment = parse_timestamp(raw) if raw else utc_now()
        except ValueError:
            raise ValueError(f"Invalid date input: {raw}")

    if operation in ("now", "parse"):
        result: Any = moment.isoformat()
    elif operation == "format":
        result = format_date(moment, config["format"]) if config.get("format") else moment.isoformat()
    elif operation in ("add", "subtract"):
        if not config.get("amount") or not config.get("unit"):
            raise ValueError(f"Amount and unit are required for {operation} operation")
        amount = float(config["amount"])
        moment = shift(moment, amount if operation == "add" else -amount, config["unit"])
        result = moment.isoformat()
    elif operation == "extract":
        if not config.get("extractPart"):
            raise ValueError("Extract part is required")
        result = extract_part(moment, config["extractPart"])
    elif operation == "convertTimezone":
        if not config.get("timezone"):
            raise ValueError("Timezone is required for convertTimezone operation")
        try:
            zone = ZoneInfo(config["timezone"])
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {config['timezone']}")
        result = moment.astimezone(zone).isoformat()
    else:
        raise ValueError(f"Unknown date operation: {operation}")

    return {"result": result, "original": moment.isoformat()}


@register_node(
    node_type="math-operations",
    name="Math Operations",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.TRANSFORMS,
    description="Arithmetic and rounding on numeric values.",
    icon="Calculator",
    inputs=[{"name": "data", "type": PortType.NUMBER, "description": "Input number from previous node"}],
    outputs=[
        {"name": "result", "type": PortType.NUMBER},
        {"name": "operation", "type": PortType.TEXT},
    ],
    config_schema={
        "operation": {"type": "select", "label": "Operation", "required": True,
                      "options": options("add", "subtract", "multiply", "divide", "modulo", "power",
                                         "round", "floor", "ceil", "abs", "sqrt")},
        "value1": {"type": "number", "label": "Value 1", "description": "Leave empty to use input from previous node"},
        "value2": {"type": "number", "label": "Value 2", "description": "Second value for binary operations"},
        "precision": {"type": "integer", "label": "Precision", "description": "Decimal places for round", "default": 2},
    },
)
async def math_operations(input_data, config, context):
    if config.get("value1") not in (None, ""):
        first_value = config["value1"]
    elif isinstance(input_data, Mapping):
        first_value = input_data.get("value", input_data.get("result", 0))
    else:
        first_value = input_data
    try:
        a = float(first_value)
        b = float(config["value2"]) if config.get("value2") not in (None, "") else 0.0
    except (TypeError, ValueError):
        raise ValueError("Math operations need numeric values")

    operation = config["operation"]
    if operation == "add":
        result = a + b
    elif operation == "subtract":
        result = a - b
    elif operation == "multiply":
        result = a * b
    elif operation == "divide":
        if b == 0:
            raise ValueError("Division by zero")
        result = a / b
    elif operation == "modulo":
        if b == 0:
            raise ValueError("Division by zero")
        result = math.fmod(a, b)
    elif operation == "power":
        result = a ** b
    elif operation == "round":
        result = round(a, int(config["precision"]))
    elif operation == "floor":
        result = math.floor(a)
    elif operation == "ceil":
        result = math.ceil(a)
    elif operation == "abs":
        result = abs(a)
    elif operation == "sqrt":
        if a < 0:
            raise ValueError("Square root of negative number")
        result = math.sqrt(a)
    else:
        raise ValueError(f"Unknown math operation: {operation}")

    return {"result": clean_number(result), "operation": operation}


def words(text: str) -> List[str]:
    """Split on whitespace, punctuation and camelCase boundaries."""
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", text)
    return [word for word in re.split(r"[^A-Za-z0-9]+", spaced) if word]


@register_node(
    node_type="string-operations",
    name="String Operations",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.TRANSFORMS,
    description="Case changes, trimming, padding, substrings and more.",
    icon="Type",
    inputs=TEXT_INPUT,
    outputs=[
        {"name": "result", "type": PortType.TEXT},
        {"name": "original", "type": PortType.TEXT},
    ],
    config_schema={
        "operation": {"type": "select", "label": "Operation", "required": True,
                      "options": options("uppercase", "lowercase", "trim", "substring", "length", "padStart",
                                         "padEnd", "reverse", "capitalize", "camelCase", "snakeCase", "kebabCase")},
        "text": {"type": "text", "label": "Text", "description": "Leave empty to use input from previous node"},
        "start": {"type": "integer", "label": "Start Index"},
        "end": {"type": "integer", "label": "End Index"},
        "length": {"type": "integer", "label": "Length", "description": "Target length for pad operations"},
        "padString": {"type": "string", "label": "Pad String", "default": " "},
    },
)
async def string_operations(input_data, config, context):
    text = config.get("text") or text_from(None, input_data)
    operation = config["operation"]
    pad = config.get("padString") or " "
    width = int(config.get("length") or 0)

    if operation == "uppercase":
        result: Any = text.upper()
    elif operation == "lowercase":
        result = text.lower()
    elif operation == "trim":
        result = text.strip()
    elif operation == "substring":
        start = int(config.get("start") or 0)
        end = config.get("end")
        result = text[start:int(end)] if end not in (None, "") else text[start:]
    elif operation == "length":
        result = len(text)
    elif operation in ("padStart", "padEnd"):
        fill = (pad * width)[: max(0, width - len(text))]
        result = fill + text if operation == "padStart" else text + fill
    elif operation == "reverse":
        result = text[::-1]
    elif operation == "capitalize":
        result = text[:1].upper() + text[1:].lower()
    elif operation == "camelCase":
        parts = words(text)
        result = "".join([parts[0].lower()] + [part.capitalize() for part in parts[1:]]) if parts else ""
    elif operation == "snakeCase":
        result = "_".join(word.lower() for word in words(text))
    elif operation == "kebabCase":
        result = "-".join(word.lower() for word in words(text))
    else:
        raise ValueError(f"Unknown string operation: {operation}")

    return {"result": result, "original": text}


def flatten(items: List[Any], depth: int) -> List[Any]:
    flat: List[Any] = []
    for item in items:
        if isinstance(item, list) and depth > 0:
            flat.extend(flatten(item, depth - 1))
        else:
            flat.append(item)
    return flat


@register_node(
    node_type="array-operations",
    name="Array Operations",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.TRANSFORMS,
    description="Join, slice, reverse, dedupe, flatten and combine arrays.",
    icon="List",
    inputs=ARRAY_INPUT,
    outputs=[
        {"name": "result", "type": PortType.UNIVERSAL},
        {"name": "original", "type": PortType.ARRAY},
        {"name": "length", "type": PortType.NUMBER},
    ],
    config_schema={
        "operation": {"type": "select", "label": "Operation", "required": True,
                      "options": options("join", "slice", "reverse", "unique", "flatten", "shuffle",
                                         "length", "first", "last", "concat")},
        "array": {"type": "array", "label": "Array", "description": "Leave empty to use input from previous node"},
        "separator": {"type": "string", "label": "Separator", "default": ","},
        "start": {"type": "integer", "label": "Start Index"},
        "end": {"type": "integer", "label": "End Index"},
        "depth": {"type": "integer", "label": "Depth", "default": 1},
        "array2": {"type": "array", "label": "Second Array", "description": "For concat"},
    },
)
async def array_operations(input_data, config, context):
    if config.get("array") not in (None, ""):
        items = list_from(config["array"], None, "Array")
    elif isinstance(input_data, list):
        items = input_data
    else:
        try:
            items = list_from(None, input_data)
        except ValueError:
            items = [input_data]
    operation = config["operation"]

    if operation == "join":
        result: Any = str(config["separator"]).join(_as_text(item) for item in items)
    elif operation == "slice":
        start = int(config.get("start") or 0)
        end = config.get("end")
        result = items[start:int(end)] if end not in (None, "") else items[start:]
    elif operation == "reverse":
        result = list(reversed(items))
    elif operation == "unique":
        seen = set()
        result = []
        for item in items:
            marker = json.dumps(item, sort_keys=True, default=str)
            if marker not in seen:
                seen.add(marker)
                result.append(item)
    elif operation == "flatten":
        result = flatten(items, int(config["depth"]))
    elif operation == "shuffle":
        result = random.sample(items, len(items))
    elif operation == "length":
        result = len(items)
    elif operation == "first":
        result = items[0] if items else None
    elif operation == "last":
        result = items[-1] if items else None
    elif operation == "concat":
        if config.get("array2") in (None, ""):
            raise ValueError("Second array is required for concat operation")
        result = items + list_from(config["array2"], None, "Second array")
    else:
        raise ValueError(f"Unknown array operation: {operation}")

    return {
        "result": result,
        "original": items,
        "length": len(result) if isinstance(result, list) else (result if operation == "length" else None),
    }


def set_path(target: Dict[str, Any], path: str, value: Any) -> None:
    keys = [key for key in path.split(".") if key]
    if not keys:
        raise ValueError("Path is required for set operation")
    current = target
    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[keys[-1]] = value


@register_node(
    node_type="object-operations",
    name="Object Operations",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.TRANSFORMS,
    description="Keys, values, pick, omit and nested get/set on objects.",
    icon="Box",
    inputs=[{"name": "data", "type": PortType.OBJECT, "description": "Input object from previous node"}],
    outputs=[
        {"name": "result", "type": PortType.UNIVERSAL},
        {"name": "original", "type": PortType.OBJECT},
    ],
    config_schema={
        "operation": {"type": "select", "label": "Operation", "required": True,
                      "options": options("keys", "values", "entries", "pick", "omit", "get", "set", "has")},
        "object": {"type": "json", "label": "Object", "description": "Leave empty to use input from previous node"},
        "fields": {"type": "array", "label": "Fields", "description": 'For pick/omit, e.g. ["name", "email"]'},
        "path": {"type": "string", "label": "Path", "description": 'Dot path for get/set, e.g. "user.profile.name"'},
        "value": {"type": "string", "label": "Value", "description": "Value to set"},
        "property": {"type": "string", "label": "Property", "description": "Property name for has"},
    },
)
async def object_operations(input_data, config, context):
    source = config.get("object")
    if source in (None, ""):
        source = input_data if isinstance(input_data, Mapping) else {}
    obj = object_from(source, None, "Object")
    operation = config["operation"]

    if operation == "keys":
        result: Any = list(obj)
    elif operation == "values":
        result = list(obj.values())
    elif operation == "entries":
        result = [[key, value] for key, value in obj.items()]
    elif operation in ("pick", "omit"):
        if config.get("fields") in (None, ""):
            raise ValueError(f"Fields are required for {operation} operation")
        fields = set(list_from(config["fields"], None, "Fields"))
        if operation == "pick":
            result = {key: value for key, value in obj.items() if key in fields}
        else:
            result = {key: value for key, value in obj.items() if key not in fields}
    elif operation == "get":
        if not config.get("path"):
            raise ValueError("Path is required for get operation")
        result = get_value(obj, config["path"])
    elif operation == "set":
        if not config.get("path") or config.get("value") is None:
            raise ValueError("Path and value are required for set operation")
        result = copy.deepcopy(obj)
        set_path(result, config["path"], config["value"])
    elif operation == "has":
        if not config.get("property"):
            raise ValueError("Property is required for has operation")
        result = config["property"] in obj
    else:
        raise ValueError(f"Unknown object operation: {operation}")

    return {"result": result, "original": obj}
