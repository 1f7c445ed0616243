"""
Template Resolution

Resolves `{{...}}` references inside node configurations before validation.

Supported references:
1. Input data     - "{{inputData.user.email}}" (nested dot paths, list indexes)
2. Prior outputs  - "{{node_1.id}}" when previous node outputs are supplied
3. Bare paths     - "{{user.email}}" read from input data
4. System values  - "{{system.current_date}}"

A string that is exactly one reference keeps the referenced value's type
(a list stays a list). Inside larger strings, objects are JSON-encoded.
Unresolvable references are left untouched.
"""

import json
import logging
import re
from typing import Any, Mapping, Optional

from autoflow.utils.timezone import utc_now

logger = logging.getLogger(__name__)

TEMPLATE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
_MISSING = object()


def get_system_variable(var_name: str) -> Optional[str]:
    """
    Get value for system variables.

    Args:
        var_name: System variable name (e.g., 'current_date', 'current_time')

    Returns:
        Value of the system variable or None if not found
    """
    now = utc_now()

    system_vars = {
        "current_date": now.strftime("%Y-%m-%d"),
        "current_time": now.strftime("%H:%M:%S"),
        "current_datetime": now.strftime("%Y-%m-%d %H:%M:%S"),
        "iso_now": now.isoformat(),
        "timestamp": str(int(now.timestamp())),
        "year": str(now.year),
        "month": str(now.month),
        "day": str(now.day),
    }

    return system_vars.get(var_name)


def get_path(data: Any, path: str) -> Any:
    """
    Walk a dot path through dicts and lists.

    Returns _MISSING when any segment is absent.

    Examples:
        >>> get_path({"user": {"emails": ["a@x.io"]}}, "user.emails.0")
        'a@x.io'
    """
    current = data
    for key in path.split("."):
        if key == "":
            continue
        if isinstance(current, Mapping):
            if key not in current:
                return _MISSING
            current = current[key]
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(key)]
            except (ValueError, IndexError):
                return _MISSING
        else:
            return _MISSING
    return current


def get_value(data: Any, path: str, default: Any = None) -> Any:
    """Dot-path lookup returning `default` when absent."""
    value = get_path(data, path)
    return default if value is _MISSING else value


def lookup_reference(
    reference: str,
    input_data: Mapping[str, Any],
    previous_outputs: Optional[Mapping[str, Any]] = None,
) -> Any:
    """Resolve one template reference, or return _MISSING."""
    reference = reference.strip()
    head, _, rest = reference.partition(".")

    if head == "inputData":
        return get_path(input_data, rest)
    if head == "system":
        value = get_system_variable(rest)
        return _MISSING if value is None else value
    if previous_outputs and rest and head in previous_outputs:
        return get_path(previous_outputs[head], rest)
    return get_path(input_data, reference)


def _stringify(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def resolve_template(
    value: str,
    input_data: Mapping[str, Any],
    previous_outputs: Optional[Mapping[str, Any]] = None,
) -> Any:
    """Resolve the references inside one string."""
    if "{{" not in value:
        return value

    whole = TEMPLATE_PATTERN.fullmatch(value.strip())
    if whole:
        resolved = lookup_reference(whole.group(1), input_data, previous_outputs)
        if resolved is _MISSING or resolved is None:
            return value
        return resolved

    def replace(match: "re.Match[str]") -> str:
        resolved = lookup_reference(match.group(1), input_data, previous_outputs)
        if resolved is _MISSING or resolved is None:
            logger.debug(f"Template reference not found: {match.group(0)}")
            return match.group(0)
        return _stringify(resolved)

    return TEMPLATE_PATTERN.sub(replace, value)


def resolve_config_templates(
    config: Any,
    input_data: Optional[Mapping[str, Any]] = None,
    previous_outputs: Optional[Mapping[str, Any]] = None,
) -> Any:
    """Resolve templates in every string of a config (dicts and lists recursively)."""
    input_data = input_data or {}
    if isinstance(config, str):
        return resolve_template(config, input_data, previous_outputs)
    if isinstance(config, Mapping):
        return {key: resolve_config_templates(value, input_data, previous_outputs) for key, value in config.items()}
    if isinstance(config, list):
        return [resolve_config_templates(item, input_data, previous_outputs) for item in config]
    return config


def is_template(value: Any) -> bool:
    """Check if a value contains template syntax."""
    return isinstance(value, str) and "{{" in value and "}}" in value


def extract_template_variables(value: str) -> list:
    """List the distinct references in a string."""
    if not is_template(value):
        return []
    return list(dict.fromkeys(match.strip() for match in TEMPLATE_PATTERN.findall(value)))


__all__ = [
    "extract_template_variables",
    "get_path",
    "get_system_variable",
    "get_value",
    "is_template",
    "lookup_reference",
    "resolve_config_templates",
    "resolve_template",
]
