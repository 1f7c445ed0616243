"""
Node Definition

Immutable description of a workflow node plus its execution function.

⚠️ IMPORTANT: All nodes MUST be declared with the @register_node decorator!

Example:
    from autoflow.core.nodes.registry import register_node
    from autoflow.schemas.workflow import NodeCategory, NodeKind, PortType

    @register_node(
        node_type="post-to-slack-channel",
        name="Post to Slack Channel",
        kind=NodeKind.ACTION,
        category=NodeCategory.COMMUNICATION,
        description="Post a message to a Slack channel",
        icon="slack",
        inputs=[{"name": "data", "type": PortType.UNIVERSAL}],
        outputs=[{"name": "ts", "type": PortType.TEXT}],
        config_schema={
            "channel": {"type": "string", "label": "Channel", "required": True},
            "message": {"type": "text", "label": "Message", "required": True},
        },
    )
    async def post_to_slack_channel(input_data, config, context):
        credential = await context.credentials.get("slack")
        ...
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from autoflow.schemas.workflow import ConfigField, NodeCategory, NodeKind, NodePort

# (input_data, config, context) -> result
NodeFunction = Callable[[Any, Dict[str, Any], Any], Awaitable[Any]]


def is_missing(value: Any) -> bool:
    """
    True when a required config value counts as absent.

    None, empty or whitespace-only strings, and empty lists/dicts are absent.
    0 and False are present.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


@dataclass(frozen=True)
class NodeDefinition:
    """
    One entry of the node catalogue.

    The function touches storage only through the context it is given.
    """
    node_type: str
    name: str
    kind: NodeKind
    category: NodeCategory
    execute: NodeFunction = field(compare=False, repr=False)
    description: str = ""
    icon: Optional[str] = None
    inputs: Tuple[NodePort, ...] = ()
    outputs: Tuple[NodePort, ...] = ()
    config_schema: Mapping[str, ConfigField] = field(default_factory=lambda: MappingProxyType({}))
    # Services whose credentials the node may request (for preloading and the UI)
    services: Tuple[str, ...] = ()
    module: str = ""

    @property
    def required_fields(self) -> List[str]:
        return [name for name, field_def in self.config_schema.items() if field_def.required]

    def missing_fields(self, config: Mapping[str, Any]) -> List[str]:
        """Every required field that is absent or empty, in schema order."""
        return [name for name in self.required_fields if is_missing(config.get(name))]

    def apply_defaults(self, config: Mapping[str, Any]) -> Dict[str, Any]:
        """Copy of config with declared defaults filled in for absent fields."""
        resolved = dict(config)
        for name, field_def in self.config_schema.items():
            if field_def.default is not None and resolved.get(name) is None:
                resolved[name] = field_def.default
        return resolved

    def field_labels(self) -> Dict[str, str]:
        return {name: field_def.label for name, field_def in self.config_schema.items()}

    def describe(self) -> Dict[str, Any]:
        """Export for the UI: the same schema objects the validator uses."""
        return {
            "node_type": self.node_type,
            "display_name": self.name,
            "kind": self.kind.value,
            "category": self.category.value,
            "description": self.description,
            "icon": self.icon,
            "input_ports": [port.model_dump(mode="json") for port in self.inputs],
            "output_ports": [port.model_dump(mode="json") for port in self.outputs],
            "config_schema": {name: field_def.to_schema() for name, field_def in self.config_schema.items()},
            "services": list(self.services),
        }


def build_ports(ports: Any) -> Tuple[NodePort, ...]:
    """Convert port definitions (dicts or NodePort) to NodePort objects"""
    return tuple(NodePort(**port) if isinstance(port, dict) else port for port in ports or ())


def build_config_schema(schema: Optional[Mapping[str, Any]]) -> Mapping[str, ConfigField]:
    """Convert a {field: dict|ConfigField} mapping to a read-only mapping of ConfigField."""
    fields = {
        name: ConfigField(**field_def) if isinstance(field_def, dict) else field_def
        for name, field_def in (schema or {}).items()
    }
    return MappingProxyType(fields)
