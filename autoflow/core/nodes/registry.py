"""
Node Registry

Read-only catalogue of every node type, built once at process start.

Node modules declare entries with @register_node. The loader imports every
builtin module and NodeRegistry.from_declarations() freezes the result.
There is no runtime add or remove.
"""

import logging
from collections import Counter
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Union

from autoflow.core.nodes.base import NodeDefinition, NodeFunction, build_config_schema, build_ports
from autoflow.exceptions import UnknownNodeError
from autoflow.schemas.workflow import NodeCategory, NodeKind

logger = logging.getLogger(__name__)

# Declarations collected at import time, in declaration order
_DECLARATIONS: List[NodeDefinition] = []


class DuplicateNodeError(ValueError):
    """Two declarations share one node id."""


def register_node(
    node_type: str,
    name: str,
    kind: Union[NodeKind, str],
    category: Union[NodeCategory, str],
    description: str = "",
    icon: Optional[str] = None,
    inputs: Sequence[Any] = (),
    outputs: Sequence[Any] = (),
    config_schema: Optional[Mapping[str, Any]] = None,
    services: Sequence[str] = (),
):
    """
    Decorator to declare a node.

    Example:
        @register_node(
            node_type="log-print",
            name="Log / Print",
            kind=NodeKind.ACTION,
            category=NodeCategory.UTILITIES,
            config_schema={"message": {"type": "text", "label": "Message", "required": True}},
        )
        async def log_print(input_data, config, context):
            ...
    """
    def decorator(fn: NodeFunction) -> NodeFunction:
        definition = NodeDefinition(
            node_type=node_type,
            name=name,
            kind=NodeKind(kind),
            category=NodeCategory(category),
            execute=fn,
            description=description,
            icon=icon,
            inputs=build_ports(inputs),
            outputs=build_ports(outputs),
            config_schema=build_config_schema(config_schema),
            services=tuple(services),
            module=fn.__module__,
        )
        # A reloaded module replaces its own earlier declaration
        _DECLARATIONS[:] = [
            existing for existing in _DECLARATIONS
            if not (existing.node_type == node_type and existing.module == definition.module)
        ]
        _DECLARATIONS.append(definition)
        fn.node_definition = definition
        return fn

    return decorator


def declared_nodes() -> List[NodeDefinition]:
    """Declarations collected so far."""
    return list(_DECLARATIONS)


class NodeRegistry(Mapping[str, NodeDefinition]):
    """
    Immutable mapping of node_type -> NodeDefinition.

    Used by the dispatcher to find the function to run and by the API to
    export the catalogue.
    """

    def __init__(self, definitions: Iterable[NodeDefinition]):
        definitions = list(definitions)
        counts = Counter(definition.node_type for definition in definitions)
        duplicates = sorted(node_type for node_type, count in counts.items() if count > 1)
        if duplicates:
            raise DuplicateNodeError(f"Duplicate node ids: {', '.join(duplicates)}")
        self._nodes: Mapping[str, NodeDefinition] = MappingProxyType(
            {definition.node_type: definition for definition in definitions}
        )

    @classmethod
    def from_declarations(cls, declarations: Optional[Iterable[NodeDefinition]] = None) -> "NodeRegistry":
        """
        Freeze the collected @register_node declarations.

        Raises:
            DuplicateNodeError: If two declarations share an id
        """
        registry = cls(declarations if declarations is not None else _DECLARATIONS)
        logger.info(f"✅ Node registry built with {len(registry)} node types")
        return registry

    @property
    def nodes(self) -> Mapping[str, NodeDefinition]:
        return self._nodes

    def get(self, node_type: str, default: Optional[NodeDefinition] = None) -> Optional[NodeDefinition]:
        """
        Get node definition by type.

        Returns:
            NodeDefinition or None if not found
        """
        return self._nodes.get(node_type, default)

    def require(self, node_type: str) -> NodeDefinition:
        """Get node definition or raise UnknownNodeError."""
        definition = self._nodes.get(node_type)
        if definition is None:
            raise UnknownNodeError(node_type)
        return definition

    def is_registered(self, node_type: str) -> bool:
        return node_type in self._nodes

    def list_types(self) -> List[str]:
        """List all registered node types"""
        return list(self._nodes.keys())

    def list_by_category(self) -> Dict[str, List[str]]:
        grouped: Dict[str, List[str]] = {}
        for definition in self._nodes.values():
            grouped.setdefault(definition.category.value, []).append(definition.node_type)
        return grouped

    def describe(self, node_type: Optional[str] = None) -> Any:
        """
        Export the catalogue (or one node) with ports and config schema.

        Raises:
            UnknownNodeError: If node_type is given and not registered
        """
        if node_type is not None:
            return self.require(node_type).describe()
        return [definition.describe() for definition in self._nodes.values()]

    def __getitem__(self, node_type: str) -> NodeDefinition:
        return self._nodes[node_type]

    def __contains__(self, node_type: object) -> bool:
        return node_type in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[str]:
        return iter(self._nodes)
