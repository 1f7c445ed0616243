"""
Unit Tests for the Node Registry
"""

from collections.abc import Mapping

import pytest

from autoflow.core.nodes.base import NodeDefinition, is_missing
from autoflow.core.nodes.registry import DuplicateNodeError, NodeRegistry, declared_nodes
from autoflow.exceptions import UnknownNodeError
from autoflow.schemas.workflow import NodeCategory, NodeKind


async def noop(input_data, config, context):
    return input_data


def definition(node_type: str, **kwargs) -> NodeDefinition:
    return NodeDefinition(
        node_type=node_type,
        name=node_type.title(),
        kind=NodeKind.ACTION,
        category=NodeCategory.UTILITIES,
        execute=noop,
        **kwargs,
    )


class TestBuiltinCatalogue:
    """The registry built from the builtin node modules"""

    def test_catalogue_size(self, registry):
        assert len(registry) >= 75

    def test_every_category_has_nodes(self, registry):
        grouped = registry.list_by_category()
        assert set(grouped) == {category.value for category in NodeCategory}

    @pytest.mark.parametrize(
        "node_type",
        [
            "send-email-gmail",
            "post-to-slack-channel",
            "send-discord-message",
            "send-sms-via-twilio",
            "generate-summary-with-ai",
            "http-request",
            "read-file",
            "manual-trigger",
            "sort-data",
        ],
    )
    def test_known_nodes_registered(self, registry, node_type):
        assert node_type in registry

    def test_describe_exports_config_schema(self, registry):
        described = registry.describe("post-to-slack-channel")

        assert described["display_name"] == "Post to Slack Channel"
        assert described["kind"] == "action"
        assert described["category"] == "communication"
        assert described["config_schema"]["channel"]["required"] is True
        assert described["services"] == ["slack"]
        assert [port["name"] for port in described["output_ports"]] == ["ts", "channel"]

    def test_describe_all(self, registry):
        described = registry.describe()
        assert len(described) == len(registry)
        assert all("config_schema" in entry for entry in described)

    def test_unknown_node(self, registry):
        assert registry.get("no-such-node") is None
        with pytest.raises(UnknownNodeError):
            registry.require("no-such-node")
        with pytest.raises(UnknownNodeError):
            registry.describe("no-such-node")

    def test_registry_is_read_only(self, registry):
        with pytest.raises(TypeError):
            registry.nodes["injected"] = definition("injected")

    def test_declarations_match_registry(self, registry):
        assert {entry.node_type for entry in declared_nodes()} >= set(registry)


class TestNodeRegistry:
    """Tests for NodeRegistry construction"""

    def test_duplicate_ids_rejected(self):
        with pytest.raises(DuplicateNodeError) as exc_info:
            NodeRegistry([definition("a"), definition("b"), definition("a")])
        assert "a" in str(exc_info.value)

    def test_from_explicit_declarations(self):
        registry = NodeRegistry.from_declarations([definition("a"), definition("b")])
        assert registry.list_types() == ["a", "b"]
        assert registry.is_registered("a")

    def test_registry_is_a_mapping(self):
        registry = NodeRegistry([definition("a"), definition("b")])

        assert isinstance(registry, Mapping)
        assert registry["a"].node_type == "a"
        assert dict(registry.items()).keys() == {"a", "b"}
        with pytest.raises(KeyError):
            registry["missing"]
        with pytest.raises(TypeError):
            registry["c"] = definition("c")


class TestConfigValidation:
    """Tests for required-field checks and defaults"""

    def test_missing_fields_in_schema_order(self, registry):
        node = registry.require("send-email-gmail")
        missing = node.missing_fields({"subject": "x"})
        assert "subject" not in missing
        assert missing[0] == "to"

    def test_apply_defaults_keeps_explicit_values(self, registry):
        node = registry.require("http-request")
        config = node.apply_defaults({"url": "https://example.com", "method": "POST"})
        assert config["method"] == "POST"
        assert config["timeout"] == 30000

    @pytest.mark.parametrize("value", [None, "", "   ", [], {}])
    def test_absent_values(self, value):
        assert is_missing(value) is True

    @pytest.mark.parametrize("value", [0, False, "x", [0], {"a": 1}])
    def test_present_values(self, value):
        assert is_missing(value) is False
