"""
Unit Tests for Template Resolution

Tests {{...}} references in node configs.
"""

import re

from autoflow.core.nodes.variables import (
    extract_template_variables,
    get_system_variable,
    get_value,
    is_template,
    resolve_config_templates,
    resolve_template,
)

INPUT = {
    "user": {"name": "Ada", "emails": ["ada@example.com", "ada@work.io"]},
    "count": 3,
    "tags": ["a", "b"],
    "active": True,
}


class TestResolveTemplate:
    """Tests for resolve_template()"""

    def test_input_data_reference(self):
        assert resolve_template("{{inputData.user.name}}", INPUT) == "Ada"

    def test_list_index(self):
        assert resolve_template("{{inputData.user.emails.1}}", INPUT) == "ada@work.io"

    def test_whole_reference_keeps_type(self):
        assert resolve_template("{{inputData.tags}}", INPUT) == ["a", "b"]
        assert resolve_template("{{inputData.count}}", INPUT) == 3

    def test_embedded_references_are_stringified(self):
        assert resolve_template("Hi {{inputData.user.name}} ({{count}})", INPUT) == "Hi Ada (3)"
        assert resolve_template("tags={{tags}} on={{active}}", INPUT) == 'tags=["a", "b"] on=true'

    def test_bare_path_reads_input(self):
        assert resolve_template("{{user.name}}", INPUT) == "Ada"

    def test_previous_outputs(self):
        previous = {"node_1": {"id": "msg-9"}}
        assert resolve_template("{{node_1.id}}", {}, previous) == "msg-9"

    def test_unresolved_reference_left_untouched(self):
        assert resolve_template("{{inputData.missing}}", INPUT) == "{{inputData.missing}}"
        assert resolve_template("x {{nope.y}} z", INPUT) == "x {{nope.y}} z"

    def test_plain_string(self):
        assert resolve_template("no templates", INPUT) == "no templates"

    def test_system_date(self):
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}", resolve_template("{{system.current_date}}", {}))


class TestResolveConfigTemplates:
    """Tests for resolve_config_templates()"""

    def test_nested_structures(self):
        config = {
            "to": "{{inputData.user.emails.0}}",
            "cc": ["{{inputData.user.emails.1}}", "static@example.com"],
            "options": {"count": "{{inputData.count}}", "retries": 2},
        }
        assert resolve_config_templates(config, INPUT) == {
            "to": "ada@example.com",
            "cc": ["ada@work.io", "static@example.com"],
            "options": {"count": 3, "retries": 2},
        }

    def test_original_config_not_mutated(self):
        config = {"to": "{{inputData.user.name}}"}
        resolve_config_templates(config, INPUT)
        assert config == {"to": "{{inputData.user.name}}"}


class TestHelpers:
    """Tests for the lookup helpers"""

    def test_get_value_default(self):
        assert get_value(INPUT, "user.age", default=0) == 0
        assert get_value(INPUT, "user.name") == "Ada"

    def test_unknown_system_variable(self):
        assert get_system_variable("nope") is None

    def test_extract_variables(self):
        assert is_template("{{a}}")
        assert not is_template("plain")
        assert extract_template_variables("{{ a.b }} and {{c}} and {{a.b}}") == ["a.b", "c"]
