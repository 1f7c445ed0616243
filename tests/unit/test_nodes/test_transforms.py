"""
Unit Tests for Transform Nodes

Run through the dispatcher so declared defaults apply as in production.
"""

import pytest

ITEMS = [
    {"name": "carol", "age": 35, "team": "b"},
    {"name": "alice", "age": 30, "team": "a"},
    {"name": "bob", "age": 5, "team": "a"},
]


async def run(dispatcher, node_type, config, input_data=None):
    result = await dispatcher.execute(node_type, config, input_data, "user-1")
    assert result.success, result.error
    return result.outputs


class TestArrayNodes:
    """sort-data, group-data, aggregate-data, array-operations"""

    async def test_sort_numbers_descending(self, dispatcher):
        outputs = await run(dispatcher, "sort-data", {"field": "age", "order": "desc"}, ITEMS)
        assert [item["name"] for item in outputs["sorted"]] == ["carol", "alice", "bob"]

    async def test_sort_numbers_numerically(self, dispatcher):
        outputs = await run(dispatcher, "sort-data", {"field": "age"}, ITEMS)
        assert [item["age"] for item in outputs["sorted"]] == [5, 30, 35]

    async def test_sort_reads_items_key(self, dispatcher):
        outputs = await run(dispatcher, "sort-data", {"field": "name"}, {"items": ITEMS})
        assert [item["name"] for item in outputs["sorted"]] == ["alice", "bob", "carol"]

    async def test_group(self, dispatcher):
        outputs = await run(dispatcher, "group-data", {"field": "team"}, ITEMS)
        assert outputs["groups"] == ["b", "a"]
        assert len(outputs["grouped"]["a"]) == 2

    @pytest.mark.parametrize(
        "operation, expected",
        [("sum", 70), ("average", 70 / 3), ("min", 5), ("max", 35), ("count", 3), ("countDistinct", 3)],
    )
    async def test_aggregate(self, dispatcher, operation, expected):
        outputs = await run(dispatcher, "aggregate-data", {"operation": operation, "field": "age"}, ITEMS)
        assert outputs["result"] == pytest.approx(expected)

    async def test_aggregate_needs_field(self, dispatcher):
        result = await dispatcher.execute("aggregate-data", {"operation": "sum"}, ITEMS, "user-1")
        assert result.success is False
        assert "Field is required" in result.error.message

    async def test_array_join_and_unique(self, dispatcher):
        joined = await run(dispatcher, "array-operations", {"operation": "join", "separator": "-"}, ["a", "b"])
        assert joined["result"] == "a-b"
        unique = await run(dispatcher, "array-operations", {"operation": "unique"}, [1, 1, {"a": 1}, {"a": 1}])
        assert unique["result"] == [1, {"a": 1}]

    async def test_array_flatten_depth(self, dispatcher):
        outputs = await run(dispatcher, "array-operations", {"operation": "flatten"}, [1, [2, [3]]])
        assert outputs["result"] == [1, 2, [3]]


class TestMathNode:
    """math-operations"""

    @pytest.mark.parametrize(
        "operation, value1, value2, expected",
        [
            ("add", 2, 3, 5),
            ("divide", 7, 2, 3.5),
            ("power", 2, 10, 1024),
            ("sqrt", 16, None, 4),
            ("abs", -4.5, None, 4.5),
        ],
    )
    async def test_operations(self, dispatcher, operation, value1, value2, expected):
        config = {"operation": operation, "value1": value1, "value2": value2}
        outputs = await run(dispatcher, "math-operations", config)
        assert outputs["result"] == expected

    async def test_round_uses_default_precision(self, dispatcher):
        outputs = await run(dispatcher, "math-operations", {"operation": "round", "value1": 3.14159})
        assert outputs["result"] == 3.14

    async def test_reads_previous_value(self, dispatcher):
        outputs = await run(dispatcher, "math-operations", {"operation": "multiply", "value2": 2}, {"value": 21})
        assert outputs["result"] == 42

    async def test_division_by_zero_fails(self, dispatcher):
        result = await dispatcher.execute("math-operations", {"operation": "divide", "value1": 1, "value2": 0},
                                          {}, "user-1")
        assert result.success is False
        assert result.error.code == "PROVIDER_ERROR"
        assert result.error.message == "Division by zero"


class TestTextNodes:
    """string-operations, find-replace-text, encode-decode"""

    @pytest.mark.parametrize(
        "operation, expected",
        [
            ("uppercase", "HELLO WORLD"),
            ("camelCase", "helloWorld"),
            ("snakeCase", "hello_world"),
            ("kebabCase", "hello-world"),
            ("reverse", "dlrow olleh"),
            ("length", 11),
        ],
    )
    async def test_string_operations(self, dispatcher, operation, expected):
        outputs = await run(dispatcher, "string-operations", {"operation": operation, "text": "hello world"})
        assert outputs["result"] == expected

    async def test_pad_start(self, dispatcher):
        config = {"operation": "padStart", "text": "7", "length": 3, "padString": "0"}
        assert (await run(dispatcher, "string-operations", config))["result"] == "007"

    async def test_string_from_input(self, dispatcher):
        outputs = await run(dispatcher, "string-operations", {"operation": "trim"}, {"text": "  padded  "})
        assert outputs["result"] == "padded"

    async def test_find_replace_is_case_insensitive_by_default(self, dispatcher):
        config = {"text": "Cat cat CAT", "find": "cat", "replace": "dog"}
        outputs = await run(dispatcher, "find-replace-text", config)
        assert outputs["result"] == "dog dog dog"
        assert outputs["replacements"] == 3

    async def test_find_replace_regex(self, dispatcher):
        config = {"text": "a1b22c333", "find": r"\d+", "replace": "#", "useRegex": "true"}
        assert (await run(dispatcher, "find-replace-text", config))["result"] == "a#b#c#"

    async def test_invalid_regex_fails(self, dispatcher):
        config = {"text": "x", "find": "(", "useRegex": "true"}
        result = await dispatcher.execute("find-replace-text", config, {}, "user-1")
        assert result.success is False
        assert "Invalid regular expression" in result.error.message

    @pytest.mark.parametrize(
        "encoding, encoded",
        [("base64", "aGkgdGhlcmU="), ("url", "hi%20there"), ("hex", "6869207468657265")],
    )
    async def test_encode_decode(self, dispatcher, encoding, encoded):
        outputs = await run(dispatcher, "encode-decode", {"operation": "encode", "encoding": encoding, "text": "hi there"})
        assert outputs["result"] == encoded
        outputs = await run(dispatcher, "encode-decode", {"operation": "decode", "encoding": encoding, "text": encoded})
        assert outputs["result"] == "hi there"


class TestMapNode:
    """map-transform-data"""

    async def test_mapping_paths_and_templates(self, dispatcher):
        config = {"mapping": '{"who": "name", "label": "{{name}} ({{age}})"}', "inputType": "array"}
        outputs = await run(dispatcher, "map-transform-data", config, ITEMS[:1])
        assert outputs["mapped"] == [{"who": "carol", "label": "carol (35)"}]
