import pytest

from tool_schema import (
    AnyNode,
    ArrayNode,
    EnumNode,
    NumberNode,
    ObjectNode,
    StringNode,
    ToolDescriptor,
    UnionNode,
    parse_schema,
    summarize,
)

SEARCH_SCHEMA = {
    "type": "object",
    "properties": {
        "query": {"type": "string", "description": "Search text"},
        "limit": {"type": "integer"},
        "sort": {"enum": ["asc", "desc"]},
        "tags": {"type": "array", "items": {"type": "string"}},
        "filter": {
            "type": "object",
            "properties": {"owner": {"type": "string"}},
            "additionalProperties": False,
        },
    },
    "required": ["query"],
}


def test_parse_object_tree():
    node = parse_schema(SEARCH_SCHEMA)
    assert isinstance(node, ObjectNode)
    assert node.required == ["query"]
    assert isinstance(node.properties["query"], StringNode)
    assert node.properties["query"].description == "Search text"
    assert node.properties["limit"] == NumberNode(integer=True)
    assert isinstance(node.properties["sort"], EnumNode)
    assert isinstance(node.properties["tags"], ArrayNode)
    assert isinstance(node.properties["tags"].items, StringNode)
    assert node.properties["filter"].additional_properties is False


def test_required_keys_without_properties_are_dropped():
    node = parse_schema({"type": "object", "properties": {"a": {"type": "string"}}, "required": ["a", "ghost"]})
    assert node.required == ["a"]


def test_type_list_becomes_union():
    node = parse_schema({"type": ["string", "null"]})
    assert isinstance(node, UnionNode)
    assert [o.kind for o in node.options] == ["string", "null"]


def test_any_of_becomes_union():
    node = parse_schema({"anyOf": [{"type": "string"}, {"type": "number"}]})
    assert isinstance(node, UnionNode)
    assert summarize(node) == "string | number"


def test_ref_becomes_any_with_warning():
    warnings = []
    node = parse_schema({"$ref": "#/$defs/Thing"}, "root", warnings)
    assert isinstance(node, AnyNode)
    assert warnings and warnings[0].path == "root"


def test_properties_without_type_is_object():
    assert isinstance(parse_schema({"properties": {"x": {"type": "string"}}}), ObjectNode)


def test_empty_schema_is_any():
    assert isinstance(parse_schema({}), AnyNode)
    assert isinstance(parse_schema(None), AnyNode)


def test_summarize_object_truncates_keys():
    assert summarize(parse_schema(SEARCH_SCHEMA)) == "{query, limit, sort, ...+2}"


# ---- argument validation


@pytest.fixture
def search_tool() -> ToolDescriptor:
    return ToolDescriptor.from_json_schema("search-docs", "Search documents", SEARCH_SCHEMA)


def test_valid_arguments(search_tool):
    ok, errors = search_tool.validate_arguments(
        {"query": "mcp", "limit": 5, "sort": "asc", "tags": ["a"], "filter": {"owner": "me"}}
    )
    assert (ok, errors) == (True, [])


def test_missing_required_argument(search_tool):
    ok, errors = search_tool.validate_arguments({"limit": 5})
    assert ok is False
    assert "query" in errors[0]


@pytest.mark.parametrize(
    "args",
    [
        {"query": 12},
        {"query": "x", "limit": "5"},
        {"query": "x", "limit": 1.5},
        {"query": "x", "sort": "random"},
        {"query": "x", "tags": "a"},
        {"query": "x", "filter": {"owner": "me", "extra": 1}},
    ],
)
def test_invalid_arguments(search_tool, args):
    ok, errors = search_tool.validate_arguments(args)
    assert ok is False
    assert errors


def test_extra_top_level_keys_allowed_by_default(search_tool):
    ok, _ = search_tool.validate_arguments({"query": "x", "unexpected": True})
    assert ok is True


def test_number_accepts_int_and_float():
    tool = ToolDescriptor.from_json_schema("add", None, {"type": "object", "properties": {"a": {"type": "number"}}})
    assert tool.validate_arguments({"a": 1})[0] is True
    assert tool.validate_arguments({"a": 1.5})[0] is True
    assert tool.validate_arguments({"a": True})[0] is False


def test_error_messages_are_capped_at_three(search_tool):
    ok, errors = search_tool.validate_arguments({"query": 1, "limit": "x", "sort": "y", "tags": "z"})
    assert ok is False
    assert len(errors) == 3


def test_default_description_and_permissive_empty_schema():
    tool = ToolDescriptor.from_json_schema("ping", None, None)
    assert tool.description == "Execute ping"
    assert tool.validate_arguments({"anything": 1}) == (True, [])
