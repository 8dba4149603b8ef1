"""tool_schema.py

Explicit representation of MCP tool input schemas.

Tool schemas arrive as arbitrary JSON Schema documents. They are parsed once,
when the session lists its tools, into a small tagged-variant tree
(string / number / boolean / null / object / array / enum / union / any) and
that tree is converted into native ``pydantic`` types used to validate the
arguments a model proposes for a call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

from pydantic import (
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    TypeAdapter,
    ValidationError,
    create_model,
)

from config import logger


# =========================
# Schema nodes
# =========================


@dataclass
class StringNode:
    description: Optional[str] = None
    kind: Literal["string"] = "string"


@dataclass
class NumberNode:
    integer: bool = False
    description: Optional[str] = None
    kind: Literal["number"] = "number"


@dataclass
class BooleanNode:
    description: Optional[str] = None
    kind: Literal["boolean"] = "boolean"


@dataclass
class NullNode:
    description: Optional[str] = None
    kind: Literal["null"] = "null"


@dataclass
class ObjectNode:
    properties: dict[str, "SchemaNode"] = field(default_factory=dict)
    required: list[str] = field(default_factory=list)
    additional_properties: bool = True
    description: Optional[str] = None
    kind: Literal["object"] = "object"


@dataclass
class ArrayNode:
    items: "SchemaNode" = field(default_factory=lambda: AnyNode())
    description: Optional[str] = None
    kind: Literal["array"] = "array"


@dataclass
class EnumNode:
    values: list[Any] = field(default_factory=list)
    description: Optional[str] = None
    kind: Literal["enum"] = "enum"


@dataclass
class UnionNode:
    options: list["SchemaNode"] = field(default_factory=list)
    description: Optional[str] = None
    kind: Literal["union"] = "union"


@dataclass
class AnyNode:
    description: Optional[str] = None
    kind: Literal["any"] = "any"


SchemaNode = Union[
    StringNode, NumberNode, BooleanNode, NullNode, ObjectNode, ArrayNode, EnumNode, UnionNode, AnyNode
]


@dataclass
class SchemaWarning:
    path: str
    message: str


# =========================
# JSON Schema -> nodes
# =========================


def _parse_type(type_name: str, raw: dict, path: str, warnings: list[SchemaWarning]) -> SchemaNode:
    desc = raw.get("description")
    if type_name == "string":
        return StringNode(description=desc)
    if type_name in ("number", "integer"):
        return NumberNode(integer=(type_name == "integer"), description=desc)
    if type_name == "boolean":
        return BooleanNode(description=desc)
    if type_name == "null":
        return NullNode(description=desc)
    if type_name == "array":
        items = raw.get("items")
        item_node = parse_schema(items, f"{path}[]", warnings) if isinstance(items, dict) else AnyNode()
        return ArrayNode(items=item_node, description=desc)
    if type_name == "object":
        props = raw.get("properties") or {}
        return ObjectNode(
            properties={k: parse_schema(v, f"{path}.{k}", warnings) for k, v in props.items()},
            required=[r for r in (raw.get("required") or []) if r in props],
            additional_properties=raw.get("additionalProperties", True) is not False,
            description=desc,
        )
    warnings.append(SchemaWarning(path, f"Unsupported type {type_name!r}; accepting any value"))
    return AnyNode(description=desc)


def parse_schema(
    raw: Any,
    path: str = "root",
    warnings: Optional[list[SchemaWarning]] = None,
) -> SchemaNode:
    """Convert a JSON Schema document into a SchemaNode tree.

    Constructs that have no node kind (``$ref``, ``allOf``, unknown types) become
    ``AnyNode`` and leave a warning behind instead of failing.
    """
    if warnings is None:
        warnings = []
    if not isinstance(raw, dict) or not raw:
        return AnyNode()

    desc = raw.get("description")

    if "enum" in raw and isinstance(raw["enum"], list):
        return EnumNode(values=list(raw["enum"]), description=desc)
    if "const" in raw:
        return EnumNode(values=[raw["const"]], description=desc)

    for key in ("anyOf", "oneOf"):
        if isinstance(raw.get(key), list):
            options = [parse_schema(o, f"{path}|{i}", warnings) for i, o in enumerate(raw[key])]
            return UnionNode(options=options, description=desc)

    if "$ref" in raw or "allOf" in raw:
        warnings.append(SchemaWarning(path, "References and allOf are not resolved; accepting any value"))
        return AnyNode(description=desc)

    type_name = raw.get("type")
    if isinstance(type_name, list):
        options = [_parse_type(t, raw, path, warnings) for t in type_name]
        return options[0] if len(options) == 1 else UnionNode(options=options, description=desc)
    if isinstance(type_name, str):
        return _parse_type(type_name, raw, path, warnings)
    if "properties" in raw:
        return _parse_type("object", raw, path, warnings)
    return AnyNode(description=desc)


# =========================
# Nodes -> pydantic
# =========================


def _is_literal_value(v: Any) -> bool:
    return v is None or isinstance(v, (str, int, float, bool))


def to_pydantic_type(node: SchemaNode, model_name: str = "ToolArguments") -> Any:
    """Return a type usable by pydantic to validate values described by ``node``."""
    if isinstance(node, StringNode):
        return StrictStr
    if isinstance(node, NumberNode):
        return StrictInt if node.integer else Union[StrictInt, StrictFloat]
    if isinstance(node, BooleanNode):
        return StrictBool
    if isinstance(node, NullNode):
        return type(None)
    if isinstance(node, ArrayNode):
        return list[to_pydantic_type(node.items, f"{model_name}Item")]
    if isinstance(node, EnumNode):
        if node.values and all(_is_literal_value(v) for v in node.values):
            return Literal[tuple(node.values)]
        return Any
    if isinstance(node, UnionNode):
        types = [to_pydantic_type(o, f"{model_name}Option{i}") for i, o in enumerate(node.options)]
        if not types:
            return Any
        return types[0] if len(types) == 1 else Union[tuple(types)]
    if isinstance(node, ObjectNode):
        if not node.properties:
            return dict[str, Any]
        fields: dict[str, Any] = {}
        for i, (prop, child) in enumerate(node.properties.items()):
            child_type = to_pydantic_type(child, f"{model_name}_{i}")
            if prop in node.required:
                fields[f"field_{i}"] = (child_type, Field(..., alias=prop, description=child.description))
            else:
                # default is not validated, so an explicit null is still rejected for non-nullable fields
                fields[f"field_{i}"] = (child_type, Field(None, alias=prop, description=child.description))
        config = ConfigDict(extra="allow" if node.additional_properties else "forbid")
        return create_model(model_name, __config__=config, **fields)
    return Any


# =========================
# Tool descriptor
# =========================


def summarize(node: SchemaNode) -> str:
    if isinstance(node, ArrayNode):
        return f"{summarize(node.items)}[]"
    if isinstance(node, ObjectNode):
        keys = list(node.properties)
        if len(keys) > 3:
            return "{" + ", ".join(keys[:3]) + f", ...+{len(keys) - 3}" + "}"
        return "{" + ", ".join(keys) + "}"
    if isinstance(node, UnionNode):
        return " | ".join(summarize(o) for o in node.options)
    if isinstance(node, EnumNode):
        return f"enum[{len(node.values)}]"
    if isinstance(node, NumberNode) and node.integer:
        return "integer"
    return node.kind


@dataclass
class ToolDescriptor:
    name: str
    description: str
    input_schema: dict
    schema: SchemaNode
    warnings: list[SchemaWarning] = field(default_factory=list)
    _adapter: Optional[TypeAdapter] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_json_schema(cls, name: str, description: Optional[str], input_schema: Optional[dict]) -> "ToolDescriptor":
        warnings: list[SchemaWarning] = []
        raw = input_schema or {}
        node = parse_schema(raw, "root", warnings)
        try:
            adapter = TypeAdapter(to_pydantic_type(node, _model_name(name)))
        except Exception as e:
            warnings.append(SchemaWarning("root", f"Failed to build validator: {e}"))
            adapter = TypeAdapter(Any)
        for w in warnings:
            logger.debug("Schema warning for tool %s at %s: %s", name, w.path, w.message)
        return cls(
            name=name,
            description=description or f"Execute {name}",
            input_schema=raw,
            schema=node,
            warnings=warnings,
            _adapter=adapter,
        )

    def validate_arguments(self, args: Any) -> tuple[bool, list[str]]:
        if self._adapter is None:
            return True, []
        try:
            self._adapter.validate_python(args)
            return True, []
        except ValidationError as e:
            msgs = []
            for err in e.errors()[:3]:
                loc = "/".join(str(p) for p in err.get("loc", ()))
                msgs.append(f"{err.get('msg')} (path: {loc})")
            return False, msgs


def _model_name(tool_name: str) -> str:
    cleaned = "".join(ch if ch.isalnum() else "_" for ch in tool_name)
    return f"{cleaned or 'Tool'}Arguments"
