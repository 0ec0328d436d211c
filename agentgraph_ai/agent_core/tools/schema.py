"""Tagged parameter schemas for tools.

Tool parameters are described with an explicit, closed set of variants
(``string``, ``number``, ``boolean``, ``array``, ``object``, ``enum``,
``union``) discriminated on ``kind``. Each variant renders itself to JSON
Schema for the LLM request.

Third-party schema objects are converted once, at the boundary, by
``schema_from_model`` (pydantic models) or ``schema_from_json`` (plain JSON
Schema dicts). Nothing downstream inspects foreign schema internals.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Type, Union

from pydantic import BaseModel, Field

from ..schemas.base import BaseSchema


class _SchemaBase(BaseSchema):
    description: Optional[str] = None

    def _with_description(self, out: dict[str, Any]) -> dict[str, Any]:
        if self.description:
            out["description"] = self.description
        return out


class StringSchema(_SchemaBase):
    kind: Literal["string"] = "string"
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None

    def to_json_schema(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": "string"}
        if self.min_length is not None:
            out["minLength"] = self.min_length
        if self.max_length is not None:
            out["maxLength"] = self.max_length
        if self.pattern is not None:
            out["pattern"] = self.pattern
        return self._with_description(out)


class NumberSchema(_SchemaBase):
    kind: Literal["number"] = "number"
    integer: bool = False
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def to_json_schema(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": "integer" if self.integer else "number"}
        if self.minimum is not None:
            out["minimum"] = self.minimum
        if self.maximum is not None:
            out["maximum"] = self.maximum
        return self._with_description(out)


class BooleanSchema(_SchemaBase):
    kind: Literal["boolean"] = "boolean"

    def to_json_schema(self) -> dict[str, Any]:
        return self._with_description({"type": "boolean"})


class EnumSchema(_SchemaBase):
    kind: Literal["enum"] = "enum"
    values: list[Union[str, int, float, bool]]

    def to_json_schema(self) -> dict[str, Any]:
        out: dict[str, Any] = {"enum": list(self.values)}
        if self.values and all(isinstance(v, str) for v in self.values):
            out["type"] = "string"
        return self._with_description(out)


class ArraySchema(_SchemaBase):
    kind: Literal["array"] = "array"
    items: "ToolSchema"

    def to_json_schema(self) -> dict[str, Any]:
        return self._with_description({"type": "array", "items": self.items.to_json_schema()})


class ObjectSchema(_SchemaBase):
    kind: Literal["object"] = "object"
    properties: dict[str, "ToolSchema"] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)

    def to_json_schema(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": "object",
            "properties": {name: prop.to_json_schema() for name, prop in self.properties.items()},
        }
        if self.required:
            out["required"] = list(self.required)
        return self._with_description(out)


class UnionSchema(_SchemaBase):
    kind: Literal["union"] = "union"
    variants: list["ToolSchema"]

    def to_json_schema(self) -> dict[str, Any]:
        return self._with_description({"anyOf": [v.to_json_schema() for v in self.variants]})


ToolSchema = Annotated[
    Union[StringSchema, NumberSchema, BooleanSchema, EnumSchema, ArraySchema, ObjectSchema, UnionSchema],
    Field(discriminator="kind"),
]

ArraySchema.model_rebuild()
ObjectSchema.model_rebuild()
UnionSchema.model_rebuild()


def _resolve_ref(node: dict[str, Any], defs: dict[str, Any]) -> dict[str, Any]:
    ref = node.get("$ref")
    if not ref:
        return node
    name = ref.rsplit("/", 1)[-1]
    if name not in defs:
        raise ValueError(f"unresolvable schema reference: {ref}")
    merged = dict(defs[name])
    if "description" in node:
        merged["description"] = node["description"]
    return merged


def schema_from_json(node: dict[str, Any], defs: Optional[dict[str, Any]] = None) -> Any:
    """Convert a JSON Schema dict into the tagged variant set.

    Supports ``$ref`` into ``$defs``, ``enum``, ``anyOf``/``oneOf``, ``type``
    lists and the primitive types. Anything else raises ``ValueError``.
    """
    defs = defs if defs is not None else dict(node.get("$defs") or {})
    node = _resolve_ref(node, defs)
    description = node.get("description")

    if "enum" in node:
        return EnumSchema(values=list(node["enum"]), description=description)
    for key in ("anyOf", "oneOf"):
        if key in node:
            return UnionSchema(variants=[schema_from_json(v, defs) for v in node[key]], description=description)

    typ = node.get("type")
    if isinstance(typ, list):
        return UnionSchema(
            variants=[schema_from_json({**node, "type": t, "description": None}, defs) for t in typ],
            description=description,
        )
    if typ == "string":
        return StringSchema(
            description=description,
            min_length=node.get("minLength"),
            max_length=node.get("maxLength"),
            pattern=node.get("pattern"),
        )
    if typ in ("number", "integer"):
        return NumberSchema(
            description=description,
            integer=typ == "integer",
            minimum=node.get("minimum"),
            maximum=node.get("maximum"),
        )
    if typ == "boolean":
        return BooleanSchema(description=description)
    if typ == "null":
        return EnumSchema(values=[], description=description or "null")
    if typ == "array":
        items = node.get("items") or {"type": "string"}
        return ArraySchema(items=schema_from_json(items, defs), description=description)
    if typ == "object" or "properties" in node:
        props = {name: schema_from_json(sub, defs) for name, sub in (node.get("properties") or {}).items()}
        return ObjectSchema(properties=props, required=list(node.get("required") or []), description=description)
    raise ValueError(f"unsupported schema node: {node!r}")


def schema_from_model(model: Type[BaseModel]) -> ObjectSchema:
    """Build the parameter schema of a tool from a pydantic model class."""
    converted = schema_from_json(model.model_json_schema())
    if not isinstance(converted, ObjectSchema):
        raise ValueError(f"{model.__name__} does not describe an object")
    return converted
