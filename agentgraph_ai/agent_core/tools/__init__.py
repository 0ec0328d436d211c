"""Tool definitions, parameter schemas and the tool registry."""

from .base import Tool, ToolContext, ToolFunction, ToolSource
from .registry import SOURCE_PRIORITY, ToolRegistry
from .schema import (
    ArraySchema,
    BooleanSchema,
    EnumSchema,
    NumberSchema,
    ObjectSchema,
    StringSchema,
    ToolSchema,
    UnionSchema,
    schema_from_json,
    schema_from_model,
)

__all__ = [
    "ArraySchema",
    "BooleanSchema",
    "EnumSchema",
    "NumberSchema",
    "ObjectSchema",
    "SOURCE_PRIORITY",
    "StringSchema",
    "Tool",
    "ToolContext",
    "ToolFunction",
    "ToolRegistry",
    "ToolSchema",
    "ToolSource",
    "UnionSchema",
    "schema_from_json",
    "schema_from_model",
]
