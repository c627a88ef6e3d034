"""Consumers of resource schemas.

Each helper dispatches over every field variant explicitly; adding a new
field kind without teaching these helpers about it raises ``TypeError``
instead of silently producing incomplete output.
"""

from __future__ import annotations

import json
from typing import Any, Mapping

from .models import (
    BaseField,
    ColorField,
    DateField,
    LinkField,
    MediaField,
    MultiLineField,
    MultiSelectField,
    NumericField,
    RepeaterField,
    RichTextField,
    SelectField,
    SingleLineField,
    SliderField,
    ToggleField,
)

_MEDIA_TYPE = "{ url: string; alt?: string; width?: number; height?: number }"

TYPES_HEADER = (
    "// Auto-generated from the block config by blockforge\n"
    "// DO NOT EDIT - This file is automatically regenerated\n"
)


def default_content(schema: Mapping[str, BaseField]) -> dict[str, Any]:
    """Return the initial content implied by field defaults.

    Args:
        schema: Ordered mapping of field keys to definitions.

    Returns:
        dict[str, Any]: Default values keyed by field; repeaters default to ``[]``.
    """
    content: dict[str, Any] = {}
    for key, field in schema.items():
        if field.has_default:
            content[key] = field.default_value
        elif isinstance(field, RepeaterField):
            content[key] = []
        elif isinstance(
            field,
            (
                SingleLineField,
                MultiLineField,
                RichTextField,
                NumericField,
                DateField,
                MediaField,
                LinkField,
                SelectField,
                MultiSelectField,
                ToggleField,
                ColorField,
                SliderField,
            ),
        ):
            continue
        else:
            raise TypeError(f"Unhandled field kind: {type(field).__name__}")
    return content


def to_schema_fields(schema: Mapping[str, BaseField]) -> list[dict[str, Any]]:
    """Flatten a schema into the field list understood by the remote catalog."""
    fields: list[dict[str, Any]] = []
    for key, field in schema.items():
        entry: dict[str, Any] = {
            "key": key,
            "type": field.type,  # type: ignore[attr-defined]
            "label": field.label,
            "required": field.required,
        }
        if field.has_default:
            entry["defaultValue"] = field.default_value
        if field.placeholder:
            entry["placeholder"] = field.placeholder
        if field.help_text:
            entry["helpText"] = field.help_text

        if isinstance(field, (SelectField, MultiSelectField)):
            entry["options"] = [option.model_dump() for option in field.options]
        elif isinstance(field, SliderField):
            for attr in ("min", "max", "step"):
                value = getattr(field, attr)
                if value is not None:
                    entry[attr] = value
        elif isinstance(field, RepeaterField):
            if field.min_items is not None:
                entry["minItems"] = field.min_items
            if field.max_items is not None:
                entry["maxItems"] = field.max_items
            entry["itemSchema"] = to_schema_fields(field.fields)
        elif not isinstance(
            field,
            (
                SingleLineField,
                MultiLineField,
                RichTextField,
                NumericField,
                DateField,
                MediaField,
                LinkField,
                ToggleField,
                ColorField,
            ),
        ):
            raise TypeError(f"Unhandled field kind: {type(field).__name__}")
        fields.append(entry)
    return fields


def typescript_type(field: BaseField, indent: str = "  ") -> str:
    """Return the TypeScript type describing a field's content."""
    if isinstance(
        field, (SingleLineField, MultiLineField, RichTextField, LinkField, ColorField, DateField)
    ):
        return "string"
    if isinstance(field, (NumericField, SliderField)):
        return "number"
    if isinstance(field, ToggleField):
        return "boolean"
    if isinstance(field, MediaField):
        return _MEDIA_TYPE
    if isinstance(field, SelectField):
        return " | ".join(json.dumps(option.value) for option in field.options)
    if isinstance(field, MultiSelectField):
        return "string[]"
    if isinstance(field, RepeaterField):
        nested = render_interface_body(field.fields, indent + "  ")
        return f"Array<{{\n{nested}\n{indent}}}>"
    raise TypeError(f"Unhandled field kind: {type(field).__name__}")


def render_interface_body(schema: Mapping[str, BaseField], indent: str = "  ") -> str:
    """Render interface members for a schema, one per line."""
    lines: list[str] = []
    for key, field in schema.items():
        if field.help_text:
            lines.append(f"{indent}/** {field.help_text} */")
        optional = "" if field.required else "?"
        lines.append(f"{indent}{key}{optional}: {typescript_type(field, indent)};")
    return "\n".join(lines)


def generate_type_declarations(schema: Mapping[str, BaseField]) -> str:
    """Return the contents of a ``block.d.ts`` file for a schema."""
    body = render_interface_body(schema)
    return f"{TYPES_HEADER}\nexport interface BlockContent {{\n{body}\n}}\n"


__all__ = [
    "TYPES_HEADER",
    "default_content",
    "to_schema_fields",
    "typescript_type",
    "render_interface_body",
    "generate_type_declarations",
]
