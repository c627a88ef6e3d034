"""Resource, schema and scan result models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ResourceType(str, Enum):
    """Kinds of packages a project can contain."""

    BLOCK = "block"
    TEMPLATE = "template"


class FieldKind(str, Enum):
    """Enumerated field types a resource schema may declare."""

    SINGLE_LINE = "singleLine"
    MULTI_LINE = "multiLine"
    RICH_TEXT = "richText"
    NUMERIC = "numeric"
    DATE = "date"
    MEDIA = "media"
    LINK = "link"
    SELECT = "select"
    MULTI_SELECT = "multiselect"
    TOGGLE = "toggle"
    COLOR = "color"
    SLIDER = "slider"
    REPEATER = "repeater"


class ConfigModel(BaseModel):
    """Base for models parsed from user-authored config files.

    Keys use the camelCase spelling found in config files; unknown keys are ignored.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SelectOption(ConfigModel):
    """One choice of a select or multiselect field."""

    label: str
    value: str

    @model_validator(mode="before")
    @classmethod
    def _from_plain_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"label": data, "value": data}
        return data


class BaseField(ConfigModel):
    """Attributes shared by every field definition."""

    label: str
    required: bool = False
    placeholder: Optional[str] = None
    default_value: Any = Field(default=None, alias="defaultValue")
    help_text: Optional[str] = Field(default=None, alias="helpText")

    @property
    def has_default(self) -> bool:
        return "default_value" in self.model_fields_set


class SingleLineField(BaseField):
    type: Literal["singleLine"] = "singleLine"


class MultiLineField(BaseField):
    type: Literal["multiLine"] = "multiLine"


class RichTextField(BaseField):
    type: Literal["richText"] = "richText"


class NumericField(BaseField):
    type: Literal["numeric"] = "numeric"


class DateField(BaseField):
    type: Literal["date"] = "date"


class MediaField(BaseField):
    type: Literal["media"] = "media"


class LinkField(BaseField):
    type: Literal["link"] = "link"


class ToggleField(BaseField):
    type: Literal["toggle"] = "toggle"


class ColorField(BaseField):
    type: Literal["color"] = "color"


class SliderField(BaseField):
    type: Literal["slider"] = "slider"
    min: Optional[float] = None
    max: Optional[float] = None
    step: Optional[float] = None


class SelectField(BaseField):
    """Single choice field; must declare at least one option."""

    type: Literal["select"] = "select"
    options: List[SelectOption] = Field(default_factory=list)

    @model_validator(mode="after")
    def _require_options(self) -> "SelectField":
        if not self.options:
            raise ValueError("select field must declare a non-empty 'options' list")
        return self


class MultiSelectField(BaseField):
    type: Literal["multiselect"] = "multiselect"
    options: List[SelectOption] = Field(default_factory=list)


class RepeaterField(BaseField):
    """List of nested records described by their own schema."""

    type: Literal["repeater"] = "repeater"
    min_items: Optional[int] = Field(default=None, alias="minItems", ge=0)
    max_items: Optional[int] = Field(default=None, alias="maxItems", ge=0)
    fields: Dict[str, "FieldDefinition"] = Field(default_factory=dict, alias="schema")

    @model_validator(mode="after")
    def _require_nested_schema(self) -> "RepeaterField":
        if not self.fields:
            raise ValueError("repeater field must declare a non-empty nested 'schema'")
        if (
            self.min_items is not None
            and self.max_items is not None
            and self.min_items > self.max_items
        ):
            raise ValueError("repeater 'minItems' cannot exceed 'maxItems'")
        return self


FieldDefinition = Annotated[
    Union[
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
        RepeaterField,
    ],
    Field(discriminator="type"),
]

RepeaterField.model_rebuild()

Schema = Dict[str, FieldDefinition]


class Pricing(ConfigModel):
    license_type: Literal["free", "paid"] = Field(default="free", alias="licenseType")
    price_cents: int = Field(default=0, alias="priceCents", ge=0)


class ResourceConfig(ConfigModel):
    """Declarative configuration of one block or template.

    Attributes:
        name: Human readable display name.
        description: Short description shown in listings.
        long_description: Extended description for the catalog.
        category: Catalog category; required for blocks.
        tags: Free-form catalog tags.
        fields: Ordered schema mapping field keys to definitions.
        interactive: Whether the resource needs client-side rendering.
        icon: Icon name reported to workspaces.
        vendor_name: Vendor reported to the marketplace.
        pricing: Marketplace licensing.
    """

    name: Optional[str] = None
    description: Optional[str] = None
    long_description: Optional[str] = Field(default=None, alias="longDescription")
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    fields: Dict[str, FieldDefinition] = Field(default_factory=dict, alias="schema")
    interactive: bool = False
    icon: Optional[str] = None
    vendor_name: Optional[str] = Field(default=None, alias="vendorName")
    pricing: Pricing = Field(default_factory=Pricing)


class PackageMetadata(ConfigModel):
    """Subset of ``package.json`` the toolkit relies on."""

    name: Optional[str] = None
    version: Optional[str] = None
    description: Optional[str] = None
    author: Any = None
    homepage: Optional[str] = None

    @property
    def author_name(self) -> Optional[str]:
        if isinstance(self.author, str):
            return self.author or None
        if isinstance(self.author, dict):
            return self.author.get("name")
        return None

    @property
    def author_email(self) -> Optional[str]:
        if isinstance(self.author, dict):
            return self.author.get("email")
        return None


class ResourceKey(BaseModel):
    """Identity of a resource: its type plus directory name."""

    model_config = ConfigDict(frozen=True)

    type: ResourceType
    name: str

    def __str__(self) -> str:
        return f"{self.type.value}:{self.name}"


class Resource(BaseModel):
    """One block or template package known to the registry.

    ``type``, ``name`` and ``root_path`` are fixed at scan time; the remaining
    fields are refreshed by the registry when config, manifest or preview
    state change.
    """

    type: ResourceType
    name: str
    root_path: Path
    config: ResourceConfig
    package: PackageMetadata = Field(default_factory=PackageMetadata)
    config_path: Optional[Path] = None
    preview_state: Dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(type=self.type, name=self.name)

    @property
    def display_name(self) -> str:
        return self.config.name or self.name

    @property
    def description(self) -> Optional[str]:
        return self.config.description or self.package.description

    @property
    def category(self) -> Optional[str]:
        return self.config.category

    @property
    def schema_fields(self) -> Dict[str, Any]:
        return self.config.fields

    def summary(self) -> dict[str, Any]:
        """Return the JSON listing shape used by the CLI and HTTP API."""
        return {
            "type": self.type.value,
            "name": self.name,
            "displayName": self.display_name,
            "description": self.description,
            "category": self.category,
            "tags": list(self.config.tags),
            "packageName": self.package.name,
            "version": self.package.version,
            "interactive": self.config.interactive,
            "schema": {
                key: field.model_dump(mode="json", by_alias=True, exclude_none=True)
                for key, field in self.config.fields.items()
            },
        }


class ScanWarning(BaseModel):
    """A resource directory that was excluded (or degraded) during a scan.

    Attributes:
        path: Resource directory the warning refers to.
        resource_type: Type implied by the scanned root.
        name: Directory name of the resource.
        severity: ``error`` in strict mode for missing/invalid config, else ``warning``.
        messages: Individual problems found.
        excluded: Whether the resource was left out of the scan result.
    """

    path: Path
    resource_type: ResourceType
    name: str
    severity: Literal["warning", "error"] = "warning"
    messages: List[str] = Field(default_factory=list)
    excluded: bool = True
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def __str__(self) -> str:
        return f"{self.resource_type.value} '{self.name}': " + "; ".join(self.messages)


class ScanResult(BaseModel):
    """Resources accepted by a scan plus the warnings for excluded directories."""

    resources: List[Resource] = Field(default_factory=list)
    warnings: List[ScanWarning] = Field(default_factory=list)

    @property
    def errors(self) -> List[ScanWarning]:
        return [warning for warning in self.warnings if warning.severity == "error"]


__all__ = [
    "ResourceType",
    "FieldKind",
    "SelectOption",
    "BaseField",
    "SingleLineField",
    "MultiLineField",
    "RichTextField",
    "NumericField",
    "DateField",
    "MediaField",
    "LinkField",
    "SelectField",
    "MultiSelectField",
    "ToggleField",
    "ColorField",
    "SliderField",
    "RepeaterField",
    "FieldDefinition",
    "Schema",
    "Pricing",
    "ResourceConfig",
    "PackageMetadata",
    "ResourceKey",
    "Resource",
    "ScanWarning",
    "ScanResult",
]
