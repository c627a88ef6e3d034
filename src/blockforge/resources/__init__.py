"""Resource discovery, schema models and the in-memory registry."""

from .errors import AmbiguousResourceError, ResourceError, ResourceNotFoundError
from .loader import CONFIG_FILENAMES, MANIFEST_FILENAME, load_package_metadata, load_resource_config
from .models import (
    BaseField,
    FieldDefinition,
    PackageMetadata,
    Resource,
    ResourceConfig,
    ResourceKey,
    ResourceType,
    ScanResult,
    ScanWarning,
)
from .registry import ResourceRegistry
from .scanner import ResourceScanner
from .schema import default_content, generate_type_declarations, to_schema_fields, typescript_type

__all__ = [
    "AmbiguousResourceError",
    "ResourceError",
    "ResourceNotFoundError",
    "CONFIG_FILENAMES",
    "MANIFEST_FILENAME",
    "load_package_metadata",
    "load_resource_config",
    "BaseField",
    "FieldDefinition",
    "PackageMetadata",
    "Resource",
    "ResourceConfig",
    "ResourceKey",
    "ResourceType",
    "ScanResult",
    "ScanWarning",
    "ResourceRegistry",
    "ResourceScanner",
    "default_content",
    "generate_type_declarations",
    "to_schema_fields",
    "typescript_type",
]
