"""Catalog mutation inputs built from resources."""

from __future__ import annotations

import re
from typing import Any, Optional

from blockforge.resources.models import Resource
from blockforge.resources.schema import default_content, to_schema_fields

_SCOPE = re.compile(r"^@[^/]+/")
_KIND_PREFIX = re.compile(r"^(blocks|templates)\.")


def block_type_for(package_name: str) -> str:
    """Derive the workspace block type from a package name.

    ``@acme/blocks.hero`` becomes ``hero``.
    """
    return _KIND_PREFIX.sub("", _SCOPE.sub("", package_name))


def vendor_name_for(resource: Resource, fallback: Optional[str] = None) -> Optional[str]:
    """Return the vendor reported to the marketplace for a resource."""
    return resource.config.vendor_name or fallback or resource.package.author_name


def marketplace_input(
    resource: Resource,
    *,
    version: str,
    source_code: str,
    vendor_name: str,
) -> dict[str, Any]:
    """Return the ``PublishPackageInput`` for a marketplace submission."""
    config = resource.config
    package = resource.package
    return {
        "name": package.name,
        "version": version,
        "displayName": config.name or package.name,
        "description": package.description or config.description or "",
        "longDescription": config.long_description,
        "packageType": resource.type.value,
        "category": config.category or "other",
        "tags": list(config.tags),
        "sourceCode": source_code,
        "cssUrl": None,
        "packageJsonUrl": "",
        "schemaFields": to_schema_fields(config.fields),
        "defaultContent": default_content(config.fields),
        "vendorName": vendor_name,
        "vendorEmail": package.author_email,
        "vendorUrl": package.homepage,
        "licenseType": config.pricing.license_type,
        "priceCents": config.pricing.price_cents,
    }


def workspace_input(
    resource: Resource,
    *,
    version: str,
    bundled_code: str,
    css_code: Optional[str],
) -> dict[str, Any]:
    """Return the ``ImportBlockInput`` for a workspace import."""
    config = resource.config
    package_name = resource.package.name or resource.name
    return {
        "blockType": block_type_for(package_name),
        "name": config.name or package_name,
        "description": resource.package.description or config.description or "",
        "icon": config.icon or "Blocks",
        "category": config.category or "Custom",
        "sourceCode": bundled_code,
        "cssCode": css_code,
        "interactive": config.interactive,
        "schemaFields": to_schema_fields(config.fields),
        "defaultContent": default_content(config.fields),
        "sourceRegistry": "local",
        "sourceItem": package_name,
        "version": version,
    }


__all__ = ["block_type_for", "vendor_name_for", "marketplace_input", "workspace_input"]
