"""Resource lookup errors."""


class ResourceError(Exception):
    """Base exception for registry operations."""


class ResourceNotFoundError(ResourceError):
    """Raised when no resource matches the requested name."""


class AmbiguousResourceError(ResourceError):
    """Raised when a name matches both a block and a template."""
