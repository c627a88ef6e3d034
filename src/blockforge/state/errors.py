"""Preview state persistence errors."""


class StateError(Exception):
    """Base exception for preview state operations."""


class InvalidPreviewStateError(StateError):
    """Raised when a preview state document is not a JSON object."""
