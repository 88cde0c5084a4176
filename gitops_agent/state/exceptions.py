"""State store exceptions."""

from typing import Any


class StateStoreError(Exception):
    """Base exception for state store errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize state store error.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error details
        """
        super().__init__(message)
        self.details = details or {}


class StateLoadError(StateStoreError):
    """Raised when the state file is missing, unreadable or unparsable."""

    pass


class StatePersistError(StateStoreError):
    """Raised when the state file cannot be written."""

    pass
