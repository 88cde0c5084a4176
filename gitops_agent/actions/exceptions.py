"""Action runner exceptions."""

from typing import Any


class ActionError(Exception):
    """Base exception for action execution errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize action error.

        Args:
            message: Error message
            details: Optional dictionary with additional error details
        """
        super().__init__(message)
        self.details = details or {}


class ActionExecutionError(ActionError):
    """Raised when an action runs but fails."""

    pass


class ActionTimeoutError(ActionError):
    """Raised when an action exceeds its configured timeout."""

    pass
