"""Errors raised while loading or reloading the agent configuration.

Every error carries the file it relates to when one is known, and
``report()`` renders the message, that file and any per-field validation
problems as a block suitable for the log.
"""

from typing import Any


class ConfigurationError(Exception):
    """Base exception for configuration loading and reloading errors."""

    def __init__(self, message: str, file_path: str | None = None):
        super().__init__(message)
        self.file_path = file_path

    def report(self) -> str:
        """Render the error, naming the offending file when known."""
        if self.file_path:
            return f"{self} (file: {self.file_path})"
        return str(self)


class ConfigurationFileError(ConfigurationError):
    """A configuration or included repository file is unreadable or malformed."""


class ConfigurationValidationError(ConfigurationError):
    """The merged configuration document does not pass validation.

    ``validation_errors`` holds pydantic's error dictionaries (``loc``,
    ``msg``, ...) when the failure came from model validation.
    """

    def __init__(
        self,
        message: str,
        validation_errors: list[dict[str, Any]] | None = None,
        file_path: str | None = None,
    ):
        super().__init__(message, file_path)
        self.validation_errors = list(validation_errors or [])

    def field_problems(self) -> list[str]:
        """One ``location: message`` line per validation error."""
        problems = []
        for error in self.validation_errors:
            location = ".".join(str(part) for part in error.get("loc", ()))
            problems.append(f"{location or '<root>'}: {error.get('msg', '')}")
        return problems

    def report(self) -> str:
        lines = [super().report()]
        lines.extend(f"  {problem}" for problem in self.field_problems())
        return "\n".join(lines)
