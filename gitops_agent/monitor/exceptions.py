"""Version-control client exceptions."""

from typing import Any


class GitError(Exception):
    """Base exception for version-control errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize git error.

        Args:
            message: Error message
            details: Optional dictionary with additional error details
        """
        super().__init__(message)
        self.details = details or {}


class GitCommandError(GitError):
    """Raised when a git command exits with a non-zero status."""

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ):
        """Initialize git command error.

        Args:
            message: Error message
            command: Command line that failed
            returncode: Process exit status
            stderr: Captured standard error
        """
        super().__init__(
            message,
            {"command": command or [], "returncode": returncode, "stderr": stderr},
        )
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr


class GitTimeoutError(GitError):
    """Raised when a git command does not finish in time."""

    pass


class InvalidRepositoryError(GitError):
    """Raised when an existing local copy is not a valid repository."""

    pass
