"""Data models for repository monitoring.

This module defines the immutable description of what a poller watches
from, the change events pollers hand to the control loop, and the
results the action runner reports back.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from ..config.models import Config, RepositoryConfig


class PollerStatus(str, Enum):
    """Lifecycle states of a repository poller."""

    IDLE = "idle"
    CHECKING = "checking"
    STOPPED = "stopped"


class CheckOutcome(str, Enum):
    """Result of a single poll cycle."""

    NO_CHANGE = "no_change"
    IRRELEVANT_CHANGE = "irrelevant_change"
    CHANGE_DETECTED = "change_detected"
    FAILED = "failed"


@dataclass(frozen=True)
class WatchSpec:
    """What a poller watches. Immutable for the poller's lifetime."""

    name: str
    url: str
    branch: str
    watch_paths: tuple[str, ...]
    poll_interval: float
    local_path: str

    @classmethod
    def from_config(cls, config: Config, repo: RepositoryConfig) -> "WatchSpec":
        """Build a ``WatchSpec`` from the loaded configuration."""
        return cls(
            name=repo.name,
            url=repo.url,
            branch=repo.branch,
            watch_paths=tuple(repo.watch_paths),
            poll_interval=config.repository_poll_interval(repo),
            local_path=config.repository_local_path(repo.name),
        )


@dataclass(frozen=True)
class DetectionResult:
    """Remote commit and filtered changed paths from one detection."""

    current_commit: str
    changed_paths: tuple[str, ...]
    previous_commit: str = ""

    @property
    def commit_moved(self) -> bool:
        """Whether the remote commit differs from the previous one."""
        return self.current_commit != self.previous_commit


@dataclass(frozen=True)
class ChangeEvent:
    """Relevant change in a repository, consumed once by the control loop."""

    repository_name: str
    files: tuple[str, ...]
    old_hash: str
    new_hash: str
    detected_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if not self.files:
            raise ValueError("ChangeEvent requires at least one changed path")

    def __str__(self) -> str:
        """Return human-readable string representation."""
        return (
            f"ChangeEvent({self.repository_name}: "
            f"{self.old_hash[:8] or '<none>'}..{self.new_hash[:8]}, "
            f"{len(self.files)} paths)"
        )


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of running a repository's action."""

    repository_name: str
    success: bool
    error: str = ""
    output: str = ""
    duration: float = 0.0
    executed_at: datetime = field(default_factory=lambda: datetime.now(UTC))
