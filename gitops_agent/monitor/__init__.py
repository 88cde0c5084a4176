"""Repository monitoring: change detection, pollers and the event queue.

Main Components:
- ChangeDetector: resolves remote commits and filters changed paths
- VersionControlClient / GitCLIClient: repository access behind an interface
- RepositoryPoller: per-repository check loop
- ChangeEventQueue: shared queue from pollers to the control loop
"""

from .change_detection import ChangeDetector, filter_changed_paths, matches_watch_path
from .events import ChangeEventQueue
from .exceptions import (
    GitCommandError,
    GitError,
    GitTimeoutError,
    InvalidRepositoryError,
)
from .git import GitCLIClient, VersionControlClient
from .models import (
    ChangeEvent,
    CheckOutcome,
    DetectionResult,
    ExecutionResult,
    PollerStatus,
    WatchSpec,
)
from .poller import RepositoryPoller

__all__ = [
    "ChangeDetector",
    "ChangeEvent",
    "ChangeEventQueue",
    "CheckOutcome",
    "DetectionResult",
    "ExecutionResult",
    "GitCLIClient",
    "GitCommandError",
    "GitError",
    "GitTimeoutError",
    "InvalidRepositoryError",
    "PollerStatus",
    "RepositoryPoller",
    "VersionControlClient",
    "WatchSpec",
    "filter_changed_paths",
    "matches_watch_path",
]
