"""Change detection for watched repositories.

This module resolves the latest remote commit of a repository branch and
works out which watched paths changed since a previously observed commit.

Key rules:
- The first observation of a repository reports every watch pattern as
  changed.
- Commit movement that touches no watched path yields an empty change set.
- A diff that cannot be computed (for example an unknown old commit after
  a force push) falls back to reporting every watch pattern as changed.
"""

import logging
from collections.abc import Iterable, Sequence

from .exceptions import GitError
from .git import GitCLIClient, VersionControlClient
from .models import DetectionResult

logger = logging.getLogger(__name__)


def matches_watch_path(file_path: str, pattern: str) -> bool:
    """Check whether a changed file falls under a watch pattern.

    A file matches when it equals the pattern, lies under the pattern
    treated as a directory, or lies under the directory of a pattern that
    ends in ``/*``.

    Args:
        file_path: Repository-relative path reported by the diff
        pattern: Configured watch pattern

    Returns:
        True if the file is watched by the pattern
    """
    pattern = pattern.rstrip("/")
    if not pattern:
        return False

    if file_path == pattern:
        return True

    if file_path.startswith(pattern + "/"):
        return True

    if pattern.endswith("/*"):
        directory = pattern[:-2]
        if file_path.startswith(directory + "/"):
            return True

    return False


def filter_changed_paths(
    changed_files: Iterable[str], watch_paths: Sequence[str]
) -> list[str]:
    """Keep the changed files that match at least one watch pattern.

    Order of ``changed_files`` is preserved and duplicates are dropped.
    """
    filtered: list[str] = []
    seen: set[str] = set()

    for changed in changed_files:
        if not changed or changed in seen:
            continue
        if any(matches_watch_path(changed, pattern) for pattern in watch_paths):
            filtered.append(changed)
            seen.add(changed)

    return filtered


class ChangeDetector:
    """Resolves remote commits and computes watched-path changes.

    The detector owns comparison and filtering; all repository access goes
    through a ``VersionControlClient``.
    """

    def __init__(self, client: VersionControlClient | None = None):
        """Initialize the change detector.

        Args:
            client: Version-control client (defaults to the git CLI)
        """
        self.client = client or GitCLIClient()
        self._statistics = {
            "detections": 0,
            "diff_fallbacks": 0,
        }

    async def resolve_current_commit(
        self, url: str, branch: str, local_path: str
    ) -> str:
        """Materialize the working copy, fetch, and resolve the remote head.

        The commit is read from the remote-tracking ref, so the result never
        depends on the state of the local checkout.

        Raises:
            GitError: If cloning, validation, fetching or resolution fails
        """
        await self.client.ensure_clone(url, branch, local_path)
        await self.client.fetch(local_path, branch)
        return await self.client.resolve_ref(
            local_path, self.client.remote_ref(branch)
        )

    async def changed_paths(
        self,
        local_path: str,
        previous_commit: str,
        current_commit: str,
        watch_paths: Sequence[str],
    ) -> list[str]:
        """Compute watched paths changed between two commits.

        Args:
            local_path: Local working copy
            previous_commit: Last observed commit ("" when never observed)
            current_commit: Newly resolved commit
            watch_paths: Configured watch patterns

        Returns:
            Changed files matching the watch patterns, or every watch pattern
            when there is no previous commit or the diff fails
        """
        if not previous_commit:
            return list(watch_paths)

        if previous_commit == current_commit:
            return []

        try:
            diff = await self.client.diff_paths(
                local_path, previous_commit, current_commit
            )
        except GitError as e:
            self._statistics["diff_fallbacks"] += 1
            logger.warning(
                f"Failed to diff {previous_commit[:8]}..{current_commit[:8]} "
                f"in {local_path}, assuming all watched paths changed: {e}"
            )
            return list(watch_paths)

        return filter_changed_paths(diff, watch_paths)

    async def detect(
        self,
        url: str,
        branch: str,
        local_path: str,
        previous_commit: str,
        watch_paths: Sequence[str],
    ) -> DetectionResult:
        """Run a full detection for one repository.

        Raises:
            GitError: If the current commit cannot be resolved
        """
        self._statistics["detections"] += 1

        current_commit = await self.resolve_current_commit(url, branch, local_path)
        if not current_commit:
            raise GitError(f"Empty commit id resolved for branch '{branch}'")

        changed = await self.changed_paths(
            local_path, previous_commit, current_commit, watch_paths
        )

        return DetectionResult(
            current_commit=current_commit,
            changed_paths=tuple(changed),
            previous_commit=previous_commit,
        )

    def get_statistics(self) -> dict[str, int]:
        """Get detection counters."""
        return dict(self._statistics)
