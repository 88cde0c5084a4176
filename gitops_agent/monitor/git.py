"""Version-control access for change detection.

The change detector depends on ``VersionControlClient`` only, so the
subprocess-based ``GitCLIClient`` can be swapped for an in-process
implementation (or a fake in tests) without touching poller logic.
"""

import asyncio
import contextlib
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

from .exceptions import GitCommandError, GitTimeoutError, InvalidRepositoryError

logger = logging.getLogger(__name__)


class VersionControlClient(ABC):
    """Operations the change detector needs from a version-control system."""

    @abstractmethod
    async def is_repository(self, local_path: str) -> bool:
        """Cheaply check whether a local path holds a valid working copy."""

    @abstractmethod
    async def ensure_clone(self, url: str, branch: str, local_path: str) -> None:
        """Clone the branch if the local copy is missing, else validate it.

        Raises:
            InvalidRepositoryError: If an existing local copy is invalid
            GitError: If cloning fails
        """

    @abstractmethod
    async def fetch(self, local_path: str, branch: str) -> None:
        """Fetch the branch from the remote."""

    def remote_ref(self, branch: str) -> str:
        """Remote-tracking ref that holds the fetched head of a branch."""
        return f"origin/{branch}"

    @abstractmethod
    async def resolve_ref(self, local_path: str, ref: str) -> str:
        """Resolve a ref to a commit id."""

    @abstractmethod
    async def diff_paths(self, local_path: str, old: str, new: str) -> list[str]:
        """List paths changed between two commits."""


class GitCLIClient(VersionControlClient):
    """Version-control client backed by the ``git`` executable."""

    def __init__(
        self,
        git_binary: str = "git",
        remote: str = "origin",
        command_timeout: float = 300.0,
    ):
        """Initialize git CLI client.

        Args:
            git_binary: Path or name of the git executable
            remote: Name of the remote to fetch from
            command_timeout: Timeout for a single git command in seconds
        """
        self.git_binary = git_binary
        self.remote = remote
        self.command_timeout = command_timeout

    async def _run(
        self,
        *args: str,
        local_path: str | None = None,
        extra_env: dict[str, str] | None = None,
    ) -> str:
        """Run a git command and return its stripped standard output.

        Raises:
            GitCommandError: If git cannot be started or exits non-zero
            GitTimeoutError: If the command exceeds the timeout
        """
        cmd = [self.git_binary]
        if local_path:
            cmd += ["-C", local_path]
        cmd += args
        logger.debug(f"Running {' '.join(cmd)}")

        env = dict(os.environ)
        env.setdefault("GIT_TERMINAL_PROMPT", "0")
        if extra_env:
            env.update(extra_env)

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise GitCommandError(f"Failed to start git: {e}", command=cmd) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.command_timeout
            )
        except TimeoutError as e:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise GitTimeoutError(
                f"git {args[0]} timed out after {self.command_timeout:.0f}s",
                {"command": cmd},
            ) from e
        except asyncio.CancelledError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise

        stdout_str = stdout.decode("utf-8", errors="replace").strip()
        stderr_str = stderr.decode("utf-8", errors="replace").strip()

        if process.returncode != 0:
            raise GitCommandError(
                f"git {args[0]} failed (exit {process.returncode}): {stderr_str}",
                command=cmd,
                returncode=process.returncode,
                stderr=stderr_str,
            )

        return stdout_str

    async def is_repository(self, local_path: str) -> bool:
        try:
            # Stop git from discovering an enclosing repository.
            ceiling = str(Path(local_path).resolve().parent)
            await self._run(
                "rev-parse",
                "--git-dir",
                local_path=local_path,
                extra_env={"GIT_CEILING_DIRECTORIES": ceiling},
            )
        except GitCommandError:
            return False
        return True

    async def ensure_clone(self, url: str, branch: str, local_path: str) -> None:
        path = Path(local_path)

        if path.exists():
            if not await self.is_repository(local_path):
                raise InvalidRepositoryError(
                    f"Invalid git repository at {local_path}",
                    {"local_path": local_path},
                )
            return

        path.parent.mkdir(parents=True, exist_ok=True)

        args = ["clone", "--origin", self.remote]
        if branch:
            args += ["--branch", branch]
        args += [url, local_path]

        await self._run(*args)
        logger.info(f"Cloned {url} ({branch}) into {local_path}")

    async def fetch(self, local_path: str, branch: str) -> None:
        await self._run("fetch", self.remote, branch, local_path=local_path)

    async def resolve_ref(self, local_path: str, ref: str) -> str:
        return await self._run("rev-parse", "--verify", ref, local_path=local_path)

    def remote_ref(self, branch: str) -> str:
        """Remote-tracking ref for a branch."""
        return f"{self.remote}/{branch}"

    async def diff_paths(self, local_path: str, old: str, new: str) -> list[str]:
        output = await self._run(
            "diff", "--name-only", old, new, local_path=local_path
        )
        return [line for line in output.splitlines() if line.strip()]
