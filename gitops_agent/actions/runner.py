"""Action runner for detected repository changes.

Runs the action configured for a repository when the control loop hands
it a change event:

- ``shell``: ``bash -c <script>`` with change details in the environment
- ``webhook``: JSON POST describing the change

Every run is bounded by the action's timeout and reported back as an
``ExecutionResult``; failures are results, not exceptions.
"""

import asyncio
import contextlib
import logging
import os
import time
from datetime import UTC, datetime
from typing import Any

import aiohttp

from ..config.models import ActionConfig, ActionType, RepositoryConfig
from ..monitor.models import ChangeEvent, ExecutionResult
from .exceptions import ActionError, ActionExecutionError, ActionTimeoutError

logger = logging.getLogger(__name__)

ENV_PREFIX = "GITOPS_"

# Captured output kept in results and error messages.
MAX_OUTPUT_CHARS = 4000


class ActionRunner:
    """Executes shell and webhook actions."""

    def __init__(self, shell: str = "bash", user_agent: str = "gitops-agent"):
        """Initialize action runner.

        Args:
            shell: Shell used to run ``shell`` action scripts
            user_agent: User-Agent header sent with webhook requests
        """
        self.shell = shell
        self.user_agent = user_agent

        # HTTP session will be initialized on first use
        self._session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()

    async def __aenter__(self) -> "ActionRunner":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure HTTP session is initialized."""
        if self._session is None or self._session.closed:
            async with self._session_lock:
                if self._session is None or self._session.closed:
                    self._session = aiohttp.ClientSession(
                        headers={"User-Agent": self.user_agent},
                    )
        return self._session

    async def close(self) -> None:
        """Close HTTP session and cleanup resources."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def execute(
        self,
        action: ActionConfig,
        event: ChangeEvent,
        repository: RepositoryConfig,
        local_path: str,
    ) -> ExecutionResult:
        """Run a repository's action for a change event.

        Args:
            action: Action descriptor
            event: Change event that triggered the action
            repository: Repository configuration
            local_path: Local working copy path

        Returns:
            Execution result (success or failure)

        Raises:
            ActionError: If the action type is not supported
        """
        if action.type not in (ActionType.SHELL, ActionType.WEBHOOK):
            raise ActionError(f"Unknown action type: {action.type}")

        executed_at = datetime.now(UTC)
        start = time.monotonic()

        try:
            if action.type == ActionType.SHELL:
                output = await self._execute_shell(
                    action, event, repository, local_path
                )
            else:
                output = await self._execute_webhook(action, event, repository)
        except ActionError as e:
            duration = time.monotonic() - start
            logger.error(
                f"{action.type.value} action failed for '{event.repository_name}': {e}"
            )
            return ExecutionResult(
                repository_name=event.repository_name,
                success=False,
                error=str(e),
                duration=duration,
                executed_at=executed_at,
            )

        duration = time.monotonic() - start
        logger.info(
            f"{action.type.value} action completed for '{event.repository_name}' "
            f"in {duration:.2f}s"
        )
        return ExecutionResult(
            repository_name=event.repository_name,
            success=True,
            output=output,
            duration=duration,
            executed_at=executed_at,
        )

    def build_environment(
        self,
        action: ActionConfig,
        event: ChangeEvent,
        repository: RepositoryConfig,
        local_path: str,
    ) -> dict[str, str]:
        """Variables describing the change, followed by custom action variables."""
        env = {
            f"{ENV_PREFIX}REPO_NAME": event.repository_name,
            f"{ENV_PREFIX}REPO_URL": repository.url,
            f"{ENV_PREFIX}REPO_PATH": local_path,
            f"{ENV_PREFIX}BRANCH": repository.branch,
            f"{ENV_PREFIX}CHANGED_FILES": ",".join(event.files),
            f"{ENV_PREFIX}OLD_HASH": event.old_hash,
            f"{ENV_PREFIX}NEW_HASH": event.new_hash,
        }
        env.update(action.env)
        return env

    async def _execute_shell(
        self,
        action: ActionConfig,
        event: ChangeEvent,
        repository: RepositoryConfig,
        local_path: str,
    ) -> str:
        script = action.script or ""
        env = dict(os.environ)
        env.update(self.build_environment(action, event, repository, local_path))
        cwd = local_path if os.path.isdir(local_path) else None

        logger.debug(f"Executing shell action for '{event.repository_name}': {script}")

        try:
            process = await asyncio.create_subprocess_exec(
                self.shell,
                "-c",
                script,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=cwd,
            )
        except OSError as e:
            raise ActionExecutionError(f"Failed to start {self.shell}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=action.timeout
            )
        except TimeoutError as e:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise ActionTimeoutError(
                f"shell action timed out after {action.timeout:g} seconds"
            ) from e
        except asyncio.CancelledError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise

        stdout_str = _truncate(stdout.decode("utf-8", errors="replace"))
        stderr_str = _truncate(stderr.decode("utf-8", errors="replace"))

        if process.returncode != 0:
            raise ActionExecutionError(
                f"shell command failed with exit code {process.returncode}\n"
                f"stdout: {stdout_str}\nstderr: {stderr_str}",
                {"returncode": process.returncode},
            )

        if stderr_str.strip():
            logger.warning(
                f"Shell action stderr for '{event.repository_name}': {stderr_str}"
            )

        return stdout_str

    async def _execute_webhook(
        self,
        action: ActionConfig,
        event: ChangeEvent,
        repository: RepositoryConfig,
    ) -> str:
        url = action.url or ""
        payload = {
            "repository": event.repository_name,
            "url": repository.url,
            "branch": repository.branch,
            "files": list(event.files),
            "old_hash": event.old_hash,
            "new_hash": event.new_hash,
            "detected_at": event.detected_at.isoformat(),
            "env": dict(action.env),
        }

        session = await self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=action.timeout)

        logger.debug(f"Posting webhook for '{event.repository_name}' to {url}")

        try:
            async with session.post(
                url, json=payload, headers=action.headers, timeout=timeout
            ) as response:
                body = _truncate(await response.text())
                if not 200 <= response.status < 300:
                    raise ActionExecutionError(
                        f"webhook returned HTTP {response.status}: {body}",
                        {"status": response.status},
                    )
                return body
        except TimeoutError as e:
            raise ActionTimeoutError(
                f"webhook timed out after {action.timeout:g} seconds"
            ) from e
        except aiohttp.ClientError as e:
            raise ActionExecutionError(f"webhook request failed: {e}") from e


def _truncate(text: str) -> str:
    if len(text) <= MAX_OUTPUT_CHARS:
        return text
    return text[:MAX_OUTPUT_CHARS] + "... (truncated)"
