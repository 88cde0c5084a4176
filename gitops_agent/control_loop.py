"""Control loop that serializes every agent decision.

The loop waits on four fixed sources, regardless of how many repositories
are watched, and handles exactly one ready item before waiting again:

1. the stop event (terminates the loop)
2. control signals: shutdown, reload configuration, force-check all
3. the periodic maintenance tick (reload when the config file changed)
4. the shared change-event queue fed by every poller

When several sources are ready at once they are taken in that order.
Handling a change event runs the repository's action to completion before
anything else is processed, so the slowest action bounds throughput.
"""

import asyncio
import contextlib
import logging
import threading
from collections.abc import Coroutine
from enum import Enum
from typing import Any

from .actions.runner import ActionRunner
from .config.exceptions import ConfigurationError
from .config.loader import ConfigurationLoader
from .monitor.events import ChangeEventQueue
from .monitor.models import ChangeEvent, ExecutionResult
from .monitor.poller import RepositoryPoller
from .state.models import ActionStatus
from .state.store import StateStore

logger = logging.getLogger(__name__)


class ControlSignal(str, Enum):
    """Signals the control loop reacts to."""

    SHUTDOWN = "shutdown"
    RELOAD = "reload"
    FORCE_CHECK = "force_check"


class PollerRegistry:
    """Lock-guarded registry of running pollers keyed by repository name."""

    def __init__(self) -> None:
        self._pollers: dict[str, RepositoryPoller] = {}
        self._lock = threading.RLock()

    def get(self, name: str) -> RepositoryPoller | None:
        with self._lock:
            return self._pollers.get(name)

    def upsert(self, poller: RepositoryPoller) -> None:
        with self._lock:
            self._pollers[poller.name] = poller

    def remove(self, name: str) -> RepositoryPoller | None:
        with self._lock:
            return self._pollers.pop(name, None)

    def snapshot(self) -> dict[str, RepositoryPoller]:
        """Copy of the name-to-poller mapping."""
        with self._lock:
            return dict(self._pollers)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pollers)


class ControlLoop:
    """Single serialized consumer of signals, ticks and change events."""

    # Readiness priority when several sources complete together.
    _SOURCES = ("stop", "signal", "tick", "event")

    def __init__(
        self,
        config_loader: ConfigurationLoader,
        store: StateStore,
        runner: ActionRunner,
        registry: PollerRegistry,
        events: ChangeEventQueue,
        stop_event: asyncio.Event,
        maintenance_interval: float = 10.0,
    ):
        """Initialize control loop.

        Args:
            config_loader: Loader holding the active configuration
            store: Shared state store
            runner: Action runner for change events
            registry: Running pollers
            events: Shared change-event queue
            stop_event: Shared shutdown signal
            maintenance_interval: Seconds between maintenance ticks
        """
        self.config_loader = config_loader
        self.store = store
        self.runner = runner
        self.registry = registry
        self.events = events
        self.stop_event = stop_event
        self.maintenance_interval = maintenance_interval

        self._signals: asyncio.Queue[ControlSignal] = asyncio.Queue()

        self.stats: dict[str, Any] = {
            "events_processed": 0,
            "actions_succeeded": 0,
            "actions_failed": 0,
            "reloads": 0,
            "failed_reloads": 0,
            "forced_checks": 0,
        }

    def post_signal(self, signal: ControlSignal) -> None:
        """Queue a control signal. Safe to call from a signal handler."""
        self._signals.put_nowait(signal)

    async def run(self) -> None:
        """Process sources one at a time until stopped."""
        logger.info("Control loop started")
        sources: dict[str, asyncio.Task[Any]] = {}

        try:
            while True:
                self._arm_sources(sources)

                await asyncio.wait(
                    sources.values(), return_when=asyncio.FIRST_COMPLETED
                )

                name = next(n for n in self._SOURCES if sources[n].done())
                task = sources.pop(name)

                if name == "stop":
                    logger.info("Stop requested, leaving control loop")
                    return

                result = task.result()

                try:
                    if name == "signal":
                        if await self.handle_signal(result):
                            return
                    elif name == "tick":
                        await self.handle_maintenance_tick()
                    else:
                        await self.handle_change_event(result)
                except Exception as e:
                    logger.error(f"Error handling {name}: {e}", exc_info=True)
        finally:
            await self._disarm_sources(sources)
            logger.info("Control loop stopped")

    def _arm_sources(self, sources: dict[str, asyncio.Task[Any]]) -> None:
        factories: dict[str, Coroutine[Any, Any, Any]] = {}
        if "stop" not in sources:
            factories["stop"] = self.stop_event.wait()
        if "signal" not in sources:
            factories["signal"] = self._signals.get()
        if "tick" not in sources:
            factories["tick"] = asyncio.sleep(self.maintenance_interval)
        if "event" not in sources:
            factories["event"] = self.events.get()

        for name, coro in factories.items():
            sources[name] = asyncio.create_task(coro, name=f"control-{name}")

    async def _disarm_sources(self, sources: dict[str, asyncio.Task[Any]]) -> None:
        for name, task in sources.items():
            if task.done() and not task.cancelled() and name == "event":
                event = task.result()
                logger.warning(f"Discarding unprocessed {event} at shutdown")
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        sources.clear()

    async def handle_signal(self, signal: ControlSignal) -> bool:
        """Handle a control signal.

        Returns:
            True if the loop must terminate
        """
        if signal == ControlSignal.SHUTDOWN:
            logger.info("Received shutdown signal, gracefully stopping...")
            self.stop_event.set()
            return True

        if signal == ControlSignal.RELOAD:
            logger.info("Received reload signal, reloading configuration...")
            self.reload_config()
        elif signal == ControlSignal.FORCE_CHECK:
            logger.info("Received force-check signal, checking all repositories...")
            self.force_check_all()

        return False

    async def handle_maintenance_tick(self) -> None:
        """Reload configuration when its file changed on disk."""
        if self.config_loader.is_modified():
            logger.info("Configuration file changed, reloading...")
            self.reload_config()

    def reload_config(self) -> bool:
        """Re-read and re-validate configuration.

        Running pollers keep their watch specs; repositories added or
        removed by the new configuration are reported but not applied.

        Returns:
            True if the configuration was reloaded
        """
        try:
            config = self.config_loader.reload()
        except ConfigurationError as e:
            self.stats["failed_reloads"] += 1
            logger.error(f"Failed to reload config: {e.report()}")
            return False

        self.stats["reloads"] += 1
        logger.info("Configuration reloaded successfully")

        configured = {repo.name for repo in config.repositories}
        running = set(self.registry.snapshot())
        added = sorted(configured - running)
        removed = sorted(running - configured)
        if added or removed:
            logger.warning(
                f"Repository set changed (added: {added}, removed: {removed}); "
                f"running pollers are not updated until restart"
            )

        return True

    def force_check_all(self) -> int:
        """Ask every running poller for an immediate check.

        Returns:
            Number of pollers that accepted a new forced check
        """
        accepted = 0
        for poller in self.registry.snapshot().values():
            if poller.force_check():
                accepted += 1

        self.stats["forced_checks"] += 1
        logger.info(f"Forced check initiated for {accepted} repositories")
        return accepted

    async def handle_change_event(self, event: ChangeEvent) -> ExecutionResult | None:
        """Run the action for a change event and record the outcome.

        Returns:
            Execution result, or None if the repository is no longer configured
        """
        self.stats["events_processed"] += 1
        logger.info(
            f"Processing change event from '{event.repository_name}': "
            f"{list(event.files)}"
        )

        config = self.config_loader.config
        repo = config.get_repository(event.repository_name) if config else None
        if config is None or repo is None:
            logger.warning(
                f"Repository '{event.repository_name}' not found in config, "
                f"skipping action"
            )
            return None

        local_path = config.repository_local_path(repo.name)

        try:
            result = await self.runner.execute(repo.action, event, repo, local_path)
        except Exception as e:
            logger.error(
                f"Failed to execute action for '{event.repository_name}': {e}",
                exc_info=True,
            )
            result = ExecutionResult(
                repository_name=event.repository_name,
                success=False,
                error=str(e) or type(e).__name__,
            )

        self.record_result(result)
        return result

    def record_result(self, result: ExecutionResult) -> None:
        """Fold an execution result into the repository's state."""
        if result.success:
            self.stats["actions_succeeded"] += 1
            self.store.upsert(
                result.repository_name,
                last_action_executed=result.executed_at,
                last_action_status=ActionStatus.SUCCESS,
                last_error="",
            )
            logger.info(f"Action executed successfully for '{result.repository_name}'")
        else:
            self.stats["actions_failed"] += 1
            error = result.error or "action failed"
            self.store.upsert(
                result.repository_name,
                last_action_executed=result.executed_at,
                last_action_status=ActionStatus.FAILURE,
                last_error=error,
            )
            logger.error(f"Action failed for '{result.repository_name}': {error}")
