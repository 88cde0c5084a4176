"""GitOps agent supervisor.

This module wires configuration, the state store, one poller per
repository and the control loop together, and manages their lifecycle:
startup, OS signal handling, graceful shutdown and the final state flush.
"""

import asyncio
import logging
import signal
from datetime import UTC, datetime
from typing import Any

from .actions.runner import ActionRunner
from .config.loader import ConfigurationLoader
from .config.models import Config
from .config.utils import get_config_summary
from .control_loop import ControlLoop, ControlSignal, PollerRegistry
from .monitor.change_detection import ChangeDetector
from .monitor.events import ChangeEventQueue
from .monitor.models import WatchSpec
from .monitor.poller import RepositoryPoller
from .state.exceptions import StateStoreError
from .state.store import StateStore

logger = logging.getLogger(__name__)

SIGNAL_MAP = {
    signal.SIGTERM: ControlSignal.SHUTDOWN,
    signal.SIGINT: ControlSignal.SHUTDOWN,
    signal.SIGHUP: ControlSignal.RELOAD,
    signal.SIGUSR1: ControlSignal.FORCE_CHECK,
}


class GitOpsAgent:
    """Supervises repository pollers and the control loop.

    Manages the complete lifecycle of the agent including:
    - Configuration loading and validation
    - State store and action runner setup
    - Starting one poller per configured repository
    - OS signal handling
    - Graceful shutdown with a bounded grace period and final state flush
    """

    def __init__(
        self,
        config_path: str | None = None,
        config_loader: ConfigurationLoader | None = None,
        detector: ChangeDetector | None = None,
        runner: ActionRunner | None = None,
        store_debounce_seconds: float = 1.0,
        install_signal_handlers: bool = True,
    ):
        """Initialize the agent.

        Args:
            config_path: Path to the configuration file
            config_loader: Loader to use (a pre-loaded one is used as-is)
            detector: Change detector shared by all pollers
            runner: Action runner used by the control loop
            store_debounce_seconds: Debounce delay for state persistence
            install_signal_handlers: Whether ``start`` installs OS handlers
        """
        self.config_path = config_path
        self.config_loader = config_loader or ConfigurationLoader()
        self.detector = detector
        self.runner = runner
        self.store_debounce_seconds = store_debounce_seconds
        self.install_signal_handlers = install_signal_handlers

        self.store: StateStore | None = None
        self.events: ChangeEventQueue | None = None
        self.stop_event: asyncio.Event | None = None
        self.registry = PollerRegistry()
        self.control_loop: ControlLoop | None = None

        self.running = False
        self._initialized = False
        self._stopped = False
        self._poller_tasks: dict[str, asyncio.Task[None]] = {}
        self._done: asyncio.Event | None = None
        self._installed_signals: list[signal.Signals] = []
        self.started_at: datetime | None = None

    @property
    def config(self) -> Config:
        """Active configuration."""
        if self.config_loader.config is None:
            raise RuntimeError("Configuration not loaded")
        return self.config_loader.config

    async def initialize(self) -> None:
        """Load configuration and build every component.

        Raises:
            ConfigurationError: If configuration cannot be loaded
            StateStoreError: If the state directory is unusable
        """
        if self._initialized:
            return

        logger.info("Initializing GitOps agent...")

        if self.config_path:
            self.config_loader.load_from_file(self.config_path)
        elif not self.config_loader.is_loaded:
            raise RuntimeError("No configuration path or loaded configuration")

        config = self.config

        self.store = StateStore(
            config.agent.state_dir, debounce_seconds=self.store_debounce_seconds
        )
        self.detector = self.detector or ChangeDetector()
        self.runner = self.runner or ActionRunner(user_agent=config.agent.name)
        self.events = ChangeEventQueue()
        self.stop_event = asyncio.Event()
        self._done = asyncio.Event()

        for repo in config.repositories:
            poller = RepositoryPoller(
                spec=WatchSpec.from_config(config, repo),
                detector=self.detector,
                store=self.store,
                events=self.events,
                stop_event=self.stop_event,
            )
            self.registry.upsert(poller)

        self.control_loop = ControlLoop(
            config_loader=self.config_loader,
            store=self.store,
            runner=self.runner,
            registry=self.registry,
            events=self.events,
            stop_event=self.stop_event,
            maintenance_interval=config.agent.maintenance_interval,
        )

        self._initialized = True
        logger.info(
            f"GitOps agent '{config.agent.name}' initialized with "
            f"{len(self.registry)} repositories"
        )

    async def start(self) -> None:
        """Run the agent until shutdown. Blocks until everything stopped."""
        await self.initialize()
        if self._stopped:
            raise RuntimeError("Agent already stopped")

        assert self.control_loop is not None

        self.running = True
        self.started_at = datetime.now(UTC)
        logger.info("Starting GitOps agent...")

        self._setup_signal_handlers()

        try:
            for name, poller in self.registry.snapshot().items():
                self._poller_tasks[name] = asyncio.create_task(
                    poller.run(), name=f"poller-{name}"
                )

            logger.info("GitOps agent started successfully")
            await self.control_loop.run()
        finally:
            await self._shutdown()

    def _setup_signal_handlers(self) -> None:
        """Route OS signals into the control loop."""
        if not self.install_signal_handlers or self.control_loop is None:
            return

        loop = asyncio.get_running_loop()
        for sig, control in SIGNAL_MAP.items():
            try:
                loop.add_signal_handler(sig, self.control_loop.post_signal, control)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                logger.debug(f"Cannot install handler for {sig.name}: {e}")
                continue
            self._installed_signals.append(sig)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._installed_signals:
            loop.remove_signal_handler(sig)
        self._installed_signals.clear()

    async def _shutdown(self) -> None:
        """Stop pollers within the grace period, then flush state."""
        logger.info("Stopping GitOps agent...")
        assert self.stop_event is not None

        self.stop_event.set()
        self._remove_signal_handlers()

        tasks = list(self._poller_tasks.values())
        if tasks:
            timeout = self.config.agent.shutdown_timeout
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            if pending:
                logger.warning(
                    f"Shutdown timeout exceeded, cancelling {len(pending)} pollers"
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

            for name, task in self._poller_tasks.items():
                if not task.cancelled() and task.exception() is not None:
                    logger.error(f"Poller for '{name}' error: {task.exception()}")
        self._poller_tasks.clear()

        await self._cleanup()

        self.running = False
        self._stopped = True
        if self._done is not None:
            self._done.set()
        logger.info("GitOps agent stopped")

    async def _cleanup(self) -> None:
        """Close the runner and flush the state store."""
        if self.runner is not None:
            try:
                await self.runner.close()
            except Exception as e:
                logger.error(f"Error closing action runner: {e}")

        if self.store is not None:
            try:
                self.store.close()
            except StateStoreError as e:
                logger.error(f"Failed to save state: {e}")

    async def stop(self) -> None:
        """Trigger graceful shutdown and wait for the final state flush.

        Safe to call more than once.
        """
        if self._stopped or not self._initialized:
            return

        assert self.stop_event is not None and self._done is not None

        if self.running:
            self.stop_event.set()
            await self._done.wait()
            return

        # Initialized but never started.
        self._stopped = True
        self.stop_event.set()
        await self._cleanup()
        self._done.set()

    def request_reload(self) -> None:
        """Ask the control loop to reload configuration."""
        if self.control_loop is not None:
            self.control_loop.post_signal(ControlSignal.RELOAD)

    def request_force_check(self) -> None:
        """Ask the control loop to force-check every repository."""
        if self.control_loop is not None:
            self.control_loop.post_signal(ControlSignal.FORCE_CHECK)

    def get_status(self) -> dict[str, Any]:
        """Get agent health and progress information."""
        status: dict[str, Any] = {
            "running": self.running,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "repositories": {
                name: poller.get_status()
                for name, poller in self.registry.snapshot().items()
            },
            "control_loop": dict(self.control_loop.stats) if self.control_loop else {},
            "events": {
                "queued": self.events.qsize() if self.events else 0,
                "dropped": self.events.dropped if self.events else 0,
            },
        }

        if self.config_loader.config is not None:
            status["config"] = get_config_summary(self.config_loader.config)

        if self.store is not None:
            status["state"] = self.store.snapshot().model_dump(mode="json")

        return status
