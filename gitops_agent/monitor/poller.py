"""Per-repository poller.

A poller owns one repository's monitoring lifecycle:

    idle -> checking -> (no change | change detected) -> idle

and ends in ``stopped`` once the shared stop event is set. Three triggers
feed a single serialized check routine: the initial check at startup, the
periodic timer, and forced-check requests. Forced checks coalesce: asking
again while one is already pending does nothing.
"""

import asyncio
import contextlib
import logging
from datetime import UTC, datetime
from typing import Any

from ..state.store import StateStore
from .change_detection import ChangeDetector
from .events import ChangeEventQueue
from .exceptions import GitError
from .models import ChangeEvent, CheckOutcome, PollerStatus, WatchSpec

logger = logging.getLogger(__name__)


class RepositoryPoller:
    """Polls one repository and publishes change events."""

    def __init__(
        self,
        spec: WatchSpec,
        detector: ChangeDetector,
        store: StateStore,
        events: ChangeEventQueue,
        stop_event: asyncio.Event | None = None,
    ):
        """Initialize repository poller.

        Args:
            spec: What to watch
            detector: Change detector used for every poll cycle
            store: Shared state store holding the watermark
            events: Queue receiving change events
            stop_event: Shared shutdown signal
        """
        self.spec = spec
        self.detector = detector
        self.store = store
        self.events = events
        self.stop_event = stop_event or asyncio.Event()

        self.status = PollerStatus.IDLE
        self._force_event = asyncio.Event()
        self._check_lock = asyncio.Lock()

        self.stats: dict[str, Any] = {
            "checks": 0,
            "forced_checks": 0,
            "changes_detected": 0,
            "failed_checks": 0,
            "last_check_at": None,
            "last_outcome": None,
            "last_error": None,
        }

    @property
    def name(self) -> str:
        """Repository name."""
        return self.spec.name

    def force_check(self) -> bool:
        """Request an immediate check.

        Returns:
            False if a forced check was already pending and this one was
            coalesced into it
        """
        if self._force_event.is_set():
            logger.debug(f"Forced check already pending for '{self.name}'")
            return False

        self._force_event.set()
        return True

    @property
    def force_pending(self) -> bool:
        """Whether a forced check is waiting to run."""
        return self._force_event.is_set()

    async def run(self) -> None:
        """Run the poller until the stop event is set."""
        interval = self.spec.poll_interval
        logger.info(f"Starting poller for '{self.name}' (interval: {interval}s)")

        loop = asyncio.get_running_loop()

        try:
            if not self.stop_event.is_set():
                await self._safe_check(initial=True)

            next_tick = loop.time() + interval

            while not self.stop_event.is_set():
                trigger = await self._wait_for_trigger(next_tick - loop.time())

                if trigger == "stop":
                    break

                if trigger == "force":
                    self._force_event.clear()
                    self.stats["forced_checks"] += 1
                    logger.info(f"Forced check triggered for '{self.name}'")
                else:
                    next_tick += interval
                    now = loop.time()
                    if next_tick <= now:
                        # Missed ticks are skipped, not replayed.
                        next_tick = now + interval

                await self._safe_check()
        finally:
            self.status = PollerStatus.STOPPED
            logger.info(f"Stopped poller for '{self.name}'")

    async def _wait_for_trigger(self, timeout: float) -> str:
        """Wait for stop, a forced check, or the next tick."""
        if self.stop_event.is_set():
            return "stop"
        if self._force_event.is_set():
            return "force"

        stop_task = asyncio.create_task(self.stop_event.wait())
        force_task = asyncio.create_task(self._force_event.wait())
        try:
            await asyncio.wait(
                {stop_task, force_task},
                timeout=max(timeout, 0.0),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (stop_task, force_task):
                if not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

        if self.stop_event.is_set():
            return "stop"
        if self._force_event.is_set():
            return "force"
        return "tick"

    async def _safe_check(self, initial: bool = False) -> None:
        try:
            await self.check()
        except Exception as e:
            label = "Initial check" if initial else "Check"
            logger.error(f"{label} for '{self.name}' failed: {e}", exc_info=True)

    async def check(self) -> CheckOutcome:
        """Run one poll cycle.

        Cycles for the same repository never overlap. Git failures are
        logged and leave the stored state untouched; the next trigger
        retries from scratch.

        Returns:
            Outcome of the cycle
        """
        async with self._check_lock:
            self.status = PollerStatus.CHECKING
            self.stats["checks"] += 1
            self.stats["last_check_at"] = datetime.now(UTC)

            try:
                outcome = await self._check_repository()
            except GitError as e:
                self.stats["failed_checks"] += 1
                self.stats["last_error"] = str(e)
                logger.warning(f"Check failed for '{self.name}': {e}")
                outcome = CheckOutcome.FAILED
            finally:
                if self.status == PollerStatus.CHECKING:
                    self.status = PollerStatus.IDLE

            self.stats["last_outcome"] = outcome.value
            return outcome

    async def _check_repository(self) -> CheckOutcome:
        logger.debug(f"Checking repository '{self.name}'")

        previous = self.store.get(self.name)
        previous_commit = previous.current_hash if previous else ""

        result = await self.detector.detect(
            url=self.spec.url,
            branch=self.spec.branch,
            local_path=self.spec.local_path,
            previous_commit=previous_commit,
            watch_paths=self.spec.watch_paths,
        )

        if not result.commit_moved:
            logger.debug(f"No new commit for '{self.name}'")
            return CheckOutcome.NO_CHANGE

        # Watermark update and event emission happen without yielding to
        # the event loop, so they are atomic with respect to other tasks.
        self.store.upsert(
            self.name,
            current_hash=result.current_commit,
            last_fetch=datetime.now(UTC),
        )

        if not result.changed_paths:
            logger.info(
                f"Commit moved for '{self.name}' "
                f"({previous_commit[:8] or '<none>'} -> {result.current_commit[:8]}) "
                f"but no watched path changed"
            )
            return CheckOutcome.IRRELEVANT_CHANGE

        event = ChangeEvent(
            repository_name=self.name,
            files=result.changed_paths,
            old_hash=previous_commit,
            new_hash=result.current_commit,
        )
        self.stats["changes_detected"] += 1

        if self.events.offer(event):
            logger.info(
                f"Change detected in '{self.name}': {list(result.changed_paths)}"
            )

        return CheckOutcome.CHANGE_DETECTED

    def get_status(self) -> dict[str, Any]:
        """Get poller status for health reporting."""
        return {
            "status": self.status.value,
            "branch": self.spec.branch,
            "poll_interval": self.spec.poll_interval,
            "force_pending": self.force_pending,
            "event_pending": self.events.has_pending(self.name),
            "stats": dict(self.stats),
        }
