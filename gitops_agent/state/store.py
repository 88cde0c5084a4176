"""Durable state store with debounced persistence.

The store owns the process-wide ``GlobalState``. Pollers and the control
loop go through ``get``, ``upsert`` and ``snapshot``; nobody touches the
underlying mapping directly. Reads may run concurrently, writes are
exclusive.

Every update schedules a save after a short debounce delay so that bursts
of updates coalesce into a single disk write. ``close`` cancels any
pending save and writes synchronously, so the final state is never lost.
"""

import contextlib
import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .exceptions import StateLoadError, StatePersistError, StateStoreError
from .models import GlobalState, RepositoryState

logger = logging.getLogger(__name__)

STATE_FILE_NAME = "state.json"


class ReadWriteLock:
    """Lock allowing many concurrent readers or one exclusive writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextlib.contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextlib.contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class StateStore:
    """Thread-safe persisted record of per-repository state."""

    def __init__(
        self,
        state_dir: str | Path,
        debounce_seconds: float = 1.0,
        auto_save: bool = True,
    ):
        """Open the store, loading existing state when possible.

        A missing or corrupt state file is replaced by a fresh empty state.

        Args:
            state_dir: Directory holding the state file (created if needed)
            debounce_seconds: Delay before a scheduled save hits the disk
            auto_save: Whether updates schedule saves automatically

        Raises:
            StateStoreError: If the state directory cannot be created
        """
        self.state_dir = Path(state_dir)
        self.file_path = self.state_dir / STATE_FILE_NAME
        self.debounce_seconds = debounce_seconds
        self.auto_save = auto_save

        self._lock = ReadWriteLock()
        self._save_lock = threading.Lock()
        self._pending_save: threading.Timer | None = None
        self._running_saves: set[threading.Thread] = set()
        self._closed = False

        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StateStoreError(
                f"Failed to create state directory {self.state_dir}: {e}"
            ) from e

        try:
            self._state = self.load()
        except StateLoadError as e:
            logger.info(f"Starting with empty state: {e}")
            self._state = GlobalState()

    def load(self) -> GlobalState:
        """Read and parse the state file.

        Returns:
            Parsed global state

        Raises:
            StateLoadError: If the file is missing, unreadable or invalid
        """
        try:
            raw = self.file_path.read_bytes()
        except OSError as e:
            raise StateLoadError(f"Failed to read state file: {e}") from e

        try:
            state = GlobalState.model_validate_json(raw)
        except (ValidationError, UnicodeDecodeError) as e:
            raise StateLoadError(f"Failed to parse state file: {e}") from e

        for name, repo_state in state.repositories.items():
            if not repo_state.name:
                repo_state.name = name

        return state

    def get(self, name: str) -> RepositoryState | None:
        """Get a copy of a repository's state, or None if never recorded."""
        with self._lock.read():
            repo_state = self._state.repositories.get(name)
            return repo_state.model_copy() if repo_state else None

    def upsert(self, name: str, **changes: Any) -> RepositoryState:
        """Create or update a repository's state.

        Only the given fields change; the rest keep their current values.

        Args:
            name: Repository name
            **changes: RepositoryState fields to set

        Returns:
            Copy of the updated repository state
        """
        unknown = set(changes) - set(RepositoryState.model_fields)
        if unknown:
            raise ValueError(f"Unknown repository state fields: {sorted(unknown)}")

        with self._lock.write():
            current = self._state.repositories.get(name) or RepositoryState()
            updated = current.model_copy(update={**changes, "name": name})
            self._state.repositories[name] = updated
            self._state.last_updated = datetime.now(UTC)
            if self.auto_save:
                self._schedule_save_locked()
            return updated.model_copy()

    def snapshot(self) -> GlobalState:
        """Return a deep copy of the whole state."""
        with self._lock.read():
            return self._state.model_copy(deep=True)

    def save(self) -> None:
        """Write the state file synchronously.

        The file is replaced atomically so a crash mid-write never leaves a
        truncated document behind.

        Raises:
            StatePersistError: If the file cannot be written
        """
        with self._save_lock:
            # Snapshots and writes happen in the same order.
            with self._lock.read():
                payload = self._state.model_dump(mode="json")
            data = json.dumps(payload, indent=2)

            try:
                fd, tmp_path = tempfile.mkstemp(
                    dir=self.state_dir, prefix=".state-", suffix=".tmp"
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        f.write(data)
                    os.replace(tmp_path, self.file_path)
                except BaseException:
                    with contextlib.suppress(OSError):
                        os.unlink(tmp_path)
                    raise
            except OSError as e:
                raise StatePersistError(f"Failed to write state file: {e}") from e

        logger.debug(f"State saved to {self.file_path}")

    def schedule_save(self) -> None:
        """Schedule a debounced save, replacing any pending one."""
        with self._lock.write():
            self._schedule_save_locked()

    def _schedule_save_locked(self) -> None:
        if self._closed:
            return

        if self._pending_save is not None:
            self._pending_save.cancel()

        timer = threading.Timer(self.debounce_seconds, self._run_pending_save)
        timer.daemon = True
        self._pending_save = timer
        timer.start()

    def _run_pending_save(self) -> None:
        with self._lock.write():
            # A save superseded by a newer schedule leaves the write to it.
            if self._closed or self._pending_save is not threading.current_thread():
                return
            self._pending_save = None
            self._running_saves.add(threading.current_thread())

        try:
            self.save()
        except StateStoreError as e:
            # Retried on the next update that schedules a save.
            logger.error(f"Debounced state save failed: {e}")
        finally:
            with self._lock.write():
                self._running_saves.discard(threading.current_thread())

    @property
    def has_pending_save(self) -> bool:
        """Whether a debounced save is scheduled but not yet started."""
        with self._lock.read():
            return self._pending_save is not None

    def close(self) -> None:
        """Cancel any pending save and flush the state to disk.

        A debounced save already writing is waited for first, so the file
        holds the latest state once this returns.

        Raises:
            StatePersistError: If the final write fails
        """
        with self._lock.write():
            self._closed = True
            if self._pending_save is not None:
                self._pending_save.cancel()
                self._pending_save = None
            running = list(self._running_saves)

        for thread in running:
            thread.join()

        self.save()

