"""Durable per-repository state for the GitOps agent."""

from .exceptions import StateLoadError, StatePersistError, StateStoreError
from .models import STATE_SCHEMA_VERSION, ActionStatus, GlobalState, RepositoryState
from .store import STATE_FILE_NAME, StateStore

__all__ = [
    "STATE_FILE_NAME",
    "STATE_SCHEMA_VERSION",
    "ActionStatus",
    "GlobalState",
    "RepositoryState",
    "StateLoadError",
    "StatePersistError",
    "StateStore",
    "StateStoreError",
]
