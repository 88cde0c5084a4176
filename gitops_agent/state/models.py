"""Persisted state models.

The state file records, per repository, the last commit the agent
observed and the outcome of the last action it ran. The watermark
(``current_hash``) tracks what was observed, not what was acted upon.
"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

STATE_SCHEMA_VERSION = "1.0"


class ActionStatus(str, Enum):
    """Outcome of the last action run for a repository."""

    UNSET = ""
    SUCCESS = "success"
    FAILURE = "failure"


class RepositoryState(BaseModel):
    """Watermark and last action outcome for one repository."""

    name: str = ""
    last_fetch: datetime | None = None
    current_hash: str = ""
    last_action_executed: datetime | None = None
    last_action_status: ActionStatus = ActionStatus.UNSET
    last_error: str = ""

    @property
    def has_watermark(self) -> bool:
        """Whether a commit has ever been observed for this repository."""
        return bool(self.current_hash)


class GlobalState(BaseModel):
    """Root document of the state file."""

    version: str = STATE_SCHEMA_VERSION
    last_updated: datetime = Field(default_factory=lambda: datetime.now(UTC))
    repositories: dict[str, RepositoryState] = Field(default_factory=dict)
