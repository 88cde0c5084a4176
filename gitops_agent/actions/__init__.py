"""Shell and webhook actions triggered by repository changes."""

from .exceptions import ActionError, ActionExecutionError, ActionTimeoutError
from .runner import ENV_PREFIX, ActionRunner

__all__ = [
    "ENV_PREFIX",
    "ActionError",
    "ActionExecutionError",
    "ActionRunner",
    "ActionTimeoutError",
]
