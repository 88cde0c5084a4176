"""Configuration utilities and helper functions.

Durations in the configuration file are written the way operators write
them on the command line (``30s``, ``5m``, ``1h30m``). This module turns
them into seconds and provides a few helpers for summarizing a loaded
configuration without leaking secrets.
"""

import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import Config

_UNIT_TO_SECONDS: dict[str, float] = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 0.001,
}

_DURATION_PATTERN = re.compile(r"(?P<value>\d+(?:\.\d+)?)(?P<unit>ms|h|m|s)")

_SENSITIVE_KEYS = ("token", "password", "secret", "authorization", "api_key")


def parse_duration(value: str | int | float) -> float:
    """Return the number of seconds represented by a duration value.

    Plain numbers are taken as seconds. Strings may combine units, so
    ``"1h30m"`` is 5400 seconds and ``"1.5s"`` is 1.5 seconds.

    Args:
        value: Duration string or number of seconds

    Returns:
        Duration in seconds

    Raises:
        ValueError: If the value cannot be parsed or is negative
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")

    if isinstance(value, int | float):
        if value < 0:
            raise ValueError(f"Duration cannot be negative: {value!r}")
        return float(value)

    if not isinstance(value, str):
        raise ValueError(f"Invalid duration: {value!r}")

    cleaned = value.strip()
    if not cleaned:
        raise ValueError("Duration cannot be empty")

    try:
        seconds = float(cleaned)
    except ValueError:
        pass
    else:
        if seconds < 0:
            raise ValueError(f"Duration cannot be negative: {value!r}")
        return seconds

    total = 0.0
    cursor = 0
    for match in _DURATION_PATTERN.finditer(cleaned):
        if match.start() != cursor:
            raise ValueError(f"Invalid duration format: {value!r}")
        total += float(match.group("value")) * _UNIT_TO_SECONDS[match.group("unit")]
        cursor = match.end()

    if cursor != len(cleaned):
        raise ValueError(f"Invalid duration format: {value!r}")

    return total


def mask_sensitive_values(config_dict: dict[str, Any]) -> dict[str, Any]:
    """Mask sensitive values in a configuration dictionary.

    Args:
        config_dict: Configuration dictionary

    Returns:
        Copy of the dictionary with sensitive values replaced
    """

    def mask_value(key: str, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: mask_value(k, v) for k, v in value.items()}
        if isinstance(value, list):
            return [mask_value(key, item) for item in value]
        if isinstance(value, str) and any(
            marker in key.lower() for marker in _SENSITIVE_KEYS
        ):
            return "***" if value else value
        return value

    return {key: mask_value(key, value) for key, value in config_dict.items()}


def get_config_summary(config: "Config") -> dict[str, Any]:
    """Get a summary of the loaded configuration.

    Args:
        config: Loaded configuration

    Returns:
        Summary without sensitive information
    """
    return {
        "agent": {
            "name": config.agent.name,
            "log_level": config.agent.log_level.value,
            "state_dir": config.agent.state_dir,
            "cache_dir": config.agent.effective_cache_dir,
            "poll_interval": config.agent.poll_interval,
        },
        "repositories": [
            {
                "name": repo.name,
                "branch": repo.branch,
                "watch_paths": list(repo.watch_paths),
                "action": repo.action.type.value,
                "action_env": mask_sensitive_values(dict(repo.action.env)),
                "action_headers": mask_sensitive_values(dict(repo.action.headers)),
            }
            for repo in config.repositories
        ],
    }
