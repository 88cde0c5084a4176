"""Configuration management for the GitOps agent.

This package provides type-safe configuration management with support for:
- YAML configuration files with environment variable substitution
- Repository definitions split across included files
- Pydantic-based validation and type safety
- Modification tracking for hot reload

Example usage:
    from gitops_agent.config import ConfigurationLoader

    loader = ConfigurationLoader()
    config = loader.load_from_file("/etc/gitops-agent/config.yaml")
    interval = config.agent.poll_interval
"""

from .exceptions import (
    ConfigurationError,
    ConfigurationFileError,
    ConfigurationValidationError,
)
from .loader import ConfigurationLoader
from .models import (
    ActionConfig,
    ActionType,
    AgentConfig,
    Config,
    LogLevel,
    RepositoryConfig,
)
from .utils import get_config_summary, mask_sensitive_values, parse_duration

__all__ = [
    "ActionConfig",
    "ActionType",
    "AgentConfig",
    "Config",
    "ConfigurationError",
    "ConfigurationFileError",
    "ConfigurationLoader",
    "ConfigurationValidationError",
    "LogLevel",
    "RepositoryConfig",
    "get_config_summary",
    "mask_sensitive_values",
    "parse_duration",
]
