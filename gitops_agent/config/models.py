"""Pydantic configuration models for the GitOps agent.

This module defines the configuration schema with type safety, validation,
and environment variable substitution support.

The configuration hierarchy follows this structure:
- Config: Root configuration (agent settings plus repositories)
- AgentConfig: Agent-wide settings (directories, logging, default intervals)
- RepositoryConfig: One watched repository and the action it triggers
- ActionConfig: Shell or webhook action descriptor

Environment variables are substituted using the format ${VAR_NAME} with
optional defaults: ${VAR_NAME:default_value}

Durations accept compound strings such as ``5m`` or ``1h30m`` as well as
plain numbers of seconds, and are stored as float seconds.
"""

import os
import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .utils import parse_duration


class LogLevel(str, Enum):
    """Supported logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class ActionType(str, Enum):
    """Kinds of side effects an agent can trigger."""

    SHELL = "shell"
    WEBHOOK = "webhook"


class BaseConfigModel(BaseModel):
    """Base configuration model with environment variable substitution."""

    model_config = ConfigDict(
        validate_assignment=True,
        extra="forbid",
    )

    @model_validator(mode="before")
    @classmethod
    def substitute_env_vars(cls, values: Any) -> Any:
        """Substitute environment variables in string values.

        Supports formats:
        - ${VAR_NAME} - Required environment variable
        - ${VAR_NAME:default} - Optional with default value

        Args:
            values: Raw configuration values

        Returns:
            Configuration values with environment variables substituted

        Raises:
            ValueError: If required environment variable is missing
        """
        if not isinstance(values, dict):
            return values

        def substitute_value(value: Any) -> Any:
            if isinstance(value, str):
                pattern = r"\$\{([^}:]+)(?::([^}]*))?\}"

                def replacer(match: re.Match[str]) -> str:
                    var_name = match.group(1)
                    default_value = match.group(2)

                    env_value = os.getenv(var_name)
                    if env_value is not None:
                        return env_value
                    elif default_value is not None:
                        return default_value
                    else:
                        raise ValueError(
                            f"Required environment variable '{var_name}' not found"
                        )

                return re.sub(pattern, replacer, value)
            elif isinstance(value, dict):
                return {k: substitute_value(v) for k, v in value.items()}
            elif isinstance(value, list):
                return [substitute_value(item) for item in value]
            else:
                return value

        return {key: substitute_value(value) for key, value in values.items()}


class AgentConfig(BaseConfigModel):
    """Agent-wide settings."""

    name: str = Field(default="gitops-agent", description="Agent instance name")

    log_level: LogLevel = Field(
        default=LogLevel.INFO, description="Agent logging level"
    )

    log_file: str | None = Field(
        default=None, description="Log file path (stderr when unset)"
    )

    state_dir: str = Field(
        default="/var/lib/gitops-agent",
        description="Directory holding the persisted state file",
    )

    cache_dir: str | None = Field(
        default=None,
        description="Directory for local working copies (defaults to state_dir/repos)",
    )

    poll_interval: float = Field(
        default=300.0, gt=0, description="Default repository poll interval in seconds"
    )

    maintenance_interval: float = Field(
        default=10.0,
        gt=0,
        description="Control loop maintenance tick in seconds",
    )

    shutdown_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Grace period for pollers to stop in seconds",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Accept lower-case level names and the ``warn`` alias."""
        if isinstance(v, str):
            v = v.strip().upper()
            if v == "WARN":
                return LogLevel.WARNING.value
        return v

    @field_validator(
        "poll_interval", "maintenance_interval", "shutdown_timeout", mode="before"
    )
    @classmethod
    def parse_interval(cls, v: Any) -> float:
        """Parse duration strings into seconds."""
        return parse_duration(v)

    @property
    def effective_cache_dir(self) -> str:
        """Directory where working copies are cloned."""
        return self.cache_dir or os.path.join(self.state_dir, "repos")


class ActionConfig(BaseConfigModel):
    """Action executed when a watched path changes."""

    type: ActionType = Field(description="Action type (shell or webhook)")

    script: str | None = Field(default=None, description="Shell script to run")

    url: str | None = Field(default=None, description="Webhook target URL")

    timeout: float = Field(
        default=600.0, gt=0, description="Action timeout in seconds"
    )

    env: dict[str, str] = Field(
        default_factory=dict, description="Custom variables passed to the action"
    )

    headers: dict[str, str] = Field(
        default_factory=dict, description="Extra HTTP headers for webhook actions"
    )

    @field_validator("timeout", mode="before")
    @classmethod
    def parse_timeout(cls, v: Any) -> float:
        """Parse duration strings into seconds."""
        return parse_duration(v)

    @field_validator("env", mode="before")
    @classmethod
    def stringify_env(cls, v: Any) -> Any:
        """Allow numbers and booleans as custom variable values."""
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        return v

    @model_validator(mode="after")
    def validate_action_target(self) -> "ActionConfig":
        """Ensure the selected action type has what it needs."""
        if self.type == ActionType.SHELL and not (self.script and self.script.strip()):
            raise ValueError("action.script is required for shell action")
        if self.type == ActionType.WEBHOOK and not self.url:
            raise ValueError("action.url is required for webhook action")
        return self


class RepositoryConfig(BaseConfigModel):
    """Configuration for a single watched repository."""

    name: str = Field(description="Unique repository name")

    url: str = Field(description="Remote repository URL")

    branch: str = Field(default="main", description="Branch to watch")

    watch_paths: list[str] = Field(description="Watched paths or path prefixes")

    poll_interval: float | None = Field(
        default=None,
        gt=0,
        description="Poll interval in seconds (inherits agent default)",
    )

    action: ActionConfig = Field(description="Action triggered on change")

    @field_validator("name", "url")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Reject blank names and URLs."""
        if not v or not v.strip():
            raise ValueError("value cannot be empty")
        return v.strip()

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Keep the name usable as a single directory under the cache dir."""
        if "/" in v or "\\" in v or v.strip() in (".", ".."):
            raise ValueError(f"repository name cannot be a path: {v!r}")
        return v

    @field_validator("branch", mode="before")
    @classmethod
    def default_branch(cls, v: Any) -> Any:
        """Treat an empty branch as the default branch."""
        if v is None or (isinstance(v, str) and not v.strip()):
            return "main"
        return v

    @field_validator("watch_paths")
    @classmethod
    def validate_watch_paths(cls, v: list[str]) -> list[str]:
        """Ensure at least one non-empty watch path is configured."""
        paths = [path.strip() for path in v if path and path.strip()]
        if not paths:
            raise ValueError("watch_paths must contain at least one path")
        return paths

    @field_validator("poll_interval", mode="before")
    @classmethod
    def parse_interval(cls, v: Any) -> float | None:
        """Parse duration strings into seconds."""
        if v is None or v == "":
            return None
        return parse_duration(v)


class Config(BaseConfigModel):
    """Root configuration."""

    agent: AgentConfig = Field(
        default_factory=AgentConfig, description="Agent-wide settings"
    )

    repositories: list[RepositoryConfig] = Field(
        default_factory=list, description="Watched repositories"
    )

    include_repositories: list[str] = Field(
        default_factory=list,
        description="Glob patterns, files or directories with more repositories",
    )

    @model_validator(mode="after")
    def validate_repositories(self) -> "Config":
        """Validate that repositories exist and have unique names."""
        if not self.repositories:
            raise ValueError("At least one repository must be configured")

        seen: set[str] = set()
        for repo in self.repositories:
            if repo.name in seen:
                raise ValueError(f"Duplicate repository name '{repo.name}'")
            seen.add(repo.name)

        return self

    def get_repository(self, name: str) -> RepositoryConfig | None:
        """Find a repository configuration by name."""
        for repo in self.repositories:
            if repo.name == name:
                return repo
        return None

    def repository_poll_interval(self, repo: RepositoryConfig) -> float:
        """Effective poll interval for a repository in seconds."""
        return repo.poll_interval or self.agent.poll_interval

    def repository_local_path(self, name: str) -> str:
        """Local working copy path for a repository."""
        return os.path.join(self.agent.effective_cache_dir, name)
