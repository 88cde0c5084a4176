"""Configuration loading and management system.

This module loads the agent configuration from YAML files, merges in
repository definitions from included files, validates the result and
tracks the file's modification time so the control loop can detect
on-disk changes.

Included repository files may hold either a list of repositories or a
single repository mapping. An include entry can be a glob pattern, a
file path or a directory (every ``*.yaml`` file in it is loaded).
"""

import glob
import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .exceptions import (
    ConfigurationError,
    ConfigurationFileError,
    ConfigurationValidationError,
)
from .models import Config

logger = logging.getLogger(__name__)

_WILDCARD_CHARS = ("*", "?", "[")


class ConfigurationLoader:
    """Handles loading, validation and reloading of the agent configuration."""

    def __init__(self) -> None:
        """Initialize configuration loader."""
        self._config: Config | None = None
        self._config_file_path: Path | None = None
        self._last_mtime: float | None = None

    def load_from_file(self, config_path: str | Path) -> Config:
        """Load configuration from a YAML file.

        Args:
            config_path: Path to the YAML configuration file

        Returns:
            Loaded and validated configuration

        Raises:
            ConfigurationFileError: If a file cannot be read or parsed
            ConfigurationValidationError: If configuration validation fails
        """
        config_path = Path(config_path)

        if not config_path.exists():
            raise ConfigurationFileError(
                f"Configuration file not found: {config_path}",
                file_path=str(config_path),
            )

        if not config_path.is_file():
            raise ConfigurationFileError(
                f"Configuration path is not a file: {config_path}",
                file_path=str(config_path),
            )

        mtime = config_path.stat().st_mtime
        config_data = self._read_yaml(config_path)

        if config_data is None:
            config_data = {}

        if not isinstance(config_data, dict):
            raise ConfigurationFileError(
                f"Configuration root must be a mapping: {config_path}",
                file_path=str(config_path),
            )

        try:
            config_data = self._merge_includes(config_data, config_path.parent)
            config = self._build(config_data)
        except ConfigurationValidationError as e:
            e.file_path = str(config_path)
            raise

        self._config = config
        self._config_file_path = config_path.resolve()
        self._last_mtime = mtime

        logger.debug(
            f"Loaded configuration from {config_path} "
            f"({len(self._config.repositories)} repositories)"
        )
        return self._config

    def load_from_dict(self, config_data: dict[str, Any]) -> Config:
        """Load configuration from a dictionary.

        Args:
            config_data: Configuration data dictionary

        Returns:
            Loaded and validated configuration

        Raises:
            ConfigurationValidationError: If configuration validation fails
        """
        self._config = self._build(config_data)
        return self._config

    def reload(self) -> Config:
        """Reload configuration from the file it was last loaded from.

        The previously loaded configuration stays active when the reload
        fails.

        Returns:
            Reloaded configuration

        Raises:
            ConfigurationError: If nothing was loaded from a file or reload fails
        """
        if self._config_file_path is None:
            raise ConfigurationError(
                "Cannot reload: no configuration file was previously loaded"
            )

        return self.load_from_file(self._config_file_path)

    def is_modified(self) -> bool:
        """Check whether the configuration file changed since the last load.

        Returns:
            True when the file's modification time is newer than the one
            recorded at the last successful load
        """
        if self._config_file_path is None or self._last_mtime is None:
            return False

        try:
            mtime = self._config_file_path.stat().st_mtime
        except OSError:
            return False

        return mtime > self._last_mtime

    def _build(self, config_data: dict[str, Any]) -> Config:
        try:
            return Config(**config_data)
        except ValidationError as e:
            raise ConfigurationValidationError(
                f"Configuration validation failed with {e.error_count()} error(s)",
                validation_errors=e.errors(),
            ) from e
        except (TypeError, ValueError) as e:
            raise ConfigurationValidationError(
                f"Configuration validation failed: {e}"
            ) from e

    def _read_yaml(self, path: Path) -> Any:
        try:
            with open(path, encoding="utf-8") as f:
                return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationFileError(
                f"Failed to parse YAML configuration: {e}", file_path=str(path)
            ) from e
        except OSError as e:
            raise ConfigurationFileError(
                f"Failed to read configuration file: {e}", file_path=str(path)
            ) from e

    def _merge_includes(
        self, config_data: dict[str, Any], base_dir: Path
    ) -> dict[str, Any]:
        """Append repositories from ``include_repositories`` entries."""
        includes = config_data.get("include_repositories") or []
        if not includes:
            return config_data

        if not isinstance(includes, list):
            raise ConfigurationValidationError(
                "include_repositories must be a list of patterns"
            )

        repositories = list(config_data.get("repositories") or [])
        for pattern in includes:
            repositories.extend(self._load_repositories_from_pattern(pattern, base_dir))

        merged = dict(config_data)
        merged["repositories"] = repositories
        return merged

    def _load_repositories_from_pattern(
        self, pattern: str, base_dir: Path
    ) -> list[dict[str, Any]]:
        expanded = os.path.expanduser(str(pattern))
        if not os.path.isabs(expanded):
            expanded = str(base_dir / expanded)

        if not any(char in expanded for char in _WILDCARD_CHARS):
            path = Path(expanded)
            if not path.exists():
                raise ConfigurationFileError(
                    f"Included path not found: {path}", file_path=str(path)
                )
            if path.is_dir():
                return self._load_repositories_from_glob(str(path / "*.yaml"))
            return self._load_repositories_from_file(path)

        return self._load_repositories_from_glob(expanded)

    def _load_repositories_from_glob(self, pattern: str) -> list[dict[str, Any]]:
        repositories: list[dict[str, Any]] = []
        for match in sorted(glob.glob(pattern)):
            repositories.extend(self._load_repositories_from_file(Path(match)))
        return repositories

    def _load_repositories_from_file(self, path: Path) -> list[dict[str, Any]]:
        data = self._read_yaml(path)

        if data is None:
            return []
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            return [data]

        raise ConfigurationFileError(
            f"Included file must hold a repository or a list of repositories: {path}",
            file_path=str(path),
        )

    @property
    def config(self) -> Config | None:
        """Get the loaded configuration."""
        return self._config

    @property
    def config_file_path(self) -> Path | None:
        """Get the path to the loaded configuration file."""
        return self._config_file_path

    @property
    def is_loaded(self) -> bool:
        """Check if configuration has been loaded."""
        return self._config is not None
