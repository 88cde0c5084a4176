"""
Test configuration and fixtures for the GitOps agent tests.

Provides an in-memory version-control client, configuration dictionaries
and temporary state directories shared by unit and integration tests.
"""

from pathlib import Path
from typing import Any

import pytest

from gitops_agent.config.loader import ConfigurationLoader
from gitops_agent.config.models import Config
from gitops_agent.monitor.exceptions import GitCommandError, InvalidRepositoryError
from gitops_agent.monitor.git import VersionControlClient
from gitops_agent.state.store import StateStore


class FakeVersionControlClient(VersionControlClient):
    """In-memory stand-in for the git CLI.

    ``heads`` maps a branch to the commit the remote currently points at and
    ``diffs`` maps ``(old, new)`` pairs to the paths changed between them.
    """

    def __init__(self) -> None:
        self.heads: dict[str, str] = {}
        self.diffs: dict[tuple[str, str], list[str]] = {}
        self.cloned: set[str] = set()
        self.invalid_paths: set[str] = set()
        self.fail_fetch = False
        self.fail_diff = False
        self.calls: list[tuple[str, ...]] = []

    async def is_repository(self, local_path: str) -> bool:
        return local_path not in self.invalid_paths

    async def ensure_clone(self, url: str, branch: str, local_path: str) -> None:
        self.calls.append(("ensure_clone", url, branch, local_path))
        if local_path in self.invalid_paths:
            raise InvalidRepositoryError(f"Invalid git repository at {local_path}")
        self.cloned.add(local_path)

    async def fetch(self, local_path: str, branch: str) -> None:
        self.calls.append(("fetch", local_path, branch))
        if self.fail_fetch:
            raise GitCommandError("git fetch failed (exit 128): network down")

    async def resolve_ref(self, local_path: str, ref: str) -> str:
        self.calls.append(("resolve_ref", local_path, ref))
        branch = ref.split("/", 1)[1]
        if branch not in self.heads:
            raise GitCommandError(f"git rev-parse failed (exit 128): unknown {ref}")
        return self.heads[branch]

    async def diff_paths(self, local_path: str, old: str, new: str) -> list[str]:
        self.calls.append(("diff_paths", local_path, old, new))
        if self.fail_diff or (old, new) not in self.diffs:
            raise GitCommandError(f"git diff failed (exit 128): bad object {old}")
        return list(self.diffs[(old, new)])


@pytest.fixture
def fake_vcs() -> FakeVersionControlClient:
    """In-memory version-control client with branch ``main`` at ``c1``."""
    client = FakeVersionControlClient()
    client.heads["main"] = "c1"
    return client


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """Empty state directory."""
    path = tmp_path / "state"
    path.mkdir()
    return path


@pytest.fixture
def store(state_dir: Path):
    """State store with a short debounce, closed after the test."""
    store = StateStore(state_dir, debounce_seconds=0.05)
    yield store
    store.close()


@pytest.fixture
def repository_dict() -> dict[str, Any]:
    """Minimal repository definition."""
    return {
        "name": "svc-a",
        "url": "https://git.example.com/org/svc-a.git",
        "branch": "main",
        "watch_paths": ["deploy/", "config/app.yaml"],
        "poll_interval": "30s",
        "action": {"type": "shell", "script": "echo deployed", "timeout": "5s"},
    }


@pytest.fixture
def config_dict(tmp_path: Path, repository_dict: dict[str, Any]) -> dict[str, Any]:
    """Complete configuration with state under ``tmp_path``."""
    return {
        "agent": {
            "name": "test-agent",
            "log_level": "debug",
            "state_dir": str(tmp_path / "state"),
            "poll_interval": "1m",
            "maintenance_interval": "10s",
            "shutdown_timeout": "2s",
        },
        "repositories": [repository_dict],
    }


@pytest.fixture
def config(config_dict: dict[str, Any]) -> Config:
    """Validated configuration."""
    return Config(**config_dict)


@pytest.fixture
def config_loader(config_dict: dict[str, Any]) -> ConfigurationLoader:
    """Loader with ``config_dict`` already loaded."""
    loader = ConfigurationLoader()
    loader.load_from_dict(config_dict)
    return loader
