"""
Integration tests for the git CLI client.

Why: The unit tests use an in-memory client; these make sure the real git
     commands behave the way the change detector expects.

What: Tests clone, validation, fetch, ref resolution and diffs against a
      local bare repository, plus a full detection cycle.

How: Builds an origin repository in a temporary directory with the git
     executable and pushes commits to it between checks.
"""

import shutil
import subprocess
from pathlib import Path

import pytest

from gitops_agent.monitor.change_detection import ChangeDetector
from gitops_agent.monitor.exceptions import GitCommandError, InvalidRepositoryError
from gitops_agent.monitor.git import GitCLIClient

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(shutil.which("git") is None, reason="git not found"),
]

GIT_IDENTITY = ["-c", "user.name=Test", "-c", "user.email=test@example.com"]


def git(*args: str, cwd: Path) -> str:
    result = subprocess.run(
        ["git", *GIT_IDENTITY, *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


class Upstream:
    """Bare origin repository plus a working copy used to push commits."""

    def __init__(self, root: Path):
        self.bare = root / "origin.git"
        self.work = root / "work"
        git("init", "--bare", "--initial-branch=main", str(self.bare), cwd=root)
        git("clone", str(self.bare), str(self.work), cwd=root)
        git("checkout", "-B", "main", cwd=self.work)

    @property
    def url(self) -> str:
        return str(self.bare)

    def commit(self, files: dict[str, str], message: str = "update") -> str:
        for name, content in files.items():
            path = self.work / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        git("add", "-A", cwd=self.work)
        git("commit", "-m", message, cwd=self.work)
        git("push", "origin", "HEAD:main", cwd=self.work)
        return git("rev-parse", "HEAD", cwd=self.work)


@pytest.fixture
def upstream(tmp_path):
    """Origin repository with one initial commit."""
    repo = Upstream(tmp_path)
    repo.commit({"README.md": "hello\n", "deploy/app.yaml": "replicas: 1\n"}, "init")
    return repo


@pytest.fixture
def client():
    """Git CLI client with a short command timeout."""
    return GitCLIClient(command_timeout=30)


class TestGitCLIClient:
    """Tests for GitCLIClient against a real repository."""

    @pytest.mark.asyncio
    async def test_clone_and_resolve(self, client, upstream, tmp_path):
        """Test cloning a branch and resolving its remote head."""
        local_path = str(tmp_path / "cache" / "svc-a")

        await client.ensure_clone(upstream.url, "main", local_path)

        assert await client.is_repository(local_path)
        head = git("rev-parse", "HEAD", cwd=upstream.work)
        assert await client.resolve_ref(local_path, client.remote_ref("main")) == head

    @pytest.mark.asyncio
    async def test_fetch_and_diff(self, client, upstream, tmp_path):
        """Test that fetch sees new commits and diff lists changed paths."""
        local_path = str(tmp_path / "cache" / "svc-a")
        await client.ensure_clone(upstream.url, "main", local_path)
        old = await client.resolve_ref(local_path, "origin/main")

        new = upstream.commit({"deploy/app.yaml": "replicas: 2\n", "src/x.py": ""})
        await client.fetch(local_path, "main")

        assert await client.resolve_ref(local_path, "origin/main") == new
        assert sorted(await client.diff_paths(local_path, old, new)) == [
            "deploy/app.yaml",
            "src/x.py",
        ]

    @pytest.mark.asyncio
    async def test_existing_non_repository_is_invalid(
        self, client, upstream, tmp_path
    ):
        """Test that a non-repository directory is not auto-repaired."""
        local_path = tmp_path / "cache" / "svc-a"
        local_path.mkdir(parents=True)

        assert not await client.is_repository(str(local_path))
        with pytest.raises(InvalidRepositoryError):
            await client.ensure_clone(upstream.url, "main", str(local_path))

    @pytest.mark.asyncio
    async def test_diff_with_unknown_commit_fails(self, client, upstream, tmp_path):
        """Test that a diff against an unknown commit raises."""
        local_path = str(tmp_path / "cache" / "svc-a")
        await client.ensure_clone(upstream.url, "main", local_path)

        with pytest.raises(GitCommandError) as exc_info:
            await client.diff_paths(local_path, "0" * 40, "origin/main")

        assert exc_info.value.returncode != 0

    @pytest.mark.asyncio
    async def test_clone_of_missing_remote_fails(self, client, tmp_path):
        """Test that an unreachable remote raises GitCommandError."""
        with pytest.raises(GitCommandError, match="git clone failed"):
            await client.ensure_clone(
                str(tmp_path / "nowhere.git"), "main", str(tmp_path / "svc-a")
            )

    @pytest.mark.asyncio
    async def test_missing_git_binary(self, tmp_path):
        """Test that a missing executable raises GitCommandError."""
        client = GitCLIClient(git_binary=str(tmp_path / "no-git"))

        with pytest.raises(GitCommandError, match="Failed to start git"):
            await client.resolve_ref(str(tmp_path), "HEAD")


class TestDetectionWithGit:
    """End-to-end detection against a real repository."""

    @pytest.mark.asyncio
    async def test_detection_cycle(self, client, upstream, tmp_path):
        """
        Why: Detection must agree with git about what changed
        What: Tests first observation, no change, irrelevant and relevant commits
        How: Pushes commits upstream between detections
        """
        detector = ChangeDetector(client=client)
        local_path = str(tmp_path / "cache" / "svc-a")
        watch = ("deploy/",)

        async def detect(previous):
            return await detector.detect(
                upstream.url, "main", local_path, previous, watch
            )

        first = await detect("")
        assert first.changed_paths == watch

        unchanged = await detect(first.current_commit)
        assert not unchanged.commit_moved

        irrelevant_commit = upstream.commit({"README.md": "changed\n"})
        irrelevant = await detect(first.current_commit)
        assert irrelevant.current_commit == irrelevant_commit
        assert irrelevant.changed_paths == ()

        upstream.commit({"deploy/app.yaml": "replicas: 3\n"})
        relevant = await detect(irrelevant.current_commit)
        assert relevant.changed_paths == ("deploy/app.yaml",)
