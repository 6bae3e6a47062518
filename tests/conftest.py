"""Pytest configuration and shared fixtures."""

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

import pytest

# Isolate git from the user's config so commits work on any machine.
_GIT_TEST_ENV = {
    **os.environ,
    "GIT_CONFIG_NOSYSTEM": "1",
    "HOME": "/dev/null",
    "GIT_AUTHOR_NAME": "Test",
    "GIT_AUTHOR_EMAIL": "test@test.com",
    "GIT_COMMITTER_NAME": "Test",
    "GIT_COMMITTER_EMAIL": "test@test.com",
    "GIT_TERMINAL_PROMPT": "0",
}


@pytest.fixture
def beads_dir(tmp_path: Path) -> Path:
    """Create a temporary .beads directory with an empty issue log."""
    path = tmp_path / ".beads"
    path.mkdir()
    (path / "issues.jsonl").touch()
    return path


@pytest.fixture
def empty_beads_dir(tmp_path: Path) -> Path:
    """Create a temporary .beads directory without an issue log."""
    path = tmp_path / ".beads"
    path.mkdir()
    return path


@dataclass
class GitRepo:
    """A temporary git repository with a .beads directory."""

    path: Path
    beads_dir: Path

    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Run a git command in this repo."""
        return subprocess.run(
            ["git", *args],
            cwd=self.path,
            capture_output=True,
            text=True,
            check=check,
            env=_GIT_TEST_ENV,
        )

    def commit_all(self, message: str) -> str:
        """Stage all changes, commit, and return the new HEAD hash."""
        self.git("add", "-A")
        self.git("commit", "-m", message)
        return self.git("rev-parse", "HEAD").stdout.strip()


@pytest.fixture(scope="session")
def _git_template_dir(tmp_path_factory: pytest.TempPathFactory) -> str:
    """Empty template dir to skip copying sample hooks during git init."""
    return str(tmp_path_factory.mktemp("git-tpl"))


@pytest.fixture
def git_repo(tmp_path: Path, _git_template_dir: str) -> GitRepo:
    """Create a git repository whose first commit holds an empty issue log."""
    beads = tmp_path / ".beads"
    beads.mkdir()
    (beads / "issues.jsonl").touch()

    subprocess.run(
        ["git", "init", "-b", "main", "--template", _git_template_dir, str(tmp_path)],
        check=True,
        capture_output=True,
        env=_GIT_TEST_ENV,
    )
    repo = GitRepo(path=tmp_path, beads_dir=beads)
    repo.commit_all("Initial commit with empty .beads")
    return repo
