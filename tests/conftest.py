"""Shared fixtures: isolated configuration state and throwaway git repositories."""

import logging
import subprocess
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_scribe.config import Config


@pytest.fixture(autouse=True)
def isolated_config(tmp_path_factory: pytest.TempPathFactory, mocker: MagicMock) -> Iterator[Path]:
    """Points the global config and the preferences layer at empty temp files.

    Also clears the cached global layer before and after every test.
    """
    state = tmp_path_factory.mktemp("state")
    mocker.patch("git_scribe.config.CONFIG_FILE", state / "config.toml")
    mocker.patch("git_scribe.config.PREFERENCES_FILE", state / "preferences.json")
    Config._global_cache = None
    yield state
    Config._global_cache = None


def git(cwd: Path, *args: str) -> str:
    """Runs a git command synchronously for test setup."""
    result = subprocess.run(
        ["git", *args], cwd=cwd, check=True, capture_output=True, text=True
    )
    return result.stdout


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Creates a repository with one initial commit on 'main'."""
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q", "-b", "main")
    git(repo, "config", "user.email", "dev@example.com")
    git(repo, "config", "user.name", "Dev")
    git(repo, "config", "commit.gpgsign", "false")
    (repo / "README.md").write_text("hello\n")
    git(repo, "add", "README.md")
    git(repo, "commit", "-q", "-m", "initial")
    return repo


@pytest.fixture
def remote_repo(tmp_path: Path, git_repo: Path) -> Path:
    """Adds a bare 'origin' remote to `git_repo` (no upstream configured yet)."""
    remote = tmp_path / "remote.git"
    git(tmp_path, "init", "-q", "--bare", str(remote))
    git(git_repo, "remote", "add", "origin", str(remote))
    return remote


@pytest.fixture
def run_git():
    """Exposes the synchronous git helper to tests."""
    return git


@pytest.fixture
def restore_logger() -> Iterator[logging.Logger]:
    """Restores the app logger's handlers and level after the test."""
    logger = logging.getLogger("git-scribe")
    handlers, level = list(logger.handlers), logger.level
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)
