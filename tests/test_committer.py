"""Tests for the commit cycle: staging, message, commit and the chained push."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from git_scribe.committer import Committer
from git_scribe.config import Config
from git_scribe.errors import ProviderRequestError, VcsError
from git_scribe.git_wrapper import GitRepo
from git_scribe.messages import GeneratedMessage, MessageGenerator, MessageSource
from git_scribe.state import CommitOutcome, RepositoryState
from git_scribe.status import RepoStatus, StatusChannel
from git_scribe.sync import SyncCoordinator


@pytest.fixture
def conf() -> Config:
    conf = Config()
    conf.sync.auto_push = "off"
    return conf


def _committer(conf: Config, messages=None) -> Committer:
    state = RepositoryState(enabled=True)
    status = StatusChannel()
    sync = SyncCoordinator(state, conf, status, repo_for=lambda: None)
    sync.push = AsyncMock(return_value=True)
    if messages is None:
        messages = MagicMock(spec=MessageGenerator)
        messages.generate = AsyncMock(
            return_value=GeneratedMessage("Update readme", MessageSource.AI, "claude")
        )
    return Committer(state, conf, messages, sync, status)


def _log(run_git, repo: Path) -> list[str]:
    return run_git(repo, "log", "--format=%s").splitlines()


@pytest.mark.asyncio
async def test_commit_cycle(git_repo: Path, conf: Config, run_git) -> None:
    (git_repo / "README.md").write_text("changed\n")
    committer = _committer(conf)

    attempt = await committer.run(GitRepo(git_repo))

    assert attempt.outcome == CommitOutcome.COMMITTED
    assert attempt.message == "Update readme"
    assert attempt.source == MessageSource.AI
    assert _log(run_git, git_repo)[0] == "Update readme"
    diff = committer.messages.generate.await_args.args[0]
    assert "+changed" in diff
    assert committer.status.current == RepoStatus.ENABLED
    assert not committer.state.committing
    committer.sync.push.assert_not_awaited()


@pytest.mark.asyncio
async def test_timestamp_message_when_ai_disabled(
    git_repo: Path, conf: Config, run_git
) -> None:
    conf.ai.enabled = False
    conf.core.message_format = "wip %Y"
    (git_repo / "new.txt").write_text("new\n")
    committer = _committer(conf, MessageGenerator(conf, {}))

    attempt = await committer.run(GitRepo(git_repo))

    assert attempt.outcome == CommitOutcome.COMMITTED
    assert attempt.source == MessageSource.TIMESTAMP
    assert _log(run_git, git_repo)[0].startswith("wip ")


@pytest.mark.asyncio
async def test_no_changes_is_skipped(git_repo: Path, conf: Config) -> None:
    committer = _committer(conf)

    attempt = await committer.run(GitRepo(git_repo))

    assert attempt.outcome == CommitOutcome.SKIPPED
    assert attempt.reason == "no changes to commit"
    committer.messages.generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_below_threshold_is_skipped(git_repo: Path, conf: Config) -> None:
    conf.core.min_lines_changed = 50
    (git_repo / "README.md").write_text("changed\n")
    committer = _committer(conf)

    attempt = await committer.run(GitRepo(git_repo))

    assert attempt.outcome == CommitOutcome.SKIPPED
    assert attempt.reason == "below change threshold"


@pytest.mark.asyncio
async def test_cycle_in_flight_is_skipped(git_repo: Path, conf: Config) -> None:
    committer = _committer(conf)
    committer.state.committing = True

    attempt = await committer.run(GitRepo(git_repo))

    assert attempt.reason == "commit already in progress"
    assert committer.state.committing


@pytest.mark.asyncio
async def test_disable_during_message_discards_commit(
    git_repo: Path, conf: Config, run_git
) -> None:
    """A result computed for an older generation is never committed or pushed."""
    conf.sync.auto_push = "on-commit"
    (git_repo / "README.md").write_text("changed\n")
    committer = _committer(conf)

    async def disable_midway(diff: str, cwd: Path | None = None) -> GeneratedMessage:
        committer.state.enabled = False
        committer.state.teardown()
        return GeneratedMessage("Too late", MessageSource.AI, "claude")

    committer.messages.generate.side_effect = disable_midway

    attempt = await committer.run(GitRepo(git_repo))

    assert attempt.outcome == CommitOutcome.ABORTED
    assert _log(run_git, git_repo) == ["initial"]
    committer.sync.push.assert_not_awaited()
    # Freshly staged files stay staged.
    assert await GitRepo(git_repo).staged_paths() == ["README.md"]


@pytest.mark.asyncio
async def test_commit_chains_push(git_repo: Path, conf: Config) -> None:
    conf.sync.auto_push = "on-commit"
    (git_repo / "README.md").write_text("changed\n")
    committer = _committer(conf)
    repo = GitRepo(git_repo)

    await committer.run(repo)

    committer.sync.push.assert_awaited_once_with(repo)


@pytest.mark.asyncio
async def test_provider_failure_aborts(git_repo: Path, conf: Config) -> None:
    (git_repo / "README.md").write_text("changed\n")
    committer = _committer(conf)
    committer.messages.generate.side_effect = ProviderRequestError("HTTP 401")

    attempt = await committer.run(GitRepo(git_repo))

    assert attempt.outcome == CommitOutcome.ABORTED
    assert "HTTP 401" in attempt.reason
    assert committer.status.current == RepoStatus.ERROR
    assert not committer.state.committing


@pytest.mark.asyncio
async def test_commit_failure_aborts(git_repo: Path, conf: Config, mocker: MagicMock) -> None:
    (git_repo / "README.md").write_text("changed\n")
    mocker.patch.object(
        GitRepo, "commit", side_effect=VcsError("Git error", ["commit"], "hook failed")
    )
    committer = _committer(conf)

    attempt = await committer.run(GitRepo(git_repo))

    assert attempt.outcome == CommitOutcome.ABORTED
    assert attempt.reason == "Commit failed: hook failed"
    committer.sync.push.assert_not_awaited()
