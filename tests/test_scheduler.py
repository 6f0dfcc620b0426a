"""Tests for the debounced save trigger and its gates."""

import asyncio
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_scribe.config import Config
from git_scribe.diagnostics import Diagnostic, NullDiagnostics, Severity
from git_scribe.errors import VcsError
from git_scribe.scheduler import CommitScheduler
from git_scribe.state import RepositoryState


class FakeDiagnostics:
    def __init__(self, found: list[Diagnostic]):
        self.found = found
        self.paths: list[Path] = []

    async def diagnostics_for(self, path: Path) -> list[Diagnostic]:
        self.paths.append(path)
        return self.found


@pytest.fixture
def conf() -> Config:
    conf = Config()
    conf.sync.commit_delay = 0.05
    return conf


def _scheduler(conf: Config, diagnostics=None, enabled: bool = True) -> CommitScheduler:
    state = RepositoryState(enabled=enabled)
    return CommitScheduler(state, conf, diagnostics or NullDiagnostics(), MagicMock())


@pytest.mark.asyncio
async def test_burst_of_saves_fires_once(git_repo: Path, conf: Config) -> None:
    """Saves inside the idle window coalesce into a single cycle."""
    scheduler = _scheduler(conf)
    saved = git_repo / "README.md"

    for _ in range(3):
        assert await scheduler.on_save(saved)
        await asyncio.sleep(0.01)

    await asyncio.sleep(0.15)

    scheduler.on_fire.assert_called_once_with(git_repo.resolve())
    assert scheduler.state.pending is None


@pytest.mark.asyncio
async def test_each_save_rearms_the_timer(git_repo: Path, conf: Config) -> None:
    scheduler = _scheduler(conf)

    await scheduler.on_save(git_repo / "README.md")
    first = scheduler.state.pending
    await scheduler.on_save(git_repo / "README.md")

    assert first is not None
    assert first.handle.cancelled()
    assert scheduler.state.pending is not first
    scheduler.state.cancel_pending()


@pytest.mark.asyncio
async def test_disabled_engine_ignores_saves(git_repo: Path, conf: Config) -> None:
    scheduler = _scheduler(conf, enabled=False)

    assert not await scheduler.on_save(git_repo / "README.md")
    assert scheduler.state.pending is None


@pytest.mark.asyncio
async def test_save_outside_repository_is_ignored(tmp_path: Path, conf: Config) -> None:
    outside = tmp_path / "loose.txt"
    outside.write_text("x")
    scheduler = _scheduler(conf)

    assert not await scheduler.on_save(outside)
    assert scheduler.preferred_root is None


@pytest.mark.asyncio
async def test_pattern_mismatch_is_ignored(git_repo: Path, conf: Config) -> None:
    conf.core.file_pattern = "**/*.py"
    scheduler = _scheduler(conf)

    assert not await scheduler.on_save(git_repo / "README.md")
    # The repository is still remembered for commands.
    assert scheduler.preferred_root == git_repo.resolve()


@pytest.mark.asyncio
async def test_excluded_branch_is_ignored(git_repo: Path, conf: Config) -> None:
    conf.core.exclude_branches = ["main"]
    scheduler = _scheduler(conf)

    assert not await scheduler.on_save(git_repo / "README.md")

    conf.core.exclude_branches = ["release"]
    assert await scheduler.on_save(git_repo / "README.md")
    scheduler.state.cancel_pending()


@pytest.mark.asyncio
async def test_unreadable_branch_suppresses(
    git_repo: Path, conf: Config, mocker: MagicMock
) -> None:
    conf.core.exclude_branches = ["release"]
    mocker.patch(
        "git_scribe.scheduler.GitRepo.current_branch",
        side_effect=VcsError("Git error", ["branch"], "fatal"),
    )
    scheduler = _scheduler(conf)

    assert not await scheduler.on_save(git_repo / "README.md")


@pytest.mark.parametrize(
    ("level", "severity", "armed"),
    [
        ("error", Severity.ERROR, False),
        ("error", Severity.WARNING, True),
        ("warning", Severity.WARNING, False),
        ("warning", Severity.INFO, True),
        ("none", Severity.ERROR, True),
    ],
)
@pytest.mark.asyncio
async def test_validation_level(
    git_repo: Path, conf: Config, level: str, severity: Severity, armed: bool
) -> None:
    conf.core.commit_validation_level = level
    diagnostics = FakeDiagnostics([Diagnostic(severity, "problem")])
    scheduler = _scheduler(conf, diagnostics)

    assert await scheduler.on_save(git_repo / "README.md") is armed
    scheduler.state.cancel_pending()


@pytest.mark.asyncio
async def test_disable_before_fire_cancels(git_repo: Path, conf: Config) -> None:
    scheduler = _scheduler(conf)

    await scheduler.on_save(git_repo / "README.md")
    scheduler.state.enabled = False
    scheduler.state.teardown()
    await asyncio.sleep(0.1)

    scheduler.on_fire.assert_not_called()
