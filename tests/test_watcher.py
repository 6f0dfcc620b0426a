"""Tests for the save and configuration watchers."""

import asyncio
from pathlib import Path

import pytest
from watchfiles import Change

from git_scribe.constants import LOCAL_CONFIG_NAME
from git_scribe.watcher import SaveFilter, config_paths, config_watcher, save_watcher


def test_save_filter() -> None:
    save_filter = SaveFilter()

    assert save_filter(Change.modified, "/repo/src/app.py")
    assert save_filter(Change.added, "/repo/notes.md")
    assert not save_filter(Change.deleted, "/repo/src/app.py")
    assert not save_filter(Change.modified, "/repo/.git/index")
    assert not save_filter(Change.modified, "/repo/pkg/__pycache__/mod.cpython-312.pyc")


def test_config_paths_cover_every_layer(tmp_path: Path) -> None:
    paths = config_paths([tmp_path])

    assert tmp_path / LOCAL_CONFIG_NAME in paths
    assert tmp_path / "pyproject.toml" in paths
    assert any(p.name == "preferences.json" for p in paths)


def test_config_watcher_only_reports_config_files(tmp_path: Path) -> None:
    async def reload() -> None:
        pass

    watcher = config_watcher([tmp_path], reload)

    assert watcher.recursive is False
    assert tmp_path.resolve() in watcher.paths
    assert watcher.watch_filter(Change.modified, str(tmp_path / LOCAL_CONFIG_NAME))
    assert not watcher.watch_filter(Change.modified, str(tmp_path / "main.py"))


@pytest.mark.asyncio
async def test_save_watcher_delivers_saves(tmp_path: Path) -> None:
    saved: list[Path] = []

    async def on_save(path: Path) -> None:
        saved.append(path)

    watcher = save_watcher([tmp_path], on_save)
    watcher.debounce = 20
    await watcher.start()
    try:
        # Give the native watcher a moment to register.
        await asyncio.sleep(0.2)
        (tmp_path / "draft.txt").write_text("hello")
        for _ in range(50):
            if saved:
                break
            await asyncio.sleep(0.1)
    finally:
        await watcher.stop()

    assert (tmp_path / "draft.txt").resolve() in {p.resolve() for p in saved}


@pytest.mark.asyncio
async def test_watcher_with_missing_paths_exits_quietly(tmp_path: Path) -> None:
    async def on_save(path: Path) -> None:
        pass

    watcher = save_watcher([tmp_path / "missing"], on_save)
    await watcher.start()
    await asyncio.sleep(0)
    await watcher.stop()
