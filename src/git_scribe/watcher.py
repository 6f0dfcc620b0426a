"""File watching for save events and configuration changes, using watchfiles."""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path

from watchfiles import Change, DefaultFilter, awatch

from .constants import APP_NAME, CONFIG_FILE, LOCAL_CONFIG_NAME, PREFERENCES_FILE

logger = logging.getLogger(APP_NAME)

ChangeCallback = Callable[[set[tuple[Change, str]]], Awaitable[None]]


@dataclass
class FileWatcher:
    """Async watcher calling back with each debounced batch of changes."""

    paths: list[Path]
    """Files or directories to watch; missing ones are skipped."""

    callback: ChangeCallback
    """Awaited with every batch of changes."""

    watch_filter: Callable[[Change, str], bool] | None = field(default_factory=DefaultFilter)
    """Which changes to report. The default ignores VCS and cache directories."""

    recursive: bool = True
    debounce: int = 100
    """Debounce time in milliseconds."""

    _task: asyncio.Task[None] | None = field(default=None, repr=False)
    _stop_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    async def start(self) -> None:
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._watch_loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _watch_loop(self) -> None:
        existing = [str(p) for p in self.paths if p.exists()]
        if not existing:
            logger.debug(f"Nothing to watch among {self.paths}")
            return

        async for changes in awatch(
            *existing,
            watch_filter=self.watch_filter,
            debounce=self.debounce,
            recursive=self.recursive,
            stop_event=self._stop_event,
        ):
            try:
                await self.callback(changes)
            except Exception:
                # A failing handler must not stop the watcher.
                logger.exception("File change handler failed")


class SaveFilter(DefaultFilter):
    """Reports written files only, ignoring VCS internals and deletions."""

    def __call__(self, change: Change, path: str) -> bool:
        return change != Change.deleted and super().__call__(change, path)


def config_paths(roots: list[Path]) -> set[Path]:
    """Every file whose change should reload the configuration."""
    paths = {CONFIG_FILE, PREFERENCES_FILE}
    for root in roots:
        paths.add(root / LOCAL_CONFIG_NAME)
        paths.add(root / "pyproject.toml")
    return paths


def save_watcher(
    roots: list[Path], on_save: Callable[[Path], Awaitable[object]]
) -> FileWatcher:
    """Builds a watcher delivering one save event per written file."""

    async def dispatch(changes: set[tuple[Change, str]]) -> None:
        for path in sorted({p for _, p in changes}):
            await on_save(Path(path))

    return FileWatcher(list(roots), dispatch, watch_filter=SaveFilter())


def config_watcher(roots: list[Path], on_change: Callable[[], Awaitable[None]]) -> FileWatcher:
    """Builds a watcher calling `on_change` when any configuration file changes."""
    targets = {p.resolve() for p in config_paths(roots)}
    directories = sorted({p.parent for p in targets})

    def only_config(change: Change, path: str) -> bool:
        return Path(path).resolve() in targets

    async def dispatch(changes: set[tuple[Change, str]]) -> None:
        await on_change()

    return FileWatcher(directories, dispatch, watch_filter=only_config, recursive=False)
