import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

from .config import Config
from .constants import APP_NAME
from .diagnostics import DiagnosticsProvider, blocks_commit
from .errors import VcsError
from .git_wrapper import GitRepo, find_repo_root
from .stager import matches_pattern
from .state import PendingCommit, RepositoryState

logger = logging.getLogger(APP_NAME)


class CommitScheduler:
    """Debounces save events into commit cycles.

    Every qualifying save re-arms a single timer, so a burst of saves inside
    the idle window produces one cycle, keyed to the last save's repository.

    Attributes:
        state (RepositoryState): Owns the pending timer.
        config (Config): Live configuration (replaced on reload).
        diagnostics (DiagnosticsProvider): Validates saved files.
        on_fire (Callable[[Path], None]): Starts a cycle for a repository root.
        preferred_root (Path | None): The repository of the last qualifying save.
    """

    def __init__(
        self,
        state: RepositoryState,
        config: Config,
        diagnostics: DiagnosticsProvider,
        on_fire: Callable[[Path], None],
    ):
        self.state = state
        self.config = config
        self.diagnostics = diagnostics
        self.on_fire = on_fire
        self.preferred_root: Path | None = None

    async def on_save(self, path: Path) -> bool:
        """Handles a save event.

        Gates, in order: engine enabled, repository resolves, path matches the
        file glob, branch not excluded, no blocking diagnostics.

        Args:
            path (Path): The saved file.

        Returns:
            bool: True if the commit timer was (re)armed.
        """
        # 1. Guard Clauses.
        if not self.state.enabled:
            return False

        root = await find_repo_root(path)
        if root is None:
            return False
        self.preferred_root = root

        try:
            relative = path.resolve().relative_to(root).as_posix()
        except ValueError:
            return False
        if not matches_pattern(relative, self.config.core.file_pattern):
            logger.debug(f"Save ignored (pattern): {relative}")
            return False

        # 2. Branch exclusion. An unreadable branch also suppresses.
        if self.config.core.exclude_branches:
            try:
                branch = await GitRepo(root).current_branch()
            except (VcsError, ValueError) as e:
                logger.debug(f"Save ignored (branch unreadable): {e}")
                return False
            if branch in self.config.core.exclude_branches:
                logger.debug(f"Save ignored (branch '{branch}' excluded)")
                return False

        # 3. Validation.
        level = self.config.core.commit_validation_level
        if level != "none":
            found = await self.diagnostics.diagnostics_for(path)
            if blocks_commit(found, level):
                logger.info(f"Save ignored ({relative} has {level}-level diagnostics)")
                return False

        # The engine may have been disabled while the gates awaited.
        if not self.state.enabled:
            return False

        self.arm(root)
        return True

    def arm(self, root: Path) -> None:
        """Cancels any pending cycle and schedules one for `root`."""
        self.state.cancel_pending()
        loop = asyncio.get_running_loop()
        handle = loop.call_later(self.config.sync.commit_delay, self._fire, root)
        self.state.pending = PendingCommit(handle, root)
        logger.debug(f"Commit armed for {root} in {self.config.sync.commit_delay:g}s")

    def _fire(self, root: Path) -> None:
        self.state.pending = None
        if self.state.enabled:
            self.on_fire(root)
