import logging
from collections.abc import Callable, Coroutine
from typing import Any

from .config import Config
from .constants import APP_NAME
from .errors import VcsError
from .git_wrapper import GitRepo
from .state import IntervalTimer, RepositoryState
from .status import RepoStatus, StatusChannel

logger = logging.getLogger(APP_NAME)

PUSH_ARGS = {
    "push": [],
    "force-push": ["--force"],
    "force-push-with-lease": ["--force-with-lease"],
}


class SyncCoordinator:
    """Pushes and pulls the engine's repository.

    Push and pull are guarded by independent in-flight flags: a call that
    finds its operation already running returns at once. Failures publish an
    error status but never disable the engine.

    Attributes:
        state (RepositoryState): Shared flags and timers.
        config (Config): Live configuration (replaced on reload).
        status (StatusChannel): Where transitions are published.
        repo_for (Callable[[], GitRepo | None]): Resolves the preferred repository.
    """

    def __init__(
        self,
        state: RepositoryState,
        config: Config,
        status: StatusChannel,
        repo_for: Callable[[], GitRepo | None],
    ):
        self.state = state
        self.config = config
        self.status = status
        self.repo_for = repo_for

    def settle(self) -> None:
        """Publishes the resting status after an operation succeeds."""
        self.status.publish(
            RepoStatus.ENABLED if self.state.enabled else RepoStatus.DISABLED
        )

    async def push(self, repo: GitRepo | None = None) -> bool:
        """Pushes the current branch.

        Without an upstream the branch is published with `push -u`; otherwise
        `sync.push_mode` selects plain, forced or lease-guarded pushing. A
        successful push chains a pull when `sync.auto_pull` is 'on-push'.

        Args:
            repo (GitRepo | None): The repository. Defaults to the preferred one.

        Returns:
            bool: True if a push ran and succeeded.
        """
        # Checked and set before the first await.
        if self.state.pushing:
            logger.debug("Push already in progress; skipping.")
            return False
        self.state.pushing = True
        generation = self.state.generation

        try:
            repo = repo or self.repo_for()
            if repo is None or not await repo.has_remote():
                return False
            upstream = await repo.upstream()
            remote = self.config.core.remote_name
            # Publishing a new branch needs the configured remote itself.
            if upstream is None and not await repo.has_remote(remote):
                logger.info(f"No upstream and no remote named '{remote}'; skipping push.")
                return False

            self.status.publish(RepoStatus.SYNCING)
            if upstream is None:
                branch = await repo.current_branch()
                args = ["-u", remote, branch]
                logger.info(f"No upstream; publishing {branch} to {remote}")
            else:
                args = PUSH_ARGS[self.config.sync.push_mode]
            await repo.push(args)
            logger.info(f"Pushed {repo.path}")
        except VcsError as e:
            logger.error(f"Push failed for {repo.path if repo else '?'}: {e}")
            self.status.publish(RepoStatus.ERROR, f"Push failed: {e.stderr or e}")
            return False
        finally:
            self.state.pushing = False

        self.settle()
        if self.config.sync.auto_pull == "on-push" and generation == self.state.generation:
            await self.pull(repo)
        return True

    async def pull(self, repo: GitRepo | None = None) -> bool:
        """Rebases the current branch onto its upstream.

        Returns:
            bool: True if a pull ran and succeeded. Repositories without a
            remote or upstream are left alone.
        """
        if self.state.pulling:
            logger.debug("Pull already in progress; skipping.")
            return False
        self.state.pulling = True

        try:
            repo = repo or self.repo_for()
            if repo is None or not await repo.has_remote():
                return False
            if await repo.upstream() is None:
                logger.debug(f"No upstream for {repo.path}; skipping pull.")
                return False

            self.status.publish(RepoStatus.SYNCING)
            await repo.pull_rebase()
            logger.info(f"Pulled {repo.path}")
        except VcsError as e:
            logger.error(f"Pull failed for {repo.path if repo else '?'}: {e}")
            self.status.publish(RepoStatus.ERROR, f"Pull failed: {e.stderr or e}")
            return False
        finally:
            self.state.pulling = False

        self.settle()
        return True

    def refresh_timers(self) -> None:
        """Recreates the interval timers from the current sync settings.

        Timers only run while the engine is enabled. A tick spawns the
        operation without waiting for it, so a tick that lands during an
        in-flight operation is dropped by the flag.
        """
        self.state.stop_timers()
        if not self.state.enabled:
            return

        sync = self.config.sync
        if sync.auto_push == "after-delay":
            self.state.push_timer = self._start_timer(sync.push_delay, self.push, "push")
        if sync.auto_pull == "after-delay":
            self.state.pull_timer = self._start_timer(sync.pull_delay, self.pull, "pull")

    def _start_timer(
        self,
        interval: float,
        operation: Callable[[], Coroutine[Any, Any, bool]],
        name: str,
    ) -> IntervalTimer | None:
        if interval <= 0:
            logger.warning(f"Ignoring non-positive {name} interval ({interval}s).")
            return None
        timer = IntervalTimer(interval, lambda: self.state.spawn(operation()), f"{name}-timer")
        timer.start()
        logger.debug(f"Auto-{name} every {interval:g}s")
        return timer
