import logging
from pathlib import Path

from .auth import AuthManager
from .committer import Committer
from .config import Config
from .constants import APP_NAME
from .credentials import SecretStore
from .diagnostics import DiagnosticsProvider, build_diagnostics
from .git_wrapper import GitRepo, find_repo_root
from .locator import ExecutableLocator
from .messages import MessageGenerator
from .providers import AIProvider, build_providers
from .scheduler import CommitScheduler
from .state import CommitAttempt, RepositoryState
from .status import RepoStatus, StatusChannel
from .sync import SyncCoordinator

logger = logging.getLogger(APP_NAME)


class Engine:
    """Wires the commit engine together and owns its lifecycle.

    One engine serves one or more workspace roots. Save events are routed to
    the repository containing the saved file; commands without a file use the
    repository of the last qualifying save (or the first root).

    Attributes:
        roots (list[Path]): Resolved repository roots being served.
        config (Config): The active configuration.
        state (RepositoryState): Flags, timers and the disable generation.
        status (StatusChannel): Status transitions for the presenter.
    """

    def __init__(
        self,
        roots: list[Path],
        config: Config,
        *,
        locator: ExecutableLocator | None = None,
        store: SecretStore | None = None,
        providers: dict[str, AIProvider] | None = None,
        diagnostics: DiagnosticsProvider | None = None,
    ):
        self.roots = roots
        self.config = config
        self.state = RepositoryState()
        self.status = StatusChannel()

        self.locator = locator or ExecutableLocator()
        self.auth = AuthManager(config, store or SecretStore(), self.locator)
        self.providers = providers or build_providers(config, self.auth)
        self.messages = MessageGenerator(config, self.providers)
        self.sync = SyncCoordinator(self.state, config, self.status, self.repo)
        self.committer = Committer(
            self.state, config, self.messages, self.sync, self.status
        )
        self._custom_diagnostics = diagnostics is not None
        self.scheduler = CommitScheduler(
            self.state,
            config,
            diagnostics or build_diagnostics(config.core.validation_command),
            self._on_commit_due,
        )

    @classmethod
    async def for_paths(cls, paths: list[Path], config: Config | None = None, **kwargs) -> "Engine":
        """Creates an engine for the repositories containing the given paths.

        Raises:
            ValueError: If none of the paths is inside a git repository.
        """
        roots: list[Path] = []
        for path in paths:
            root = await find_repo_root(path.resolve())
            if root is not None and root not in roots:
                roots.append(root)
        if not roots:
            raise ValueError(f"Not inside a git repository: {', '.join(map(str, paths))}")
        return cls(roots, config or Config.load(roots[0]), **kwargs)

    def repo(self) -> GitRepo | None:
        """Returns the preferred repository."""
        root = self.scheduler.preferred_root or (self.roots[0] if self.roots else None)
        if root is None:
            return None
        try:
            return GitRepo(root)
        except ValueError as e:
            logger.warning(f"{e}")
            return None

    # --- Lifecycle ---

    async def enable(self) -> None:
        """Turns the engine on: timers start and saves begin to commit.

        With `core.pull_on_open`, a clean working tree is pulled first.
        """
        if self.state.enabled:
            return
        self.state.enabled = True
        self.status.publish(RepoStatus.ENABLED)
        self.sync.refresh_timers()
        logger.info(f"Auto-commit enabled for {', '.join(map(str, self.roots))}")

        if self.config.core.pull_on_open:
            repo = self.repo()
            if repo is not None and not await repo.has_changes():
                await self.sync.pull(repo)

    def disable(self) -> None:
        """Turns the engine off. In-flight cycles finish but discard their result."""
        if not self.state.enabled:
            return
        self.state.enabled = False
        self.state.teardown()
        self.status.publish(RepoStatus.DISABLED)
        logger.info("Auto-commit disabled")

    async def shutdown(self) -> None:
        """Commits pending work (with `core.commit_on_close`) and disables."""
        if self.state.enabled and self.config.core.commit_on_close:
            repo = self.repo()
            if repo is not None and await repo.has_changes():
                logger.info("Committing pending changes before shutdown")
                self.state.cancel_pending()
                await self.committer.run(repo)
        self.disable()

    def reload(self, config: Config) -> None:
        """Applies a new configuration to every component.

        Toggles the engine when `core.enabled` changed and rebuilds the sync
        timers.
        """
        was_enabled = self.config.core.enabled
        self.config = config
        for component in (self.auth, self.messages, self.sync, self.committer, self.scheduler):
            component.config = config
        for provider in self.providers.values():
            provider.config = config
        if not self._custom_diagnostics:
            self.scheduler.diagnostics = build_diagnostics(config.core.validation_command)

        if config.core.enabled and not was_enabled:
            self.state.spawn(self.enable())
        elif not config.core.enabled and was_enabled:
            self.disable()
        else:
            self.sync.refresh_timers()
        logger.debug("Configuration reloaded")

    # --- Events and commands ---

    async def on_save(self, path: Path) -> bool:
        return await self.scheduler.on_save(path)

    def _on_commit_due(self, root: Path) -> None:
        try:
            repo = GitRepo(root)
        except ValueError as e:
            logger.warning(f"{e}")
            return
        self.state.spawn(self.committer.run(repo))

    async def commit_now(self) -> CommitAttempt | None:
        """Runs a commit cycle immediately, cancelling any pending one."""
        repo = self.repo()
        if repo is None:
            return None
        self.state.cancel_pending()
        return await self.committer.run(repo)

    async def push_now(self) -> bool:
        return await self.sync.push()

    async def pull_now(self) -> bool:
        return await self.sync.pull()
