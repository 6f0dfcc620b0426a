import logging

from .config import Config
from .constants import APP_NAME
from .errors import CommitError, DiffError, ProviderError, StagingError, VcsError
from .git_wrapper import GitRepo
from .messages import MessageGenerator
from .stager import ChangeStager
from .state import CommitAttempt, CommitOutcome, RepositoryState
from .status import RepoStatus, StatusChannel
from .sync import SyncCoordinator

logger = logging.getLogger(APP_NAME)


class Committer:
    """Runs one commit cycle: stage, diff, message, commit, then push.

    Attributes:
        state (RepositoryState): Shared flags; `committing` guards the cycle.
        config (Config): Live configuration (replaced on reload).
        messages (MessageGenerator): Produces the commit message.
        sync (SyncCoordinator): Pushes after a successful commit.
        status (StatusChannel): Where transitions are published.
    """

    def __init__(
        self,
        state: RepositoryState,
        config: Config,
        messages: MessageGenerator,
        sync: SyncCoordinator,
        status: StatusChannel,
    ):
        self.state = state
        self.config = config
        self.messages = messages
        self.sync = sync
        self.status = status

    async def run(self, repo: GitRepo) -> CommitAttempt:
        """Commits the repository's changes.

        A cycle that finds another one in flight returns immediately. If the
        engine is disabled while the cycle runs, its result is discarded: no
        commit and no push.

        Args:
            repo (GitRepo): The repository to commit.

        Returns:
            CommitAttempt: The record of what happened. Fatal errors are
            reported through the outcome and the error status, never raised.
        """
        attempt = CommitAttempt(repo.path)

        # 1. Guard Clauses (checked and set before the first await).
        if self.state.committing:
            attempt.reason = "commit already in progress"
            logger.debug(f"Commit already in progress; skipping {repo.path}")
            return attempt
        self.state.committing = True
        generation = self.state.generation

        try:
            self.status.publish(RepoStatus.SYNCING)

            # 2. Stage.
            stage = await ChangeStager(repo, self.config).stage()
            attempt.stage = stage
            if not stage.ready:
                attempt.reason = (
                    "below change threshold" if stage.below_threshold else "no changes to commit"
                )
                logger.info(f"Commit skipped for {repo.path}: {attempt.reason}")
                return attempt

            # 3. Message.
            diff = ""
            if self.config.ai.enabled:
                try:
                    diff = await repo.staged_diff()
                except VcsError as e:
                    raise DiffError(f"Failed to read staged diff: {e.stderr or e}") from e
            message = await self.messages.generate(diff, cwd=repo.path)
            attempt.message, attempt.source = message.text, message.source

            if generation != self.state.generation:
                attempt.outcome = CommitOutcome.ABORTED
                attempt.reason = "engine disabled during commit"
                logger.info(f"Discarding commit for {repo.path}: {attempt.reason}")
                return attempt

            # 4. Commit.
            try:
                await repo.commit(message.text, no_verify=self.config.core.no_verify)
            except VcsError as e:
                raise CommitError(f"Commit failed: {e.stderr or e}") from e

            attempt.outcome = CommitOutcome.COMMITTED
            logger.info(f"Committed {repo.path}: {message.text} ({message.source})")

        except (StagingError, DiffError, CommitError, ProviderError, VcsError) as e:
            attempt.outcome = CommitOutcome.ABORTED
            attempt.reason = str(e)
            logger.error(f"Commit aborted for {repo.path}: {e}")
            self.status.publish(RepoStatus.ERROR, str(e))
            return attempt
        finally:
            self.state.committing = False
            if attempt.outcome == CommitOutcome.SKIPPED:
                self.sync.settle()

        # 5. Chain the push.
        self.sync.settle()
        if self.config.sync.auto_push == "on-commit" and generation == self.state.generation:
            await self.sync.push(repo)
        return attempt
