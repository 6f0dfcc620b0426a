import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from .constants import APP_NAME
from .messages import MessageSource
from .stager import StageResult

logger = logging.getLogger(APP_NAME)


class CommitOutcome(StrEnum):
    COMMITTED = "committed"
    SKIPPED = "skipped"
    ABORTED = "aborted"


@dataclass
class CommitAttempt:
    """The record of one commit cycle.

    Attributes:
        repo_path (Path): The repository the cycle ran in.
        stage (StageResult | None): What staging did (None if it never ran).
        message (str): The commit message used.
        source (MessageSource | None): Whether the message came from AI.
        outcome (CommitOutcome): committed, skipped or aborted.
        reason (str): Why the cycle was skipped or aborted.
    """

    repo_path: Path
    stage: StageResult | None = None
    message: str = ""
    source: MessageSource | None = None
    outcome: CommitOutcome = CommitOutcome.SKIPPED
    reason: str = ""


@dataclass
class PendingCommit:
    """The armed debounce timer and the repository it will commit."""

    handle: asyncio.TimerHandle
    repo_path: Path

    def cancel(self) -> None:
        self.handle.cancel()


class IntervalTimer:
    """Calls a function at a fixed interval from an owned task.

    The callback must not block; it is expected to spawn its work.
    """

    def __init__(self, interval: float, callback: Callable[[], Any], name: str):
        self.interval = interval
        self.callback = callback
        self.name = name
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._loop(), name=self.name)

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.callback()


@dataclass
class RepositoryState:
    """In-flight flags and owned timers of the engine.

    Each flag is true only while its operation runs; an operation that finds
    its flag set returns immediately. `generation` increases on every
    disable so in-flight work can tell that its result is stale.
    """

    enabled: bool = False
    committing: bool = False
    pushing: bool = False
    pulling: bool = False
    generation: int = 0
    pending: PendingCommit | None = None
    push_timer: IntervalTimer | None = None
    pull_timer: IntervalTimer | None = None
    tasks: set[asyncio.Task] = field(default_factory=set)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Runs a coroutine in the background, keeping a reference until done."""
        task = asyncio.create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self.tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Background operation crashed: {task.exception()!r}",
                exc_info=task.exception(),
            )

    def cancel_pending(self) -> None:
        if self.pending is not None:
            self.pending.cancel()
            self.pending = None

    def stop_timers(self) -> None:
        for timer in (self.push_timer, self.pull_timer):
            if timer is not None:
                timer.stop()
        self.push_timer = self.pull_timer = None

    def teardown(self) -> None:
        """Cancels every timer and marks in-flight work stale."""
        self.cancel_pending()
        self.stop_timers()
        self.generation += 1
