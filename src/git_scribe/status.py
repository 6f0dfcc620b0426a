import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum

from rich.console import Console
from rich.markup import escape

from .constants import APP_NAME
from .system import SystemStrategy

logger = logging.getLogger(APP_NAME)


class RepoStatus(StrEnum):
    DISABLED = "disabled"
    ENABLED = "enabled"
    SYNCING = "syncing"
    ERROR = "error"


@dataclass(frozen=True)
class StatusEvent:
    status: RepoStatus
    detail: str = ""


class StatusChannel:
    """Publishes status transitions to whoever presents them.

    Repeated publications of the same status are collapsed. The latest value
    is always readable through `current`.
    """

    def __init__(self) -> None:
        self.current = RepoStatus.DISABLED
        self._queue: asyncio.Queue[StatusEvent] = asyncio.Queue()

    def publish(self, status: RepoStatus, detail: str = "") -> None:
        if status == self.current and not detail:
            return
        self.current = status
        self._queue.put_nowait(StatusEvent(status, detail))

    async def next(self) -> StatusEvent:
        return await self._queue.get()


_STYLES = {
    RepoStatus.DISABLED: "[dim]disabled[/dim]",
    RepoStatus.ENABLED: "[bold green]enabled[/bold green]",
    RepoStatus.SYNCING: "[bold cyan]syncing...[/bold cyan]",
    RepoStatus.ERROR: "[bold red]error[/bold red]",
}


class StatusPresenter:
    """Prints status transitions and raises a desktop notification on errors."""

    def __init__(
        self, channel: StatusChannel, console: Console, system: SystemStrategy
    ):
        self.channel = channel
        self.console = console
        self.system = system

    def render(self, event: StatusEvent) -> None:
        line = f"Status: {_STYLES[event.status]}"
        if event.detail:
            # Git stderr may contain brackets such as "! [rejected]".
            line += f" [dim]({escape(event.detail)})[/dim]"
        self.console.print(line)

    async def show(self, event: StatusEvent) -> None:
        """Renders an event; errors also raise a desktop notification.

        The notifier blocks on a subprocess, so it runs in a worker thread.
        """
        self.render(event)
        if event.status == RepoStatus.ERROR:
            await asyncio.to_thread(
                self.system.notify, f"{APP_NAME} error", event.detail or "Operation failed"
            )

    async def run(self) -> None:
        while True:
            await self.show(await self.channel.next())
