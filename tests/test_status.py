import asyncio
from unittest.mock import MagicMock

import pytest
from rich.console import Console

from git_scribe.status import RepoStatus, StatusChannel, StatusEvent, StatusPresenter


@pytest.mark.asyncio
async def test_channel_collapses_repeats() -> None:
    channel = StatusChannel()

    channel.publish(RepoStatus.DISABLED)
    channel.publish(RepoStatus.ENABLED)
    channel.publish(RepoStatus.ENABLED)
    channel.publish(RepoStatus.ERROR, "Push failed")
    channel.publish(RepoStatus.ERROR, "Pull failed")

    events = [await channel.next() for _ in range(3)]
    assert events == [
        StatusEvent(RepoStatus.ENABLED),
        StatusEvent(RepoStatus.ERROR, "Push failed"),
        StatusEvent(RepoStatus.ERROR, "Pull failed"),
    ]
    assert channel.current == RepoStatus.ERROR


@pytest.mark.asyncio
async def test_presenter_notifies_on_error() -> None:
    console = Console(record=True, width=120)
    system = MagicMock()
    presenter = StatusPresenter(StatusChannel(), console, system)

    await presenter.show(StatusEvent(RepoStatus.ENABLED))
    system.notify.assert_not_called()

    await presenter.show(StatusEvent(RepoStatus.ERROR, "Push failed: rejected"))

    system.notify.assert_called_once_with("git-scribe error", "Push failed: rejected")
    output = console.export_text()
    assert "Status: enabled" in output
    assert "Status: error (Push failed: rejected)" in output


@pytest.mark.parametrize(
    "detail",
    [
        "Commit failed: error: pathspec '[/tmp]' did not match",
        "Push failed: ! [rejected] main -> main (fetch first)",
    ],
)
def test_presenter_prints_brackets_verbatim(detail: str) -> None:
    """Git output is shown as text, never interpreted as console markup."""
    console = Console(record=True, width=200)
    presenter = StatusPresenter(StatusChannel(), console, MagicMock())

    presenter.render(StatusEvent(RepoStatus.ERROR, detail))

    assert f"Status: error ({detail})" in console.export_text()


@pytest.mark.asyncio
async def test_run_keeps_presenting_after_bracketed_detail() -> None:
    channel = StatusChannel()
    console = Console(record=True, width=200)
    presenter = StatusPresenter(channel, console, MagicMock())
    task = asyncio.create_task(presenter.run())

    channel.publish(RepoStatus.ERROR, "pathspec '[/tmp]' did not match")
    channel.publish(RepoStatus.ENABLED)
    for _ in range(20):
        await asyncio.sleep(0.01)
        if "Status: enabled" in console.export_text(clear=False):
            break
    assert not task.done()
    task.cancel()

    assert "Status: enabled" in console.export_text()
