import asyncio
import contextlib
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console

from .config import Config
from .constants import APP_NAME, LOG_FILE, PID_FILE
from .engine import Engine
from .status import StatusPresenter
from .system import get_system
from .watcher import config_watcher, save_watcher

logger = logging.getLogger(APP_NAME)

console = Console()
err_console = Console(stderr=True)

LOG_LEVELS = {"error": logging.ERROR, "info": logging.INFO, "debug": logging.DEBUG}


def setup_logging(interactive: bool, config: Config) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stdout. If False, logs to stderr and
                            to a rotating file.
        config (Config): Supplies the log level and the rotation size.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stream_handler = logging.StreamHandler(
        sys.stderr if not interactive else sys.stdout
    )
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if not interactive:
        # In background mode, rotate logs to file.
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=config.limits.max_log_size,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.setLevel(LOG_LEVELS.get(config.output.log_level, logging.INFO))


def read_pid() -> int | None:
    """Returns the PID of a running watcher, or None (stale files are ignored)."""
    try:
        pid = int(PID_FILE.read_text().strip())
    except (OSError, ValueError):
        return None
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return None
    except PermissionError:
        pass
    return pid


def _write_pid() -> None:
    try:
        PID_FILE.write_text(str(os.getpid()))
    except OSError as e:
        logger.warning(f"Could not write PID file: {e}")


async def run(paths: list[Path], interactive: bool = True) -> None:
    """Runs the engine until SIGINT/SIGTERM.

    Save events come from a recursive watch of every repository root;
    configuration files are watched separately and reloaded on change. On
    shutdown pending changes are committed when `core.commit_on_close` is set.

    Args:
        paths (list[Path]): Paths inside the repositories to serve.
        interactive (bool): Foreground (stdout logging) or background mode.

    Raises:
        ValueError: If no path is inside a git repository.
    """
    engine = await Engine.for_paths(paths)
    setup_logging(interactive, engine.config)

    presenter = StatusPresenter(engine.status, console, get_system())

    async def reload_config() -> None:
        Config.invalidate()
        engine.reload(Config.load(engine.roots[0]))

    saves = save_watcher(engine.roots, engine.on_save)
    configs = config_watcher(engine.roots, reload_config)

    # 1. Signal handling.
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    _write_pid()
    presenter_task = asyncio.create_task(presenter.run())
    try:
        # 2. Start.
        if engine.config.core.enabled:
            await engine.enable()
        else:
            console.print(
                "[yellow]Auto-commit is disabled.[/yellow] "
                f"Run '{APP_NAME} enable' to turn it on."
            )
        await saves.start()
        await configs.start()
        logger.info(f"Watching {', '.join(map(str, engine.roots))}")

        await stop.wait()
    finally:
        # 3. Teardown.
        await saves.stop()
        await configs.stop()
        await engine.shutdown()
        # Let the presenter print the final transitions.
        await asyncio.sleep(0)
        presenter_task.cancel()
        try:
            with contextlib.suppress(asyncio.CancelledError):
                await presenter_task
        finally:
            PID_FILE.unlink(missing_ok=True)
            logger.info("Watcher stopped")


def main(paths: list[Path] | None = None, interactive: bool = True) -> None:
    """Entry point of the `watch` command.

    Args:
        paths (list[Path] | None): Repository paths. Defaults to the current
                                   directory.
        interactive (bool, optional): Foreground mode. Defaults to True.
    """
    if read_pid() is not None:
        err_console.print(
            f"[bold yellow]WARNING:[/bold yellow] Another watcher is running "
            f"(PID {read_pid()})."
        )
    try:
        asyncio.run(run(paths or [Path.cwd()], interactive=interactive))
    except ValueError as e:
        err_console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
