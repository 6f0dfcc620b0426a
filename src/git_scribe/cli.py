import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console

from . import daemon, ops
from .auth import AuthManager
from .config import Config
from .constants import APP_NAME
from .credentials import SecretStore
from .engine import Engine
from .git_wrapper import GitRepo, find_repo_root
from .locator import ExecutableLocator
from .messages import MessageGenerator
from .providers import build_providers
from .state import CommitOutcome
from .status import RepoStatus

logger = logging.getLogger(APP_NAME)
console = Console()


def _fail(message: str) -> None:
    console.print(f"[bold red]ERROR:[/bold red] {message}")
    sys.exit(1)


async def _repo_root(path: Path) -> Path | None:
    return await find_repo_root(path.resolve())


async def _load_config(path: Path) -> Config:
    """Loads the configuration for the repository containing `path` (if any)."""
    return Config.load(await _repo_root(path))


def _auth(config: Config) -> AuthManager:
    return AuthManager(config, SecretStore(), ExecutableLocator())


async def _open_engine(path: Path) -> Engine:
    try:
        engine = await Engine.for_paths([path])
    except ValueError as e:
        _fail(str(e))
    daemon.setup_logging(interactive=True, config=engine.config)
    return engine


# --- Command handlers ---


async def run_commit(path: Path) -> None:
    """Runs one commit cycle now (pushing afterwards per `sync.auto_push`)."""
    engine = await _open_engine(path)
    with console.status("Committing...", spinner="dots"):
        attempt = await engine.commit_now()

    if attempt is None:
        _fail("Repository could not be opened.")
    if attempt.outcome == CommitOutcome.COMMITTED:
        console.print(f"[bold green]SUCCESS:[/bold green] Committed: {attempt.message}")
        if attempt.source is not None:
            console.print(f"Message source: {attempt.source}", style="dim")
    elif attempt.outcome == CommitOutcome.ABORTED:
        _fail(f"Commit aborted: {attempt.reason}")
    else:
        console.print(f"Nothing committed ({attempt.reason}).", style="dim")


async def run_sync(path: Path, operation: str) -> None:
    """Runs a push or a pull now."""
    engine = await _open_engine(path)
    with console.status(f"Running {operation}...", spinner="dots"):
        ok = await (engine.push_now() if operation == "push" else engine.pull_now())

    if ok:
        console.print(f"[bold green]SUCCESS:[/bold green] {operation.capitalize()} complete.")
    elif engine.status.current == RepoStatus.ERROR:
        _fail(f"{operation.capitalize()} failed. See the log for git's output.")
    else:
        console.print(
            f"Nothing to {operation} (no remote or upstream configured).", style="dim"
        )


async def run_status(path: Path) -> None:
    root = await _repo_root(path)
    config = Config.load(root)
    repo = GitRepo(root) if root is not None else None
    await ops.show_status(config, _auth(config), repo)


async def run_sign_in(path: Path, provider_id: str | None, api_key: bool) -> None:
    config = await _load_config(path)
    provider_id = provider_id or config.ai.provider
    if not await ops.sign_in(provider_id, config, _auth(config), force_api_key=api_key):
        sys.exit(1)


async def run_sign_out(path: Path, provider_id: str | None) -> None:
    config = await _load_config(path)
    if not ops.sign_out(provider_id or config.ai.provider, _auth(config)):
        sys.exit(1)


async def run_set_api_key(path: Path, provider_id: str | None) -> None:
    config = await _load_config(path)
    if not ops.set_api_key(provider_id or config.ai.provider, _auth(config)):
        sys.exit(1)


async def run_select_provider(path: Path, provider_id: str | None) -> None:
    config = await _load_config(path)
    if not ops.select_provider(provider_id, config):
        sys.exit(1)


async def run_select_model(path: Path, model: str | None) -> None:
    config = await _load_config(path)
    messages = MessageGenerator(config, build_providers(config, _auth(config)))
    if not await ops.select_model(model, config, messages):
        sys.exit(1)


async def run_providers(
    path: Path, enable: str | None, disable: str | None, use: str | None
) -> None:
    config = await _load_config(path)
    if enable or disable or use:
        if not ops.manage_providers(config, enable=enable, disable=disable, use=use):
            sys.exit(1)
        return
    await ops.show_providers(config, _auth(config))


class ScribeHelpFormatter(argparse.HelpFormatter):
    """Custom help formatter to streamline the CLI help output.

    This formatter intercepts the subparser action, strips the default
    metavar block, and groups the subcommands into logical categories
    with custom headers.
    """

    def _format_action(self, action: argparse.Action) -> str:
        if isinstance(action, argparse._SubParsersAction):
            parts = []

            groups = {
                "Engine": ["watch", "enable", "disable", "commit", "push", "pull"],
                "AI Providers": [
                    "sign-in",
                    "sign-out",
                    "set-api-key",
                    "select-provider",
                    "select-model",
                    "providers",
                ],
                "Inspection": ["status", "config", "log"],
                "General": ["help"],
            }

            subactions = list(self._iter_indented_subactions(action))

            for group_name, commands in groups.items():
                # Filter the standard argparse subactions into our defined groups
                group_actions = [a for a in subactions if a.dest in commands]
                if not group_actions:
                    continue

                # Inject the group header with standard argparse indentation
                parts.append(f"\n  {group_name}:\n")

                self._indent()
                for subaction in group_actions:
                    parts.append(self._format_action(subaction))
                self._dedent()

            return self._join_parts(parts)

        return super()._format_action(action)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        usage=argparse.SUPPRESS,
        formatter_class=ScribeHelpFormatter,
        add_help=False,  # Disable the default help injection
    )

    # Manually re-add the help flags but suppress them from the visual output
    parser.add_argument(
        "-h",
        "--help",
        action="help",
        default=argparse.SUPPRESS,
        help=argparse.SUPPRESS,
    )
    parser.add_argument(
        "-C",
        dest="path",
        type=Path,
        default=None,
        help=argparse.SUPPRESS,
    )

    subparsers = parser.add_subparsers(dest="command")

    watch_parser = subparsers.add_parser(
        "watch", help="Watch for saves and auto-commit (default)"
    )
    watch_parser.add_argument(
        "paths", nargs="*", type=Path, help="Repositories to watch (default: cwd)"
    )
    watch_parser.add_argument(
        "--background",
        action="store_true",
        help="Log to the rotating log file instead of stdout",
    )

    subparsers.add_parser("enable", help="Turn auto-commit on")
    subparsers.add_parser("disable", help="Turn auto-commit off")
    subparsers.add_parser("commit", help="Commit pending changes now")
    subparsers.add_parser("push", help="Push the current branch now")
    subparsers.add_parser("pull", help="Pull (rebase) the current branch now")

    sign_in_parser = subparsers.add_parser("sign-in", help="Sign in to an AI provider")
    sign_in_parser.add_argument("provider", nargs="?", help="claude, openai or copilot")
    sign_in_parser.add_argument(
        "--api-key", action="store_true", help="Enter an API key instead of CLI login"
    )
    sign_out_parser = subparsers.add_parser(
        "sign-out", help="Remove stored provider credentials"
    )
    sign_out_parser.add_argument("provider", nargs="?")
    key_parser = subparsers.add_parser("set-api-key", help="Store a provider API key")
    key_parser.add_argument("provider", nargs="?")

    provider_parser = subparsers.add_parser(
        "select-provider", help="Choose the AI provider"
    )
    provider_parser.add_argument("provider", nargs="?")
    model_parser = subparsers.add_parser(
        "select-model", help="Choose the model of the selected provider"
    )
    model_parser.add_argument("model", nargs="?")

    providers_parser = subparsers.add_parser(
        "providers", help="List, enable or disable providers"
    )
    providers_parser.add_argument("--enable", metavar="ID")
    providers_parser.add_argument("--disable", metavar="ID")
    providers_parser.add_argument("--use", metavar="ID", help="Enable and select")

    subparsers.add_parser("status", help="Show engine and repository status")
    config_parser = subparsers.add_parser(
        "config", help="Open global config file or view options"
    )
    config_parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List all available configuration options and their descriptions",
    )
    subparsers.add_parser("log", help="Tail the background log file")
    subparsers.add_parser("help", help="Show this help message")

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the git-scribe CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)
    path = args.path or Path.cwd()

    # Handle Subcommands
    if args.command == "help":
        parser.print_help()
        return
    elif args.command == "enable":
        ops.set_enabled(True)
        return
    elif args.command == "disable":
        ops.set_enabled(False)
        return
    elif args.command == "commit":
        asyncio.run(run_commit(path))
        return
    elif args.command in ("push", "pull"):
        asyncio.run(run_sync(path, args.command))
        return
    elif args.command == "sign-in":
        asyncio.run(run_sign_in(path, args.provider, args.api_key))
        return
    elif args.command == "sign-out":
        asyncio.run(run_sign_out(path, args.provider))
        return
    elif args.command == "set-api-key":
        asyncio.run(run_set_api_key(path, args.provider))
        return
    elif args.command == "select-provider":
        asyncio.run(run_select_provider(path, args.provider))
        return
    elif args.command == "select-model":
        asyncio.run(run_select_model(path, args.model))
        return
    elif args.command == "providers":
        asyncio.run(run_providers(path, args.enable, args.disable, args.use))
        return
    elif args.command == "status":
        asyncio.run(run_status(path))
        return
    elif args.command == "config":
        if getattr(args, "list", False):
            ops.show_config_reference()
        else:
            ops.open_config()
        return
    elif args.command == "log":
        ops.tail_log()
        return

    # Default Action (if no subcommand is run)
    paths = getattr(args, "paths", None) or [path]
    daemon.main(paths, interactive=not getattr(args, "background", False))


if __name__ == "__main__":
    main()
