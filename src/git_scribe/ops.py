import asyncio
import dataclasses
import logging
import os
import re
import subprocess
import sys

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text

from .auth import AuthManager, validate_api_key
from .config import Config, ProviderConfig, save_preference
from .constants import APP_NAME, CONFIG_FILE, LOG_FILE, PROVIDER_IDS
from .credentials import API_KEY, OAUTH_TOKEN
from .daemon import read_pid
from .errors import VcsError
from .git_wrapper import GitRepo
from .messages import MessageGenerator

console = Console()
logger = logging.getLogger(APP_NAME)

PROVIDER_NAMES = {
    "claude": "Anthropic Claude",
    "openai": "OpenAI",
    "copilot": "GitHub Models",
}


def provider_name(provider_id: str) -> str:
    return PROVIDER_NAMES.get(provider_id, provider_id)


def _check_provider(provider_id: str, config: Config) -> bool:
    """Prints a warning and returns False for unknown or disabled providers."""
    if provider_id not in PROVIDER_IDS:
        console.print(
            f"[bold red]ERROR:[/bold red] Unknown provider '{provider_id}' "
            f"(expected one of: {', '.join(PROVIDER_IDS)})."
        )
        return False
    if not config.is_provider_enabled(provider_id):
        console.print(
            f"[bold yellow]WARNING:[/bold yellow] {provider_name(provider_id)} "
            f"provider is disabled. Run '{APP_NAME} providers --enable {provider_id}'."
        )
        return False
    return True


# --- Credentials ---


def prompt_api_key(provider_id: str) -> str | None:
    """Asks for an API key until a valid one is entered.

    Returns:
        str | None: The key, or None if the prompt was left empty.
    """
    while True:
        value = Prompt.ask(
            f"Enter your {provider_name(provider_id)} API key "
            "[dim](leave empty to cancel)[/dim]",
            password=True,
            default="",
            show_default=False,
        ).strip()
        if not value:
            return None
        problem = validate_api_key(provider_id, value)
        if problem is None:
            return value
        console.print(f"[red]{problem}[/red]")


def set_api_key(provider_id: str, auth: AuthManager) -> bool:
    """Prompts for and stores an API key.

    Args:
        provider_id (str): 'claude' or 'openai'.
        auth (AuthManager): Gives access to the secret store.

    Returns:
        bool: True if a key was saved.
    """
    if provider_id == "copilot":
        console.print(
            "GitHub Models doesn't use an API key. "
            f"Run '{APP_NAME} sign-in copilot' to store a GitHub token."
        )
        return False

    key = prompt_api_key(provider_id)
    if key is None:
        console.print("Cancelled.", style="dim")
        return False
    auth.store.set(provider_id, API_KEY, key)
    console.print(
        f"[bold green]SUCCESS:[/bold green] {provider_name(provider_id)} API key saved."
    )
    return True


def _offer_api_key(provider_id: str, auth: AuthManager, reason: str) -> bool:
    console.print(f"[bold yellow]WARNING:[/bold yellow] {reason}")
    if Confirm.ask("Enter an API key instead?", default=True):
        return set_api_key(provider_id, auth)
    return False


async def _sign_in_claude_cli(auth: AuthManager) -> bool:
    """Login-based sign-in for Claude.

    Imports `ANTHROPIC_API_KEY` when set; otherwise relies on an authenticated
    Claude CLI session.
    """
    # 1. Environment key.
    env_key = os.environ.get("ANTHROPIC_API_KEY", "").strip()
    if env_key:
        auth.store.set("claude", API_KEY, env_key)
        console.print(
            "[bold green]SUCCESS:[/bold green] Anthropic API key imported from "
            "ANTHROPIC_API_KEY."
        )
        return True

    # 2. Claude CLI session.
    if await auth.locator.find("claude"):
        if await auth.has_claude_cli_auth():
            console.print(
                "[bold green]SUCCESS:[/bold green] Claude CLI detected with a login "
                "session. AI commit messages are ready."
            )
            return True
        return _offer_api_key(
            "claude",
            auth,
            "Claude CLI is installed but not authenticated. Run 'claude' in your "
            "terminal and complete '/login', or enter an API key.",
        )

    # 3. No CLI.
    return _offer_api_key(
        "claude",
        auth,
        "Claude CLI not found. Enter an Anthropic API key from console.anthropic.com "
        "to use Claude for commit messages.",
    )


async def _sign_in_codex(auth: AuthManager) -> bool:
    """Login-based sign-in for OpenAI through the Codex CLI."""
    codex = await auth.locator.find("codex")
    if not codex:
        return _offer_api_key(
            "openai",
            auth,
            "Codex CLI is not installed or not in PATH. Enter an OpenAI API key "
            "from platform.openai.com, or install Codex CLI and run 'codex login'.",
        )

    if auth.import_codex_credentials():
        console.print(
            "[bold green]SUCCESS:[/bold green] OpenAI login detected from Codex."
        )
        return True

    # Hand the terminal to `codex login`, then pick up its auth cache.
    console.print("Complete the OpenAI login in your terminal/browser...")
    env = await auth.locator.execution_env()
    try:
        proc = await asyncio.create_subprocess_exec(codex, "login", env=env)
        await proc.wait()
    except OSError as e:
        console.print(f"[bold red]ERROR:[/bold red] Could not run 'codex login': {e}")
        return False

    if auth.import_codex_credentials():
        console.print(
            "[bold green]SUCCESS:[/bold green] OpenAI login complete. "
            f"{APP_NAME} is now authenticated."
        )
        return True
    console.print(
        "[bold yellow]WARNING:[/bold yellow] OpenAI login was not detected. "
        f"Run '{APP_NAME} sign-in openai' again once 'codex login' succeeds."
    )
    return False


async def _sign_in_copilot(auth: AuthManager) -> bool:
    if await auth.github_token():
        console.print(
            "[bold green]SUCCESS:[/bold green] GitHub token found. "
            "GitHub Models is ready."
        )
        return True
    console.print(
        "No GitHub token found. Run 'gh auth login', set GITHUB_TOKEN, "
        "or store a token now."
    )
    token = Prompt.ask(
        "GitHub token [dim](leave empty to cancel)[/dim]",
        password=True,
        default="",
        show_default=False,
    ).strip()
    if not token:
        return False
    auth.store.set("copilot", OAUTH_TOKEN, token)
    console.print("[bold green]SUCCESS:[/bold green] GitHub token saved.")
    return True


async def sign_in(
    provider_id: str, config: Config, auth: AuthManager, force_api_key: bool = False
) -> bool:
    """Signs in to a provider, then turns AI on and selects it.

    With the 'cli-login' auth method, existing logins are detected first
    (environment key, Claude CLI session, Codex auth cache, `codex login`);
    otherwise an API key is requested.

    Args:
        provider_id (str): The provider to sign in to.
        config (Config): The active configuration.
        auth (AuthManager): Credential resolution and storage.
        force_api_key (bool, optional): Skip the login flow. Defaults to False.

    Returns:
        bool: True if the provider is now signed in.
    """
    if not _check_provider(provider_id, config):
        return False

    if provider_id == "copilot":
        success = await _sign_in_copilot(auth)
    elif force_api_key or config.auth_method_for(provider_id) != "cli-login":
        success = set_api_key(provider_id, auth)
    elif provider_id == "claude":
        success = await _sign_in_claude_cli(auth)
    else:
        success = await _sign_in_codex(auth)

    if success:
        enable_ai(provider_id)
    return success


def enable_ai(provider_id: str) -> None:
    """Turns AI messages on with the given provider selected."""
    save_preference("ai.enabled", True)
    save_preference("ai.provider", provider_id)
    logger.info(f"AI commit messages enabled with {provider_id}")


def sign_out(provider_id: str, auth: AuthManager) -> bool:
    if provider_id not in PROVIDER_IDS:
        console.print(f"[bold red]ERROR:[/bold red] Unknown provider '{provider_id}'.")
        return False
    if auth.sign_out(provider_id):
        console.print(f"Signed out from {provider_name(provider_id)}.")
    else:
        console.print(
            f"No stored credentials for {provider_name(provider_id)}.", style="dim"
        )
    return True


# --- Provider and model selection ---


async def show_providers(config: Config, auth: AuthManager) -> None:
    """Prints every provider with its enablement, auth method, model and sign-in state."""
    table = Table(title="AI Providers")
    table.add_column("Id", style="cyan")
    table.add_column("Provider")
    table.add_column("Enabled")
    table.add_column("Auth", style="dim")
    table.add_column("Model", style="yellow")
    table.add_column("Signed In")

    for provider_id in PROVIDER_IDS:
        enabled = config.is_provider_enabled(provider_id)
        signed_in = await auth.is_signed_in(provider_id) if enabled else False
        marker = " (active)" if provider_id == config.ai.provider else ""
        table.add_row(
            provider_id,
            provider_name(provider_id) + marker,
            "[green]yes[/green]" if enabled else "[red]no[/red]",
            "gh token" if provider_id == "copilot" else config.auth_method_for(provider_id),
            config.resolve_model(provider_id) or "default",
            "[green]yes[/green]" if signed_in else "[dim]no[/dim]",
        )
    console.print(table)


def select_provider(provider_id: str | None, config: Config) -> bool:
    """Selects the preferred provider, prompting when no id is given."""
    if provider_id is None:
        choices = [p for p in PROVIDER_IDS if config.is_provider_enabled(p)]
        if not choices:
            console.print("[bold red]ERROR:[/bold red] Every provider is disabled.")
            return False
        for p in choices:
            console.print(f"  [cyan]{p}[/cyan]  {provider_name(p)}")
        provider_id = Prompt.ask(
            "Select AI provider",
            choices=choices,
            default=config.ai.provider if config.ai.provider in choices else choices[0],
        )

    if not _check_provider(provider_id, config):
        return False
    save_preference("ai.provider", provider_id)
    console.print(
        f"[bold green]SUCCESS:[/bold green] AI provider set to {provider_name(provider_id)}."
    )
    return True


async def select_model(
    model: str | None, config: Config, messages: MessageGenerator
) -> bool:
    """Sets the model of the selected provider.

    Without a model argument, the provider's models are listed (newest first)
    and one is picked by number, or a custom id is typed. When a global
    `ai.model` override would shadow the choice, clearing it is offered.

    Returns:
        bool: True if a model was saved.
    """
    provider_id = config.ai.provider
    if not _check_provider(provider_id, config):
        return False
    current = config.provider(provider_id).model

    if model is None:
        with console.status(f"Fetching {provider_name(provider_id)} models...", spinner="dots"):
            models = await messages.list_models(provider_id)

        table = Table(title=f"{provider_name(provider_id)} Models")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Model", style="cyan")
        table.add_column("Name")
        table.add_column("")
        for index, info in enumerate(models, start=1):
            note = "Current" if info.id == current else ("Latest" if index == 1 else "")
            table.add_row(str(index), info.id, info.display_name or "", note)
        console.print(table)

        answer = Prompt.ask(
            "Select a model number, or type a custom model id",
            default=current or None,
        )
        answer = (answer or "").strip()
        if answer.isdigit() and 1 <= int(answer) <= len(models):
            model = models[int(answer) - 1].id
        else:
            model = answer

    model = model.strip()
    if not model:
        console.print("Cancelled.", style="dim")
        return False

    save_preference(f"providers.{provider_id}.model", model)

    if config.ai.model.strip():
        if Confirm.ask(
            f"Global model override '{config.ai.model.strip()}' takes precedence "
            "over the provider-specific model. Clear it now?",
            default=True,
        ):
            save_preference("ai.model", "")

    console.print(
        f"[bold green]SUCCESS:[/bold green] {provider_name(provider_id)} model set to {model}."
    )
    return True


def manage_providers(
    config: Config,
    enable: str | None = None,
    disable: str | None = None,
    use: str | None = None,
) -> bool:
    """Enables, disables or selects providers.

    `use` enables the provider and makes it the preferred one.
    """
    for provider_id in filter(None, (enable, disable, use)):
        if provider_id not in PROVIDER_IDS:
            console.print(f"[bold red]ERROR:[/bold red] Unknown provider '{provider_id}'.")
            return False

    if disable:
        save_preference(f"providers.{disable}.enabled", False)
        console.print(f"{provider_name(disable)} disabled.", style="bold yellow")
        if disable == config.ai.provider and not use:
            console.print(
                "The selected provider is disabled; another enabled provider "
                "will be used.",
                style="dim",
            )
    if enable:
        save_preference(f"providers.{enable}.enabled", True)
        console.print(f"{provider_name(enable)} enabled.", style="bold green")
    if use:
        save_preference(f"providers.{use}.enabled", True)
        save_preference("ai.provider", use)
        console.print(
            f"[bold green]SUCCESS:[/bold green] Using {provider_name(use)}."
        )
    return True


def set_enabled(enabled: bool) -> None:
    """Persists the auto-commit switch; a running watcher picks it up."""
    save_preference("core.enabled", enabled)
    if enabled:
        console.print("Auto-commit enabled.", style="bold green")
    else:
        console.print("Auto-commit disabled.", style="bold yellow")


# --- Inspection ---


async def show_status(config: Config, auth: AuthManager, repo: GitRepo | None) -> None:
    """Displays the watcher state, AI settings and the current repository."""
    # 1. Engine.
    pid = read_pid()
    content = Text()
    content.append("Watcher:     ", style="bold")
    if pid is not None:
        content.append(f"Running (PID {pid})\n", style="bold green")
    else:
        content.append("Stopped\n", style="bold red")
    content.append("Auto-commit: ", style="bold")
    content.append(
        "Enabled\n" if config.core.enabled else "Disabled\n",
        style="green" if config.core.enabled else "yellow",
    )

    # 2. AI.
    content.append("AI:          ", style="bold")
    if config.ai.enabled:
        provider_id = config.ai.provider
        model = config.resolve_model(provider_id) or "default model"
        signed_in = await auth.is_signed_in(provider_id)
        content.append(f"{provider_name(provider_id)} ({model})")
        content.append(
            "" if signed_in else "  [not signed in]",
            style="bold yellow",
        )
    else:
        content.append("Off (timestamp messages)", style="dim")
    console.print(Panel(content, title="Engine Status", expand=False))

    if repo is None:
        return

    # 3. Repository.
    repo_content = Text()
    try:
        branch = await repo.current_branch()
        pending = len(await repo.changed_paths())
        upstream = await repo.upstream()
    except VcsError as e:
        repo_content.append(f"Unable to read git status: {e}", style="red")
    else:
        repo_content.append(f"Path:     {repo.path}\n")
        repo_content.append(f"Branch:   {branch}\n")
        repo_content.append(f"Upstream: {upstream or 'none'}\n", style="dim")
        repo_content.append(f"Pending:  {pending} files changed")
        if branch in config.core.exclude_branches:
            repo_content.append("\nBranch is excluded from auto-commit.", style="yellow")
    console.print(Panel(repo_content, title="Repository Status", expand=False))


_ATTRIBUTE_DOC = re.compile(r"^\s+(\w+) \(([^)]*)\): (.*)$")


def _attribute_docs(cls: type) -> dict[str, tuple[str, str]]:
    """Reads `name (type): description` entries from a Google-style docstring."""
    docs: dict[str, tuple[str, str]] = {}
    last = None
    for line in (cls.__doc__ or "").splitlines():
        match = _ATTRIBUTE_DOC.match(line)
        if match:
            last = match.group(1)
            docs[last] = (match.group(2), match.group(3).strip())
        elif last and line.startswith(" " * 12) and line.strip():
            kind, text = docs[last]
            docs[last] = (kind, f"{text} {line.strip()}")
        elif not line.strip():
            last = None
    return docs


def _format_default(value: object) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, str):
        return f'"{value}"'
    if isinstance(value, float):
        return f"{value:g}s"
    return str(value)


def show_config_reference() -> None:
    """Displays a table of every configuration option with its default."""
    table = Table(title=f"{APP_NAME} Configuration Schema", show_lines=True)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Type", style="dim")
    table.add_column("Default", style="yellow")
    table.add_column("Description")

    defaults = Config()
    sections: list[tuple[str, object]] = []
    for f in dataclasses.fields(Config):
        if f.name == "providers":
            sections.append(("providers.<id>", ProviderConfig()))
        else:
            sections.append((f.name, getattr(defaults, f.name)))

    for section, instance in sections:
        docs = _attribute_docs(type(instance))
        for index, f in enumerate(dataclasses.fields(instance)):
            kind, text = docs.get(f.name, ("", ""))
            table.add_row(
                section if index == 0 else "",
                f.name,
                kind,
                _format_default(getattr(instance, f.name)),
                text,
            )
    console.print(table)


def open_config() -> None:
    """Opens the global configuration file in the system default editor."""
    if not CONFIG_FILE.exists():
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(CONFIG_FILE, "w") as f:
            f.write(
                "# git-scribe configuration\n\n"
                "[core]\n"
                "# enabled = true\n\n"
                "[sync]\n"
                '# commit_delay = "30s"\n'
                '# auto_push = "on-commit"\n\n'
                "[ai]\n"
                '# provider = "claude"\n'
            )

    editor = os.environ.get("EDITOR")
    if not editor:
        editor = "open" if sys.platform == "darwin" else "nano"

    console.print(f"Opening [cyan]{CONFIG_FILE}[/cyan]...")
    try:
        subprocess.run([editor, str(CONFIG_FILE)])
    except OSError as e:
        console.print(f"[red]Could not open editor: {e}[/red]")


def tail_log() -> None:
    """Follows the background watcher's log file in real-time."""
    if not LOG_FILE.exists():
        console.print(f"[red]No log file found yet at {LOG_FILE}.[/red]")
        return

    console.print(f"Tailing [bold cyan]{LOG_FILE}[/bold cyan] (Ctrl+C to stop)...")
    try:
        subprocess.run(["tail", "-n", "1000", "-f", str(LOG_FILE)])
    except KeyboardInterrupt:
        console.print("\nStopped.", style="dim")
