import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import Config
from .constants import (
    APP_NAME,
    CLAUDE_SESSION_INDICATORS,
    CLI_PROBE_TIMEOUT,
)
from .credentials import API_KEY, OAUTH_TOKEN, SecretStore
from .locator import ExecutableLocator, run_probe

logger = logging.getLogger(APP_NAME)

ENV_API_KEYS = {"claude": "ANTHROPIC_API_KEY", "openai": "OPENAI_API_KEY"}
GITHUB_TOKEN_VARS = ("GITHUB_TOKEN", "GH_TOKEN")
ANTHROPIC_KEY_PREFIX = "sk-ant-"


@dataclass(frozen=True)
class CodexAuth:
    """Credentials found in the Codex CLI auth cache."""

    api_key: str | None = None
    access_token: str | None = None


def claude_home() -> Path:
    return Path(os.environ.get("CLAUDE_HOME") or Path.home() / ".claude")


def codex_auth_path() -> Path:
    return Path(os.environ.get("CODEX_HOME") or Path.home() / ".codex") / "auth.json"


def _string_at(data: Any, *keys: str) -> str | None:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    if isinstance(data, str) and data.strip():
        return data.strip()
    return None


def read_codex_auth_cache(path: Path | None = None) -> CodexAuth:
    """Reads credentials left behind by `codex login`.

    Args:
        path (Path | None): The cache file. Defaults to `$CODEX_HOME/auth.json`.

    Returns:
        CodexAuth: Whatever credentials were found (both fields None on any
        read or parse failure).
    """
    path = path or codex_auth_path()
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        logger.debug(f"Failed reading Codex auth cache at {path}: {e}")
        return CodexAuth()

    api_key = (
        _string_at(data, "api_key")
        or _string_at(data, "apiKey")
        or _string_at(data, "OPENAI_API_KEY")
    )
    access_token = (
        _string_at(data, "access_token")
        or _string_at(data, "accessToken")
        or _string_at(data, "tokens", "access_token")
        or _string_at(data, "tokens", "accessToken")
    )
    return CodexAuth(api_key=api_key, access_token=access_token)


def has_claude_session() -> bool:
    """Checks for artifacts the Claude CLI only writes after a completed login."""
    home = claude_home()
    for indicator in CLAUDE_SESSION_INDICATORS:
        if (home / indicator).exists():
            logger.debug(f"Claude session indicator found: {home / indicator}")
            return True
    return False


def validate_api_key(provider_id: str, key: str) -> str | None:
    """Checks an API key's shape before it is stored.

    Returns:
        str | None: An error message, or None if the key looks valid.
    """
    if not key.strip():
        return "API key is required"
    if provider_id == "claude" and not key.strip().startswith(ANTHROPIC_KEY_PREFIX):
        return f'API key should start with "{ANTHROPIC_KEY_PREFIX}"'
    return None


class AuthManager:
    """Resolves provider credentials from the secret store, the environment
    and the provider CLIs.

    Attributes:
        config (Config): Supplies the effective auth method per provider.
        store (SecretStore): Stored API keys and tokens.
        locator (ExecutableLocator): Finds `claude`, `codex` and `gh`.
    """

    def __init__(
        self, config: Config, store: SecretStore, locator: ExecutableLocator
    ):
        self.config = config
        self.store = store
        self.locator = locator

    def api_key(self, provider_id: str) -> str | None:
        """Returns the API key of a provider: stored first, then its env variable."""
        stored = self.store.get(provider_id, API_KEY)
        if stored:
            return stored
        var = ENV_API_KEYS.get(provider_id)
        value = os.environ.get(var, "").strip() if var else ""
        return value or None

    def openai_access_token(self) -> str | None:
        return (
            self.store.get("openai", OAUTH_TOKEN)
            or read_codex_auth_cache().access_token
        )

    async def has_claude_cli_auth(self) -> bool:
        """True when the Claude CLI is installed and has a login session."""
        if not await self.locator.find("claude"):
            logger.debug("Claude CLI could not be located; login auth unavailable.")
            return False
        return has_claude_session()

    async def has_codex_auth(self) -> bool:
        """True when the Codex CLI is installed and credentials for it exist."""
        if not await self.locator.find("codex"):
            logger.debug("Codex CLI could not be located; login auth unavailable.")
            return False
        if self.store.get("openai", OAUTH_TOKEN):
            return True
        cache = read_codex_auth_cache()
        return bool(cache.access_token or cache.api_key)

    def import_codex_credentials(self) -> bool:
        """Copies Codex auth-cache credentials into the secret store.

        Returns:
            bool: True if anything was imported.
        """
        cache = read_codex_auth_cache()
        if not cache.api_key and not cache.access_token:
            return False
        if cache.api_key:
            self.store.set("openai", API_KEY, cache.api_key)
        if cache.access_token:
            self.store.set("openai", OAUTH_TOKEN, cache.access_token)
        logger.info("OpenAI credentials imported from Codex auth cache")
        return True

    async def github_token(self) -> str | None:
        """Resolves a GitHub token for the Models endpoint.

        Order: secret store, `GITHUB_TOKEN`/`GH_TOKEN`, then `gh auth token`.
        """
        stored = self.store.get("copilot", OAUTH_TOKEN)
        if stored:
            return stored
        for var in GITHUB_TOKEN_VARS:
            value = os.environ.get(var, "").strip()
            if value:
                return value

        gh = await self.locator.find("gh")
        if not gh:
            return None
        env = await self.locator.execution_env()
        try:
            code, stdout = await run_probe(
                [gh, "auth", "token"], env, CLI_PROBE_TIMEOUT
            )
        except (OSError, TimeoutError) as e:
            logger.debug(f"'gh auth token' failed: {e!r}")
            return None
        token = stdout.strip()
        return token if code == 0 and token else None

    async def is_signed_in(self, provider_id: str) -> bool:
        """Checks whether a provider has usable credentials under its auth method."""
        if provider_id == "copilot":
            return bool(await self.github_token())

        login = self.config.auth_method_for(provider_id) == "cli-login"
        if self.api_key(provider_id):
            return True
        if not login:
            return False
        if provider_id == "claude":
            return await self.has_claude_cli_auth()
        return await self.has_codex_auth()

    def sign_out(self, provider_id: str) -> bool:
        return self.store.delete(provider_id)
