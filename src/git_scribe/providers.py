import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path

import httpx
import openai
from openai import AsyncOpenAI

from .auth import AuthManager
from .config import Config
from .constants import (
    ANTHROPIC_API_URL,
    ANTHROPIC_API_VERSION,
    APP_NAME,
    CLAUDE_STRIPPED_ENV,
    DEFAULT_CLAUDE_MODEL,
    DEFAULT_COPILOT_MODEL,
    DEFAULT_OPENAI_MODEL,
    GITHUB_MODELS_CATALOG_URL,
    GITHUB_MODELS_URL,
    MAX_RESPONSE_TOKENS,
)
from .errors import ProviderRequestError, ProviderTimeout, ProviderUnavailable
from .prompt import AIOptions, build_system_prompt, build_user_prompt, truncate_diff

logger = logging.getLogger(APP_NAME)

# Codex CLI phrases meaning "this account cannot use that model".
_CODEX_MODEL_REJECTIONS = ("not supported", "not available", "invalid model")

_NON_CHAT_PREFIXES = (
    "whisper",
    "tts-",
    "text-embedding",
    "omni-moderation",
    "dall-e",
)


@dataclass(frozen=True)
class ModelInfo:
    """A model offered by a provider.

    Attributes:
        id (str): The identifier passed back to the provider.
        display_name (str | None): Human-readable name, when the provider has one.
        created_at (float): Release time as a POSIX timestamp (0 if unknown).
    """

    id: str
    display_name: str | None = None
    created_at: float = 0.0


def unique_models(models: list[ModelInfo]) -> list[ModelInfo]:
    """Drops blank and repeated ids, keeping the first occurrence."""
    seen: set[str] = set()
    result = []
    for model in models:
        key = model.id.strip()
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(replace(model, id=key))
    return result


def sort_models(models: list[ModelInfo]) -> list[ModelInfo]:
    """Orders models newest first; models without a date keep their order at the end."""
    return sorted(models, key=lambda m: m.created_at, reverse=True)


def is_chat_model(model_id: str) -> bool:
    """Guesses whether an OpenAI model id supports chat completions."""
    lowered = model_id.lower()
    if lowered.startswith(_NON_CHAT_PREFIXES) or "search-" in lowered or "transcribe" in lowered:
        return False
    return (
        lowered.startswith(("gpt-", "chatgpt"))
        or "codex" in lowered
        or (len(lowered) > 1 and lowered[0] == "o" and lowered[1].isdigit())
    )


def _parse_timestamp(value: str | None) -> float:
    if not value:
        return 0.0
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


def _json_items(response: httpx.Response, key: str | None, source: str) -> list[dict]:
    """Extracts the list of objects under `key` (or the top level) of a JSON body.

    Raises:
        ProviderRequestError: If the body is not JSON or not shaped as expected.
    """
    try:
        body = response.json()
    except ValueError as e:
        raise ProviderRequestError(f"{source} returned a malformed response: {e}") from e

    if key is None:
        items = body
    else:
        items = body.get(key) if isinstance(body, dict) else None
    if not isinstance(items, list):
        raise ProviderRequestError(f"{source} returned an unexpected response shape")
    return [item for item in items if isinstance(item, dict)]


class AIProvider:
    """Base class for commit message providers.

    Subclasses implement availability, generation and model listing for one
    backend. `generate_commit_message` returns the raw response text; clean-up
    happens in the message generator.

    Attributes:
        id (str): The provider id used in configuration.
        name (str): Human-readable provider name.
        fallback_models (tuple[str, ...]): Models offered when listing fails.
    """

    id = ""
    name = ""
    fallback_models: tuple[str, ...] = ()

    def __init__(self, config: Config, auth: AuthManager):
        self.config = config
        self.auth = auth

    @property
    def http_timeout(self) -> float:
        return max(5.0, self.config.ai.request_timeout)

    @property
    def cli_timeout(self) -> float:
        # CLIs need extra time for process startup and their own auth checks.
        return max(15.0, self.config.ai.request_timeout * 1.5)

    async def is_available(self) -> bool:
        raise NotImplementedError

    async def generate_commit_message(
        self, diff: str, options: AIOptions, cwd: Path | None = None
    ) -> str:
        raise NotImplementedError

    async def list_models(self) -> list[ModelInfo]:
        return self._fallback()

    def _fallback(self) -> list[ModelInfo]:
        return unique_models([ModelInfo(m) for m in self.fallback_models])

    def _prompts(self, diff: str, options: AIOptions) -> tuple[str, str]:
        truncated = truncate_diff(diff, options.max_diff_chars)
        return build_system_prompt(options), build_user_prompt(truncated)

    async def _run_cli(
        self,
        cmd: list[str],
        env: dict[str, str],
        cwd: Path | None,
        label: str,
    ) -> str:
        """Runs a provider CLI with stdin closed and returns its stdout.

        Raises:
            ProviderTimeout: If the CLI outlives `cli_timeout` (it is killed).
            ProviderRequestError: If it fails to start, exits non-zero or
                prints nothing.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=cwd,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ProviderRequestError(f"{label} could not be started: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self.cli_timeout)
        except TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise ProviderTimeout(
                f"{label} timed out after {self.cli_timeout:.0f}s"
            ) from e

        out = stdout.decode(errors="replace").strip()
        err = stderr.decode(errors="replace").strip()
        if proc.returncode != 0:
            raise ProviderRequestError(f"{label} error: {err or f'exit code {proc.returncode}'}")
        if not out:
            raise ProviderRequestError(f"{label} error: {err or 'empty response'}")
        return out


class ClaudeProvider(AIProvider):
    """Anthropic Claude, through the Messages API or the `claude` CLI.

    A stored or environment API key always wins; the CLI is used only under
    the 'cli-login' auth method when no key exists.
    """

    id = "claude"
    name = "Anthropic Claude"
    fallback_models = (
        DEFAULT_CLAUDE_MODEL,
        "claude-opus-4-6",
        "claude-haiku-4-5-20251001",
    )

    def _uses_login(self) -> bool:
        return self.config.auth_method_for(self.id) == "cli-login"

    async def is_available(self) -> bool:
        if self.auth.api_key(self.id):
            return True
        if self._uses_login():
            return await self.auth.has_claude_cli_auth()
        return False

    async def generate_commit_message(
        self, diff: str, options: AIOptions, cwd: Path | None = None
    ) -> str:
        api_key = self.auth.api_key(self.id)
        if api_key:
            return await self._generate_with_api(diff, options, api_key)
        if self._uses_login():
            return await self._generate_with_cli(diff, options, cwd)
        raise ProviderUnavailable(
            "Anthropic API key not configured. Run 'git-scribe set-api-key claude' "
            "or set ANTHROPIC_API_KEY."
        )

    def _headers(self, api_key: str) -> dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_API_VERSION,
            "content-type": "application/json",
        }

    async def _generate_with_api(
        self, diff: str, options: AIOptions, api_key: str
    ) -> str:
        system, user = self._prompts(diff, options)
        payload = {
            "model": options.model or DEFAULT_CLAUDE_MODEL,
            "max_tokens": MAX_RESPONSE_TOKENS,
            "system": system,
            "messages": [{"role": "user", "content": user}],
        }
        try:
            async with httpx.AsyncClient(timeout=self.http_timeout) as client:
                response = await client.post(
                    f"{ANTHROPIC_API_URL}/messages",
                    headers=self._headers(api_key),
                    json=payload,
                )
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"Claude request timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            raise ProviderRequestError(
                f"Claude API error {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderRequestError(f"Claude request failed: {e}") from e

        for block in _json_items(response, "content", "Claude API"):
            if block.get("type") == "text" and block.get("text"):
                return block["text"]
        raise ProviderRequestError("No text response from Claude")

    async def _generate_with_cli(
        self, diff: str, options: AIOptions, cwd: Path | None
    ) -> str:
        claude = await self.auth.locator.find("claude")
        if not claude:
            raise ProviderUnavailable("Claude CLI not found")

        system, user = self._prompts(diff, options)
        cmd = [claude, "-p", f"{system}\n\n{user}", "--output-format", "text"]
        if options.model:
            cmd.extend(["--model", options.model])

        env = await self.auth.locator.execution_env()
        # Editor integrations set these; the CLI then tries to reach its parent.
        for var in CLAUDE_STRIPPED_ENV:
            env.pop(var, None)
        return await self._run_cli(cmd, env, cwd, "Claude CLI")

    async def list_models(self) -> list[ModelInfo]:
        api_key = self.auth.api_key(self.id)
        if not api_key:
            return self._fallback()
        try:
            async with httpx.AsyncClient(timeout=self.http_timeout) as client:
                response = await client.get(
                    f"{ANTHROPIC_API_URL}/models", headers=self._headers(api_key)
                )
                response.raise_for_status()
            items = _json_items(response, "data", "Claude API")
        except (httpx.HTTPError, ProviderRequestError) as e:
            logger.debug(f"Listing Claude models failed: {e}")
            return self._fallback()

        models = [
            ModelInfo(m["id"], m.get("display_name"), _parse_timestamp(m.get("created_at")))
            for m in items
            if m.get("id")
        ]
        return unique_models(sort_models(models)) or self._fallback()


class OpenAIProvider(AIProvider):
    """OpenAI, through the chat completions API or the `codex` CLI."""

    id = "openai"
    name = "OpenAI"
    fallback_models = (
        "gpt-5.2",
        DEFAULT_OPENAI_MODEL,
        "gpt-5.3-codex",
        "gpt-5.2-codex",
        "gpt-5.1-codex-mini",
    )

    def _uses_login(self) -> bool:
        return self.config.auth_method_for(self.id) == "cli-login"

    async def is_available(self) -> bool:
        if self._uses_login() and await self.auth.has_codex_auth():
            return True
        return bool(self.auth.api_key(self.id))

    async def generate_commit_message(
        self, diff: str, options: AIOptions, cwd: Path | None = None
    ) -> str:
        if self._uses_login() and await self.auth.has_codex_auth():
            return await self._generate_with_codex(diff, options, cwd)

        api_key = self.auth.api_key(self.id)
        if not api_key:
            raise ProviderUnavailable(
                "OpenAI API key not configured. Run 'git-scribe set-api-key openai' "
                "or set OPENAI_API_KEY."
            )
        return await self._generate_with_api(diff, options, api_key)

    async def _generate_with_api(
        self, diff: str, options: AIOptions, api_key: str
    ) -> str:
        system, user = self._prompts(diff, options)
        client = AsyncOpenAI(api_key=api_key, timeout=self.http_timeout)
        try:
            response = await client.chat.completions.create(
                model=options.model or DEFAULT_OPENAI_MODEL,
                max_tokens=MAX_RESPONSE_TOKENS,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            )
        except openai.APITimeoutError as e:
            raise ProviderTimeout(f"OpenAI request timed out: {e}") from e
        except openai.OpenAIError as e:
            raise ProviderRequestError(f"OpenAI request failed: {e}") from e
        finally:
            await client.close()

        message = response.choices[0].message.content if response.choices else None
        if not message:
            raise ProviderRequestError("No response from OpenAI")
        return message

    async def _generate_with_codex(
        self, diff: str, options: AIOptions, cwd: Path | None
    ) -> str:
        system, user = self._prompts(diff, options)
        prompt = f"{system}\n\n{user}"

        # Only an explicitly configured model is passed; ChatGPT accounts accept
        # a narrow set, so Codex's own default is the safe choice otherwise.
        explicit_model = self.config.resolve_model(self.id)
        if explicit_model:
            try:
                return await self._exec_codex(prompt, cwd, explicit_model)
            except ProviderRequestError as e:
                if not any(p in str(e) for p in _CODEX_MODEL_REJECTIONS):
                    raise
                logger.info(
                    f"Codex rejected model '{explicit_model}'; retrying with its default."
                )
        return await self._exec_codex(prompt, cwd)

    async def _exec_codex(
        self, prompt: str, cwd: Path | None, model: str | None = None
    ) -> str:
        codex = await self.auth.locator.find("codex")
        if not codex:
            raise ProviderUnavailable("Codex CLI not found")
        cmd = [codex, "exec"]
        if model:
            cmd.extend(["--model", model])
        cmd.append(prompt)
        env = await self.auth.locator.execution_env()
        return await self._run_cli(cmd, env, cwd, "Codex CLI")

    async def list_models(self) -> list[ModelInfo]:
        api_key = self.auth.api_key(self.id)
        if not api_key:
            return self._fallback()
        client = AsyncOpenAI(api_key=api_key, timeout=self.http_timeout)
        try:
            page = await client.models.list()
            models = [
                ModelInfo(m.id, created_at=float(m.created or 0))
                for m in page.data
                if is_chat_model(m.id)
            ]
        except openai.OpenAIError as e:
            logger.debug(f"Listing OpenAI models failed: {e}")
            return self._fallback()
        finally:
            await client.close()
        return unique_models(sort_models(models)) or self._fallback()


class CopilotProvider(AIProvider):
    """GitHub Models inference, authenticated with a GitHub token."""

    id = "copilot"
    name = "GitHub Copilot"
    fallback_models = (
        DEFAULT_COPILOT_MODEL,
        "openai/gpt-4.1-mini",
        "openai/gpt-4o",
    )

    async def is_available(self) -> bool:
        return bool(await self.auth.github_token())

    async def generate_commit_message(
        self, diff: str, options: AIOptions, cwd: Path | None = None
    ) -> str:
        token = await self.auth.github_token()
        if not token:
            raise ProviderUnavailable(
                "No GitHub token found. Run 'gh auth login' or set GITHUB_TOKEN."
            )

        system, user = self._prompts(diff, options)
        client = AsyncOpenAI(
            api_key=token, base_url=GITHUB_MODELS_URL, timeout=self.http_timeout
        )
        try:
            response = await client.chat.completions.create(
                model=options.model or DEFAULT_COPILOT_MODEL,
                max_tokens=MAX_RESPONSE_TOKENS,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            )
        except openai.APITimeoutError as e:
            raise ProviderTimeout(f"GitHub Models request timed out: {e}") from e
        except openai.OpenAIError as e:
            raise ProviderRequestError(f"GitHub Models request failed: {e}") from e
        finally:
            await client.close()

        message = response.choices[0].message.content if response.choices else None
        if not message:
            raise ProviderRequestError("No response from GitHub Models")
        return message

    async def list_models(self) -> list[ModelInfo]:
        token = await self.auth.github_token()
        if not token:
            return self._fallback()
        try:
            async with httpx.AsyncClient(timeout=self.http_timeout) as client:
                response = await client.get(
                    GITHUB_MODELS_CATALOG_URL,
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Accept": "application/vnd.github+json",
                    },
                )
                response.raise_for_status()
            items = _json_items(response, None, "GitHub Models catalog")
        except (httpx.HTTPError, ProviderRequestError) as e:
            logger.debug(f"Listing GitHub models failed: {e}")
            return self._fallback()

        models = [ModelInfo(m["id"], m.get("name")) for m in items if m.get("id")]
        return unique_models(models) or self._fallback()


def build_providers(config: Config, auth: AuthManager) -> dict[str, AIProvider]:
    """Creates one instance of every provider, keyed by id in fallback order."""
    providers: list[AIProvider] = [
        ClaudeProvider(config, auth),
        OpenAIProvider(config, auth),
        CopilotProvider(config, auth),
    ]
    return {p.id: p for p in providers}
