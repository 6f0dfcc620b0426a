import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import Config
from .constants import APP_NAME, MIN_REQUEST_TIMEOUT, PROVIDER_IDS
from .errors import (
    NoProviderConfigured,
    ProviderError,
    ProviderRequestError,
    ProviderTimeout,
    ProviderUnavailable,
)
from .prompt import AIOptions, normalize_message
from .providers import AIProvider, ModelInfo, sort_models, unique_models

logger = logging.getLogger(APP_NAME)


class MessageSource(StrEnum):
    AI = "ai"
    TIMESTAMP = "timestamp"


@dataclass(frozen=True)
class GeneratedMessage:
    """A commit message and where it came from.

    Attributes:
        text (str): The single-line message.
        source (MessageSource): 'ai' or 'timestamp'.
        provider (str | None): The provider id for AI messages.
    """

    text: str
    source: MessageSource
    provider: str | None = None


def timestamp_message(fmt: str, time_zone: str = "", now: datetime | None = None) -> str:
    """Formats the fallback commit message.

    Args:
        fmt (str): strftime format.
        time_zone (str): IANA zone name; local time when empty or unknown.
        now (datetime | None): The instant to format. Defaults to now.

    Returns:
        str: The formatted timestamp.
    """
    tz = None
    if time_zone:
        try:
            tz = ZoneInfo(time_zone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown time zone '{time_zone}'. Using local time.")
    now = now or datetime.now().astimezone()
    return (now.astimezone(tz) if tz else now.astimezone()).strftime(fmt)


class MessageGenerator:
    """Produces commit messages with AI, degrading to timestamps.

    The configured provider is used when enabled, otherwise the first enabled
    provider in fixed order. Each attempt races the provider against a timeout;
    timed-out or failed attempts are retried, and when every attempt fails the
    timestamp message is used unless `ai.fallback_on_failure` is off.

    Attributes:
        config (Config): Live configuration (replaced on reload).
        providers (dict[str, AIProvider]): Provider instances keyed by id.
    """

    def __init__(self, config: Config, providers: dict[str, AIProvider]):
        self.config = config
        self.providers = providers
        self._abandoned: set[asyncio.Future] = set()

    def enabled_providers(self) -> list[str]:
        return [pid for pid in PROVIDER_IDS if self.config.is_provider_enabled(pid)]

    def active_provider(self) -> AIProvider | None:
        """Resolves the provider to use.

        Returns:
            AIProvider | None: The configured provider if enabled, else the
            first enabled one, else None.
        """
        selected = self.config.ai.provider
        if self.config.is_provider_enabled(selected):
            return self.providers.get(selected)

        for provider_id in PROVIDER_IDS:
            if self.config.is_provider_enabled(provider_id):
                logger.info(
                    f"Configured provider '{selected}' is disabled; "
                    f"falling back to '{provider_id}'."
                )
                return self.providers.get(provider_id)
        return None

    def options_for(self, provider: AIProvider) -> AIOptions:
        ai = self.config.ai
        return AIOptions(
            style=ai.message_style,
            length=ai.message_length,
            custom_instructions=ai.custom_instructions,
            use_emojis=ai.use_emojis,
            model=self.config.resolve_model(provider.id),
            max_diff_chars=ai.max_diff_chars,
        )

    def fallback(self) -> GeneratedMessage:
        text = timestamp_message(
            self.config.core.message_format, self.config.core.time_zone
        )
        return GeneratedMessage(text, MessageSource.TIMESTAMP)

    async def generate(self, diff: str, cwd: Path | None = None) -> GeneratedMessage:
        """Produces the message for a staged diff.

        Args:
            diff (str): The staged diff.
            cwd (Path | None): Working directory for CLI-backed providers.

        Returns:
            GeneratedMessage: The AI message, or the timestamp message when AI
            is disabled, fails with fallback enabled, or answers with nothing.

        Raises:
            ProviderError: When AI fails and `ai.fallback_on_failure` is off.
        """
        if not self.config.ai.enabled:
            return self.fallback()

        try:
            provider_id, text = await self._generate_ai(diff, cwd)
        except ProviderError as e:
            if not self.config.ai.fallback_on_failure:
                raise
            logger.warning(f"AI commit message failed: {e}. Using timestamp message.")
            return self.fallback()

        if not text:
            logger.info("AI returned an empty message. Using timestamp message.")
            return self.fallback()
        return GeneratedMessage(text, MessageSource.AI, provider_id)

    async def _generate_ai(self, diff: str, cwd: Path | None) -> tuple[str, str]:
        # 1. Provider resolution and pre-flight.
        provider = self.active_provider()
        if provider is None:
            raise NoProviderConfigured(
                "No AI provider is enabled. Run 'git-scribe providers --enable <id>'."
            )
        if not await provider.is_available():
            raise ProviderUnavailable(
                f"{provider.name} credentials not found. "
                f"Run 'git-scribe sign-in {provider.id}'."
            )

        options = self.options_for(provider)
        attempts = max(1, self.config.ai.retry_attempts)
        logger.info(
            f"Generating commit message with {provider.name} "
            f"(model: {options.model or 'default'}, diff: {len(diff)} chars)"
        )

        # 2. Bounded retries of the timed call.
        last_error: ProviderError | None = None
        for attempt in range(1, attempts + 1):
            try:
                raw = await self._with_timeout(
                    provider.generate_commit_message(diff, options, cwd), provider.name
                )
                message = normalize_message(raw)
                logger.info(f"Generated commit message: \"{message}\"")
                return provider.id, message
            except (ProviderTimeout, ProviderRequestError) as e:
                last_error = e
                logger.warning(
                    f"{provider.name} attempt {attempt}/{attempts} failed: {e}"
                )
                if attempt < attempts:
                    await asyncio.sleep(self.config.ai.retry_delay)

        raise last_error or ProviderRequestError(f"{provider.name} produced no message")

    async def _with_timeout(self, call: Awaitable[str], name: str) -> str:
        """Races a provider call against the request timeout.

        The losing call is abandoned rather than awaited: it keeps running in
        the background and its result or error is discarded.

        Raises:
            ProviderTimeout: If the timer wins.
        """
        timeout = max(MIN_REQUEST_TIMEOUT, self.config.ai.request_timeout)
        task = asyncio.ensure_future(call)
        timer = asyncio.ensure_future(asyncio.sleep(timeout))
        try:
            done, _ = await asyncio.wait(
                {task, timer}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            timer.cancel()

        if task in done:
            try:
                return task.result()
            except ProviderError:
                raise
            except Exception as e:
                raise ProviderRequestError(f"{name} request failed: {e!r}") from e

        self._abandon(task)
        raise ProviderTimeout(f"{name} request timed out after {timeout:g}s")

    def _abandon(self, task: asyncio.Future) -> None:
        self._abandoned.add(task)
        task.add_done_callback(self._reap)

    def _reap(self, task: asyncio.Future) -> None:
        self._abandoned.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Abandoned provider call failed late: {task.exception()}")

    async def list_models(self, provider_id: str | None = None) -> list[ModelInfo]:
        """Lists models of a provider (the active one by default), newest first."""
        if provider_id is None:
            active = self.active_provider()
            provider_id = active.id if active else None
        provider = self.providers.get(provider_id) if provider_id else None
        if provider is None:
            return []
        return unique_models(sort_models(await provider.list_models()))
