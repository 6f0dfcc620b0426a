import copy
import json
import logging
import os
import re
import tomllib
from dataclasses import dataclass, field, fields, is_dataclass, replace
from pathlib import Path
from typing import Any, ClassVar

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_TIMESTAMP_FORMAT,
    LOCAL_CONFIG_NAME,
    PREFERENCES_FILE,
    PROVIDER_IDS,
    PYPROJECT_SECTION,
)

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_duration(value: int | float | str) -> float:
    """Converts human-readable durations (e.g., '500ms', '30s', '2m') to seconds."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration format '{value}'")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Invalid duration format '{value}'")
        return float(value)
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(ms|s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid duration format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "ms": 0.001,
        "s": 1,
        "sec": 1,
        "m": 60,
        "min": 60,
        "h": 3600,
        "hr": 3600,
    }
    return num * multiplier[unit]


# Allowed values for enumerated settings. camelCase spellings are normalized to
# kebab-case before the lookup, so "forcePushWithLease" is accepted too.
_CHOICES: dict[str, tuple[str, ...]] = {
    "commit_validation_level": ("error", "warning", "none"),
    "auto_push": ("on-commit", "after-delay", "off"),
    "auto_pull": ("on-push", "after-delay", "off"),
    "push_mode": ("push", "force-push", "force-push-with-lease"),
    "message_style": ("simple", "conventional", "emoji", "custom"),
    "message_length": ("short", "standard", "detailed"),
    "provider": PROVIDER_IDS,
    "method": ("api-key", "cli-login"),
    "auth_method": ("api-key", "cli-login", "inherit"),
    "log_level": ("error", "info", "debug"),
}

_ALIASES: dict[str, dict[str, str]] = {
    "auto_push": {"on-trigger": "on-commit"},
    "auto_pull": {"on-trigger": "on-push"},
    "method": {"login": "cli-login"},
    "auth_method": {"login": "cli-login"},
}

_DURATION_KEYS = {
    "commit_delay",
    "push_delay",
    "pull_delay",
    "request_timeout",
    "retry_delay",
}


def _parse_choice(key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"Expected a string, got {type(value).__name__}")
    normalized = re.sub(r"(?<!^)(?=[A-Z])", "-", value.strip()).lower()
    normalized = _ALIASES.get(key, {}).get(normalized, normalized)
    if normalized not in _CHOICES[key]:
        raise ValueError(
            f"Invalid value '{value}' (expected one of: {', '.join(_CHOICES[key])})"
        )
    return normalized


@dataclass
class CoreConfig:
    """Core engine settings.

    Attributes:
        enabled (bool): Master on/off switch for save-triggered commits.
        remote_name (str): The git remote used when bootstrapping an upstream.
        file_pattern (str): Glob selecting which changed paths are committed.
        exclude_branches (list[str]): Branches on which saves never trigger commits.
        commit_validation_level (str): Diagnostic severity that blocks a commit
            ('error', 'warning' or 'none').
        validation_command (list[str]): Checker run against the saved file;
            '{path}' is substituted. Empty disables command-based diagnostics.
        no_verify (bool): Pass `--no-verify` to `git commit`.
        pull_on_open (bool): Pull when the engine is enabled on a clean tree.
        commit_on_close (bool): Commit pending changes when the engine shuts down.
        message_format (str): strftime format of the fallback message.
        time_zone (str): IANA zone for the fallback message (local time if empty).
        min_files_changed (int): Minimum staged files required to commit.
        min_lines_changed (int): Minimum staged lines required to commit.
        enforce_thresholds_on_staged (bool): Apply the thresholds to changes the
            user staged by hand as well.
    """

    enabled: bool = False
    remote_name: str = "origin"
    file_pattern: str = "**/*"
    exclude_branches: list[str] = field(default_factory=list)
    commit_validation_level: str = "error"
    validation_command: list[str] = field(default_factory=list)
    no_verify: bool = False
    pull_on_open: bool = True
    commit_on_close: bool = True
    message_format: str = DEFAULT_TIMESTAMP_FORMAT
    time_zone: str = ""
    min_files_changed: int = 0
    min_lines_changed: int = 0
    enforce_thresholds_on_staged: bool = False


@dataclass
class SyncConfig:
    """Commit debounce and remote synchronization settings.

    Attributes:
        commit_delay (float): Idle seconds after the last save before committing.
        auto_push (str): 'on-commit', 'after-delay' or 'off'.
        push_delay (float): Interval in seconds for 'after-delay' pushes.
        auto_pull (str): 'on-push', 'after-delay' or 'off'.
        pull_delay (float): Interval in seconds for 'after-delay' pulls.
        push_mode (str): 'push', 'force-push' or 'force-push-with-lease'.
    """

    commit_delay: float = 30.0
    auto_push: str = "on-commit"
    push_delay: float = 30.0
    auto_pull: str = "on-push"
    pull_delay: float = 30.0
    push_mode: str = "force-push"


@dataclass
class AIConfig:
    """AI commit message settings.

    Attributes:
        enabled (bool): Generate messages with AI (timestamp messages otherwise).
        provider (str): The preferred provider id.
        model (str): Global model override, wins over provider-specific models.
        message_style (str): 'simple', 'conventional', 'emoji' or 'custom'.
        message_length (str): 'short', 'standard' or 'detailed'.
        custom_instructions (str): Extra prompt rules (replace the rules for 'custom').
        use_emojis (bool): Ask for a leading emoji.
        max_diff_chars (int): Diff characters sent to the provider.
        request_timeout (float): Seconds before a request is abandoned.
        retry_attempts (int): Total attempts per message.
        retry_delay (float): Seconds between attempts.
        fallback_on_failure (bool): Use the timestamp message when AI fails,
            instead of aborting the commit.
    """

    enabled: bool = True
    provider: str = "claude"
    model: str = ""
    message_style: str = "simple"
    message_length: str = "standard"
    custom_instructions: str = ""
    use_emojis: bool = False
    max_diff_chars: int = 200_000
    request_timeout: float = 60.0
    retry_attempts: int = 1
    retry_delay: float = 2.0
    fallback_on_failure: bool = True


@dataclass
class ProviderConfig:
    """Per-provider settings.

    Attributes:
        enabled (bool): Whether the provider may be selected.
        model (str): Provider-specific model (empty uses the provider default).
        auth_method (str): 'api-key', 'cli-login' or 'inherit' (use [auth].method).
    """

    enabled: bool = True
    model: str = ""
    auth_method: str = "inherit"


@dataclass
class ProvidersConfig:
    """Settings for every known provider, keyed by provider id."""

    claude: ProviderConfig = field(default_factory=ProviderConfig)
    openai: ProviderConfig = field(default_factory=ProviderConfig)
    copilot: ProviderConfig = field(default_factory=ProviderConfig)


@dataclass
class AuthConfig:
    """Authentication settings.

    Attributes:
        method (str): Default auth method, 'api-key' or 'cli-login'.
    """

    method: str = "api-key"


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


@dataclass
class OutputConfig:
    """Logging output settings.

    Attributes:
        log_level (str): 'error', 'info' or 'debug'.
    """

    log_level: str = "info"


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        core (CoreConfig): Core engine settings.
        sync (SyncConfig): Debounce and push/pull settings.
        ai (AIConfig): AI message generation settings.
        providers (ProvidersConfig): Per-provider settings.
        auth (AuthConfig): Authentication defaults.
        limits (LimitsConfig): Resource limits.
        output (OutputConfig): Logging output settings.
    """

    core: CoreConfig = field(default_factory=CoreConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    providers: ProvidersConfig = field(default_factory=ProvidersConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    # Cache for the base global configuration
    _global_cache: ClassVar["Config | None"] = None

    @classmethod
    def load(cls, repo_path: Path | None = None) -> "Config":
        """Loads and merges configuration from all sources.

        Layering order: defaults, global config file, repository config
        (`scribe.toml` or `[tool.scribe]` in `pyproject.toml`), CLI preferences.

        Args:
            repo_path (Path | None): The repository root to search for local config.

        Returns:
            Config: A fresh, fully merged configuration object.
        """
        # 1. Load or Retrieve Global Config
        if cls._global_cache is None:
            instance = cls()
            if CONFIG_FILE.exists():
                instance._merge_from_file(CONFIG_FILE)
            cls._global_cache = instance

        instance = copy.deepcopy(cls._global_cache)

        # 2. Load Local Config (if applicable)
        if repo_path:
            local_toml = repo_path / LOCAL_CONFIG_NAME
            pyproject = repo_path / "pyproject.toml"

            if local_toml.exists():
                instance._merge_from_file(local_toml)
            elif pyproject.exists():
                instance._merge_from_file(pyproject, section=PYPROJECT_SECTION)

        # 3. Selections made through the CLI win over files.
        preferences = load_preferences()
        if preferences:
            instance._merge(preferences, source=str(PREFERENCES_FILE))

        return instance

    @classmethod
    def invalidate(cls) -> None:
        """Drops the cached global layer so the next load re-reads the file."""
        cls._global_cache = None

    def provider(self, provider_id: str) -> ProviderConfig:
        """Returns the settings block of a provider."""
        return getattr(self.providers, provider_id)

    def is_provider_enabled(self, provider_id: str) -> bool:
        return provider_id in PROVIDER_IDS and self.provider(provider_id).enabled

    def auth_method_for(self, provider_id: str) -> str:
        """Resolves the effective auth method, honoring the per-provider override."""
        method = self.provider(provider_id).auth_method
        if method and method != "inherit":
            return method
        return self.auth.method

    def resolve_model(self, provider_id: str) -> str | None:
        """Resolves the configured model for a provider.

        The global override wins over the provider-specific model. None means
        the provider should use its own default.
        """
        if self.ai.model.strip():
            return self.ai.model.strip()
        return self.provider(provider_id).model.strip() or None

    def _merge_from_file(self, path: Path, section: str | None = None) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
            section (str | None): Dot-separated section path (e.g., 'tool.scribe').
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if section:
                for key in section.split("."):
                    data = data.get(key, {})

            if not data:
                return

            self._merge(data, source=str(path))

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except OSError as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    def _merge(self, data: dict, source: str) -> None:
        """Merges a parsed mapping of sections into the current instance."""
        sections = {f.name for f in fields(self)}
        unknown = set(data) - sections
        if unknown:
            logger.warning(
                f"Unknown config sections in {source}: {', '.join(sorted(unknown))}. "
                "Ignoring."
            )

        for name in sections & set(data):
            updates = data[name]
            if not isinstance(updates, dict):
                logger.warning(f"Config section [{name}] in {source} is not a table.")
                continue
            if name == "providers":
                self.providers = self._update_providers(self.providers, updates)
            else:
                setattr(
                    self, name, self._update_dataclass(name, getattr(self, name), updates)
                )

    @classmethod
    def _update_providers(
        cls, providers: ProvidersConfig, updates: dict
    ) -> ProvidersConfig:
        """Updates the nested per-provider tables."""
        filtered = {}
        for provider_id, values in updates.items():
            if provider_id not in PROVIDER_IDS or not isinstance(values, dict):
                logger.warning(f"Unknown provider [providers.{provider_id}]. Ignoring.")
                continue
            filtered[provider_id] = cls._update_dataclass(
                f"providers.{provider_id}", getattr(providers, provider_id), values
            )
        return replace(providers, **filtered)

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        # 1. Catch and warn about typos / unknown keys
        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        # 2. Process valid keys
        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                # Route specific keys through our parsers
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k in _DURATION_KEYS:
                    filtered_updates[k] = parse_duration(v)
                elif k in _CHOICES:
                    filtered_updates[k] = _parse_choice(k, v)
                elif is_dataclass(getattr(instance, k)):
                    raise ValueError("Expected a table")
                else:
                    filtered_updates[k] = _check_type(getattr(instance, k), v)
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)


def _check_type(default: Any, value: Any) -> Any:
    """Validates a value against the type of the field's default."""
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ValueError(f"Expected true/false, got '{value}'")
    elif isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"Expected a non-negative integer, got '{value}'")
    elif isinstance(default, list):
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ValueError(f"Expected a list of strings, got '{value}'")
    elif isinstance(default, str) and not isinstance(value, str):
        raise ValueError(f"Expected a string, got '{value}'")
    return value


def load_preferences() -> dict:
    """Reads the CLI preferences layer.

    Returns:
        dict: Nested mapping of sections to values, empty if missing or invalid.
    """
    if not PREFERENCES_FILE.exists():
        return {}
    try:
        data = json.loads(PREFERENCES_FILE.read_text())
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable preferences file {PREFERENCES_FILE}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def save_preference(key: str, value: Any) -> None:
    """Persists a single setting to the preferences layer.

    Args:
        key (str): Dotted setting path (e.g., 'ai.provider', 'providers.openai.model').
        value (Any): A JSON-serializable value.
    """
    data = load_preferences()
    *parents, leaf = key.split(".")
    node = data
    for part in parents:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[leaf] = value

    PREFERENCES_FILE.parent.mkdir(parents=True, exist_ok=True)
    tmp_file = PREFERENCES_FILE.with_suffix(".tmp")
    with open(tmp_file, "w") as f:
        json.dump(data, f, indent=2, sort_keys=True)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_file, PREFERENCES_FILE)
    logger.debug(f"Preference saved: {key}={value!r}")
