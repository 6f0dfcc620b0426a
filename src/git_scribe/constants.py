"""Global constants and configuration path definitions for Git Scribe.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, provider defaults, and the tuning constants shared by the
commit engine.
"""

import os
from pathlib import Path

# --- Identity ---
APP_NAME = "git-scribe"
"""str: The human-readable application name."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "git-scribe"
"""Path: The directory for runtime state data (logs, credentials, preferences)."""

# Ensure state directory exists immediately upon module import.
STATE_DIR.mkdir(parents=True, exist_ok=True)

LOG_FILE = STATE_DIR / "daemon.log"
"""Path: The file path for the daemon process logs."""

PID_FILE = STATE_DIR / "daemon.pid"
"""Path: The file path storing the daemon's process ID."""

CREDENTIALS_FILE = STATE_DIR / "credentials.json"
"""Path: The secret store holding provider API keys and tokens."""

PREFERENCES_FILE = STATE_DIR / "preferences.json"
"""Path: Selections made through the CLI (provider, model, enabled flag)."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/git-scribe"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

LOCAL_CONFIG_NAME = "scribe.toml"
"""str: Per-repository configuration file name."""

PYPROJECT_SECTION = "tool.scribe"
"""str: The pyproject.toml table holding per-repository configuration."""

# --- AI Providers ---
PROVIDER_IDS = ("claude", "openai", "copilot")
"""tuple[str, ...]: Provider ids in fallback order."""

DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_OPENAI_MODEL = "gpt-4.1"
DEFAULT_COPILOT_MODEL = "openai/gpt-4.1"

ANTHROPIC_API_URL = "https://api.anthropic.com/v1"
ANTHROPIC_API_VERSION = "2023-06-01"
GITHUB_MODELS_URL = "https://models.github.ai/inference"
GITHUB_MODELS_CATALOG_URL = "https://models.github.ai/catalog/models"

MIN_REQUEST_TIMEOUT = 10.0
"""float: Floor (seconds) applied to the configured AI request timeout."""

MIN_DIFF_CHARS = 500
"""int: Floor applied to the configured diff character cap."""

DIFF_TRUNCATION_MARKER = "\n... (diff truncated)"

MESSAGE_LENGTHS = {"short": 50, "standard": 72, "detailed": 100}
"""dict[str, int]: Target commit message length per length preset."""

MAX_RESPONSE_TOKENS = 200

# --- Executable Discovery ---
CLI_PROBE_TIMEOUT = 7.0
"""float: Seconds allowed for each `--version`, `which` or shell PATH probe."""

CLAUDE_SESSION_INDICATORS = ("statsig", "settings.json", "projects")
"""tuple[str, ...]: Entries under ~/.claude that only exist after a completed login."""

# Environment variables set by editor integrations that make the Claude CLI try to
# talk to a parent process instead of running standalone.
CLAUDE_STRIPPED_ENV = ("CLAUDE_CODE_SSE_PORT", "CLAUDE_CODE_ENTRY_POINT")

# --- Git ---
DEFAULT_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
"""str: strftime format of the fallback commit message."""
