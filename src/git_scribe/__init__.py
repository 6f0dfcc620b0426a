"""git-scribe: AI-assisted auto-commit for git repositories.

This package provides the command-line interface, the asyncio engine that turns
file saves into debounced commits with AI-generated messages, and the push/pull
coordination that keeps the branch in sync with its remote.
"""

from . import (
    cli,
    config,
    constants,
    daemon,
    engine,
    git_wrapper,
    locator,
    messages,
    ops,
    stager,
    sync,
    system,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "daemon",
    "engine",
    "git_wrapper",
    "locator",
    "messages",
    "ops",
    "stager",
    "sync",
    "system",
]
