"""Locates command-line tools across inconsistent shell environments.

GUI-launched and service-launched processes often inherit a minimal PATH
that lacks the directories a user's login shell adds (Homebrew, npm, nvm).
The locator compensates by merging the login-shell PATH with the process
PATH and a list of well-known install directories, then trying several
lookup strategies in order.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from .constants import APP_NAME, CLI_PROBE_TIMEOUT
from .system import SystemStrategy, get_system

logger = logging.getLogger(APP_NAME)


class Provenance(StrEnum):
    """Which strategy located an executable."""

    DIRECT = "direct"
    WHICH = "which"
    KNOWN_DIR = "known-dir"
    VERSION_MANAGER = "version-manager"


@dataclass(frozen=True)
class ExecutableResolution:
    """A located executable.

    Attributes:
        name (str): The command that was looked up (e.g., 'claude').
        path (str): What to execute: the bare name for direct hits, otherwise
            an absolute path.
        provenance (Provenance): The strategy that found it.
    """

    name: str
    path: str
    provenance: Provenance


def merge_path_values(*values: str | None) -> str:
    """Merges PATH-style strings, keeping the first occurrence of each entry.

    Args:
        *values (str | None): PATH strings, in priority order. None and empty
            values are ignored.

    Returns:
        str: The merged value joined with the platform path separator.
    """
    seen: set[str] = set()
    merged: list[str] = []
    for value in values:
        if not value:
            continue
        for entry in value.split(os.pathsep):
            entry = entry.strip()
            if entry and entry not in seen:
                seen.add(entry)
                merged.append(entry)
    return os.pathsep.join(merged)


async def run_probe(
    cmd: list[str], env: dict[str, str] | None, timeout: float
) -> tuple[int, str]:
    """Runs a short-lived command and returns (exit code, stdout).

    Raises:
        FileNotFoundError: If the executable does not exist.
        TimeoutError: If the command outlives the timeout (it is killed).
        OSError: For any other failure to start the process.
    """
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        env=env,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.DEVNULL,
    )
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        raise
    return proc.returncode or 0, stdout.decode(errors="replace")


class ExecutableLocator:
    """Resolves tool names to runnable paths.

    Strategies, first success wins:

    1. Run `<name> --version`. A missing executable is a miss; any other
       failure (non-zero exit, permission error, timeout) proves the command
       exists and counts as a hit.
    2. Ask `which <name>` (skipped on Windows).
    3. Scan well-known install directories, then node version-manager
       directories, for every platform file name variant.

    Positive results are cached; misses are not, so a tool installed while
    the process runs is found on the next lookup.
    """

    def __init__(
        self,
        system: SystemStrategy | None = None,
        probe_timeout: float = CLI_PROBE_TIMEOUT,
    ):
        self.system = system or get_system()
        self.probe_timeout = probe_timeout
        self._cache: dict[str, ExecutableResolution] = {}
        self._login_path_task: asyncio.Task[str | None] | None = None

    def invalidate(self) -> None:
        """Forgets cached resolutions (the login-shell PATH stays memoized)."""
        self._cache.clear()

    async def find(self, name: str) -> str | None:
        """Returns the path to run for a tool, or None if it cannot be found."""
        resolution = await self.locate(name)
        return resolution.path if resolution else None

    async def locate(self, name: str) -> ExecutableResolution | None:
        """Resolves a tool name, trying each strategy in order.

        Args:
            name (str): The command to find (e.g., 'claude', 'codex', 'gh').

        Returns:
            ExecutableResolution | None: The resolution, or None when every
            strategy misses. Never raises for a missing tool.
        """
        cached = self._cache.get(name)
        if cached:
            return cached

        env = await self.execution_env()

        resolution = await self._try_direct(name, env)
        if resolution is None and self.system.supports_which:
            resolution = await self._try_which(name, env)
        if resolution is None:
            resolution = self._scan(name, self.system.known_dirs(), Provenance.KNOWN_DIR)
        if resolution is None:
            resolution = self._scan(
                name, self.system.version_manager_dirs(), Provenance.VERSION_MANAGER
            )

        if resolution is None:
            logger.debug(f"CLI not found: '{name}'")
            return None

        logger.debug(f"CLI '{name}' resolved via {resolution.provenance}: {resolution.path}")
        self._cache[name] = resolution
        return resolution

    async def execution_env(self) -> dict[str, str]:
        """Builds the environment used to run located tools.

        Returns:
            dict[str, str]: A copy of the process environment whose PATH merges
            the process PATH, the login-shell PATH and the known directories.
        """
        login_path = await self.login_shell_path()
        known = os.pathsep.join(str(d) for d in self.system.known_dirs())
        merged = merge_path_values(os.environ.get("PATH"), login_path, known)
        env = dict(os.environ)
        if merged:
            env["PATH"] = merged
        return env

    async def login_shell_path(self) -> str | None:
        """Returns the PATH a login shell would see.

        The probe runs once per locator; concurrent callers share the same
        in-flight probe.
        """
        if self._login_path_task is None:
            self._login_path_task = asyncio.ensure_future(self._probe_login_shell())
        return await asyncio.shield(self._login_path_task)

    async def _probe_login_shell(self) -> str | None:
        for shell in self.system.shell_candidates():
            try:
                code, stdout = await run_probe(
                    [shell, "-lc", 'printf %s "$PATH"'], None, self.probe_timeout
                )
            except (OSError, TimeoutError) as e:
                logger.debug(f"PATH probe failed ({shell}): {e!r}")
                continue
            resolved = stdout.strip()
            logger.debug(f"PATH probe result ({shell}): {resolved or '(empty)'}")
            if code == 0 and resolved:
                return resolved
        return None

    async def _try_direct(
        self, name: str, env: dict[str, str]
    ) -> ExecutableResolution | None:
        try:
            await run_probe([name, "--version"], env, self.probe_timeout)
        except FileNotFoundError:
            logger.debug(f"CLI not on PATH: '{name}'")
            return None
        except (OSError, TimeoutError) as e:
            # The command exists; it just cannot report a version.
            logger.debug(f"CLI '{name}' exists but --version failed: {e!r}")
        return ExecutableResolution(name, name, Provenance.DIRECT)

    async def _try_which(
        self, name: str, env: dict[str, str]
    ) -> ExecutableResolution | None:
        try:
            code, stdout = await run_probe(["which", name], env, self.probe_timeout)
        except (OSError, TimeoutError) as e:
            logger.debug(f"'which {name}' failed: {e!r}")
            return None
        path = stdout.strip().splitlines()[0] if stdout.strip() else ""
        if code != 0 or not path:
            return None
        return ExecutableResolution(name, path, Provenance.WHICH)

    def _scan(
        self, name: str, dirs: list[Path], provenance: Provenance
    ) -> ExecutableResolution | None:
        candidates = self.system.executable_names(name)
        for directory in dirs:
            for candidate in candidates:
                full_path = directory / candidate
                if full_path.is_file() and os.access(full_path, os.X_OK):
                    return ExecutableResolution(name, str(full_path), provenance)
        return None
