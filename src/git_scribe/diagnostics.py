import asyncio
import logging
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Protocol

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


class Severity(IntEnum):
    """Diagnostic severity; lower values are more severe."""

    ERROR = 0
    WARNING = 1
    INFO = 2
    HINT = 3


@dataclass(frozen=True)
class Diagnostic:
    severity: Severity
    message: str


class DiagnosticsProvider(Protocol):
    async def diagnostics_for(self, path: Path) -> list[Diagnostic]: ...


class NullDiagnostics:
    """Reports nothing; used when no validation command is configured."""

    async def diagnostics_for(self, path: Path) -> list[Diagnostic]:
        return []


class CommandDiagnostics:
    """Runs a checker command against a saved file.

    Each argument may contain `{path}`, replaced by the file's absolute path.
    A non-zero exit is reported as one ERROR diagnostic carrying the
    checker's output.

    Attributes:
        command (list[str]): The checker argv template.
        timeout (float): Seconds before the checker is killed and ignored.
    """

    def __init__(self, command: list[str], timeout: float = 30.0):
        self.command = command
        self.timeout = timeout

    async def diagnostics_for(self, path: Path) -> list[Diagnostic]:
        argv = [arg.replace("{path}", str(path)) for arg in self.command]
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            output, _ = await asyncio.wait_for(proc.communicate(), self.timeout)
        except OSError as e:
            logger.warning(f"Validation command failed to start: {e}")
            return []
        except TimeoutError:
            proc.kill()
            await proc.wait()
            logger.warning(f"Validation command timed out for {path}")
            return []

        if proc.returncode == 0:
            return []
        message = output.decode(errors="replace").strip() or f"exit code {proc.returncode}"
        return [Diagnostic(Severity.ERROR, message)]


def build_diagnostics(command: list[str]) -> DiagnosticsProvider:
    return CommandDiagnostics(command) if command else NullDiagnostics()


def blocks_commit(diagnostics: list[Diagnostic], level: str) -> bool:
    """Checks diagnostics against the configured validation level.

    Args:
        diagnostics (list[Diagnostic]): The saved file's diagnostics.
        level (str): 'error', 'warning' or 'none'.

    Returns:
        bool: True if any diagnostic is at or above the threshold.
    """
    if level == "none":
        return False
    threshold = Severity.WARNING if level == "warning" else Severity.ERROR
    return any(d.severity <= threshold for d in diagnostics)
