import logging
import os
import re
import subprocess
import sys
from collections.abc import Iterable
from pathlib import Path

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


def _newest_first(version_dirs: Iterable[Path]) -> list[Path]:
    """Sorts version directories such as `v20.3.0` numerically, newest first."""
    return sorted(
        version_dirs,
        key=lambda p: tuple(int(n) for n in re.findall(r"\d+", p.name)),
        reverse=True,
    )


class SystemStrategy:
    """Base class defining the interface for platform-level interactions.

    The defaults describe a POSIX system; subclasses adjust install locations,
    executable file names and notification delivery.
    """

    supports_which = True
    """bool: Whether `which <name>` is a usable lookup strategy."""

    def executable_names(self, name: str) -> list[str]:
        """Returns the file names under which a command may be installed."""
        return [name]

    def shell_candidates(self) -> list[str]:
        """Returns shells to probe for the login PATH, in order.

        Returns:
            list[str]: `$SHELL` first (if set), then the common system shells,
            without duplicates.
        """
        candidates = [os.environ.get("SHELL", ""), "/bin/zsh", "/bin/bash", "/bin/sh"]
        seen: list[str] = []
        for shell in candidates:
            if shell and shell not in seen:
                seen.append(shell)
        return seen

    def known_dirs(self) -> list[Path]:
        """Lists directories where package managers commonly install CLIs.

        Returns:
            list[Path]: Candidate `bin` directories (existence is not checked).
        """
        home = Path.home()
        dirs = [
            Path("/usr/local/bin"),
            Path("/opt/homebrew/bin"),
            home / "homebrew/bin",
            home / ".local/bin",
            home / ".npm-global/bin",
            home / ".npm/bin",
            home / ".volta/bin",
            home / "bin",
        ]
        npm_prefix = os.environ.get("npm_config_prefix")
        if npm_prefix:
            dirs.append(Path(npm_prefix) / "bin")
        nvm_bin = os.environ.get("NVM_BIN")
        if nvm_bin:
            dirs.append(Path(nvm_bin))
        dirs.append(self._nvm_dir() / "current/bin")
        return dirs

    def version_manager_dirs(self) -> list[Path]:
        """Lists the `bin` directories of every node installed by nvm or fnm.

        Newest-looking versions come first so the most recent install wins.
        """
        dirs: list[Path] = []
        nvm_versions = self._nvm_dir() / "versions/node"
        if nvm_versions.is_dir():
            dirs.extend(p / "bin" for p in _newest_first(nvm_versions.iterdir()))
        for fnm_root in self._fnm_dirs():
            versions = fnm_root / "node-versions"
            if versions.is_dir():
                dirs.extend(
                    p / "installation/bin" for p in _newest_first(versions.iterdir())
                )
        return dirs

    def _nvm_dir(self) -> Path:
        return Path(os.environ.get("NVM_DIR") or Path.home() / ".nvm")

    def _fnm_dirs(self) -> list[Path]:
        fnm_dir = os.environ.get("FNM_DIR")
        if fnm_dir:
            return [Path(fnm_dir)]
        return [Path.home() / ".local/share/fnm", Path.home() / ".fnm"]

    def notify(self, title: str, message: str) -> None:
        """Sends a desktop notification.

        Args:
            title (str): The notification title.
            message (str): The notification body text.
        """
        pass


class MacOSStrategy(SystemStrategy):
    """System strategy implementation for macOS."""

    def _fnm_dirs(self) -> list[Path]:
        return super()._fnm_dirs() + [Path.home() / "Library/Application Support/fnm"]

    def notify(self, title: str, message: str) -> None:
        """Sends a notification using AppleScript."""
        # Sanitize quotes to prevent AppleScript syntax errors.
        clean_msg = message.replace('"', "'")
        script = f'display notification "{clean_msg}" with title "{title}"'
        try:
            subprocess.run(["osascript", "-e", script], stderr=subprocess.DEVNULL)
        except OSError as e:
            logger.debug(f"Notification failed: {e}")


class LinuxStrategy(SystemStrategy):
    """System strategy implementation for Linux."""

    def notify(self, title: str, message: str) -> None:
        """Sends a notification using `notify-send`."""
        try:
            subprocess.run(["notify-send", title, message], stderr=subprocess.DEVNULL)
        except FileNotFoundError:
            pass


class WindowsStrategy(SystemStrategy):
    """System strategy implementation for Windows.

    npm installs `.cmd` shims, so every lookup tries the extension variants.
    There is no `which` and no login shell to probe.
    """

    supports_which = False

    def executable_names(self, name: str) -> list[str]:
        return [f"{name}.exe", f"{name}.cmd", f"{name}.bat", name]

    def shell_candidates(self) -> list[str]:
        return []

    def known_dirs(self) -> list[Path]:
        home = Path.home()
        dirs = [home / ".local/bin", home / "scoop/shims"]
        for var, suffix in (("APPDATA", "npm"), ("LOCALAPPDATA", "Volta/bin")):
            base = os.environ.get(var)
            if base:
                dirs.append(Path(base) / suffix)
        npm_prefix = os.environ.get("npm_config_prefix")
        if npm_prefix:
            dirs.append(Path(npm_prefix))
        nvm_symlink = os.environ.get("NVM_SYMLINK")
        if nvm_symlink:
            dirs.append(Path(nvm_symlink))
        return dirs

    def version_manager_dirs(self) -> list[Path]:
        nvm_home = os.environ.get("NVM_HOME")
        if not nvm_home or not Path(nvm_home).is_dir():
            return []
        return _newest_first(p for p in Path(nvm_home).iterdir() if p.is_dir())


def get_system() -> SystemStrategy:
    """Factory function to retrieve the platform-specific system strategy.

    Returns:
        SystemStrategy: An instance of MacOSStrategy, LinuxStrategy,
        WindowsStrategy, or the base SystemStrategy depending on the
        operating system.
    """
    if sys.platform == "darwin":
        return MacOSStrategy()
    elif sys.platform.startswith("linux"):
        return LinuxStrategy()
    elif sys.platform == "win32":
        return WindowsStrategy()
    else:
        return SystemStrategy()
