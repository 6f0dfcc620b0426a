import asyncio
import logging
import os
from pathlib import Path

from .constants import APP_NAME
from .errors import VcsError

logger = logging.getLogger(APP_NAME)


def parse_porcelain_z(output: str) -> list[str]:
    """Extracts changed paths from `git status --porcelain -z` output.

    Entries are NUL-separated and look like `XY <path>`. Rename and copy
    entries are followed by a second entry holding the original path, which
    is consumed without being reported.

    Args:
        output (str): The raw, unstripped command output.

    Returns:
        list[str]: Changed paths in the order git reported them, de-duplicated.
    """
    entries = output.split("\0")
    paths: list[str] = []
    seen: set[str] = set()
    i = 0
    while i < len(entries):
        entry = entries[i]
        i += 1
        if len(entry) < 4:
            continue
        status, path = entry[:2], entry[3:]
        if "R" in status or "C" in status:
            # Skip the original path of a rename/copy pair.
            i += 1
        if path not in seen:
            seen.add(path)
            paths.append(path)
    return paths


async def _exec_git(
    args: list[str], cwd: Path | None = None
) -> tuple[int, str, str]:
    env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
    try:
        proc = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=cwd,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise VcsError(f"Could not start git: {e}", args) from e
    stdout, stderr = await proc.communicate()
    return (
        proc.returncode or 0,
        stdout.decode(errors="replace"),
        stderr.decode(errors="replace"),
    )


async def find_repo_root(path: Path) -> Path | None:
    """Resolves the root of the repository containing a path.

    Args:
        path (Path): A file or directory inside a working tree.

    Returns:
        Path | None: The working tree root, or None if the path is not inside
        a repository (or git cannot be run).
    """
    directory = path if path.is_dir() else path.parent
    if not directory.exists():
        return None
    try:
        code, stdout, _ = await _exec_git(
            ["-C", str(directory), "rev-parse", "--show-toplevel"]
        )
    except VcsError as e:
        logger.debug(f"Repository lookup failed for {path}: {e}")
        return None
    if code != 0 or not stdout.strip():
        return None
    return Path(stdout.strip()).resolve()


class GitRepo:
    """An asynchronous wrapper around the Git command-line interface.

    Every operation is a `git` subprocess run in the repository root; a
    non-zero exit raises `VcsError` carrying git's error output.

    Attributes:
        path (Path): The file system path to the repository root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.

        Raises:
            ValueError: If the specified path does not contain a .git entry.
        """
        self.path = path
        if not (self.path / ".git").exists():
            raise ValueError(f"Not a git repository: {self.path}")

    async def _run(self, args: list[str], strip: bool = True) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            strip (bool, optional): Whether to strip surrounding whitespace from
                                    stdout. Disable for NUL-delimited output.
                                    Defaults to True.

        Returns:
            str: The command's stdout.

        Raises:
            VcsError: If the git command returns a non-zero exit code.
        """
        code, stdout, stderr = await _exec_git(args, cwd=self.path)
        if code != 0:
            detail = (stderr or stdout).strip()
            raise VcsError(f"Git error: {detail}", args, detail)
        return stdout.strip() if strip else stdout

    async def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch.

        Returns:
            str: The branch name ('HEAD' when detached).
        """
        return await self._run(["rev-parse", "--abbrev-ref", "HEAD"])

    async def changed_paths(self) -> list[str]:
        """Lists every path with staged, unstaged or untracked changes.

        Returns:
            list[str]: Repository-relative paths, renames reported by new path.
        """
        output = await self._run(
            ["status", "--porcelain", "-z", "--untracked-files=all"], strip=False
        )
        return parse_porcelain_z(output)

    async def has_changes(self) -> bool:
        return bool(await self.changed_paths())

    async def staged_paths(self) -> list[str]:
        output = await self._run(["diff", "--cached", "--name-only", "-z"], strip=False)
        return [p for p in output.split("\0") if p]

    async def staged_diff(self) -> str:
        """Returns the full patch of the index against HEAD."""
        return await self._run(["diff", "--cached"], strip=False)

    async def staged_stats(self) -> tuple[int, int]:
        """Measures the staged change volume.

        Binary files, reported by `--numstat` as `-`, count as one line.

        Returns:
            tuple[int, int]: (files_changed, lines_changed).
        """
        output = await self._run(["diff", "--cached", "--numstat"])
        files = lines = 0
        for row in output.splitlines():
            parts = row.split("\t", 2)
            if len(parts) < 3:
                continue
            added, deleted = parts[0], parts[1]
            files += 1
            if added == "-" or deleted == "-":
                lines += 1
            else:
                lines += int(added) + int(deleted)
        return files, lines

    async def add(self, path: str) -> None:
        """Stages a single path.

        Args:
            path (str): Repository-relative path to stage.
        """
        await self._run(["add", "--", path])

    async def reset_paths(self, paths: list[str]) -> None:
        """Removes paths from the index, keeping working tree changes."""
        if not paths:
            return
        await self._run(["reset", "-q", "--", *paths])

    async def commit(self, message: str, no_verify: bool = False) -> None:
        """Creates a new commit with the provided message.

        Args:
            message (str): The commit message.
            no_verify (bool, optional): Whether to bypass pre-commit hooks
                                        (`--no-verify`). Defaults to False.
        """
        cmd = ["commit", "-m", message]
        if no_verify:
            cmd.append("--no-verify")
        await self._run(cmd)

    async def remotes(self) -> list[str]:
        output = await self._run(["remote"])
        return output.splitlines() if output else []

    async def has_remote(self, name: str | None = None) -> bool:
        """Checks for a remote named `name`, or for any remote when omitted."""
        remotes = await self.remotes()
        return name in remotes if name else bool(remotes)

    async def upstream(self) -> str | None:
        """Resolves the upstream tracking ref of the current branch.

        Returns:
            str | None: The upstream (e.g., 'origin/main'), or None if unset.
        """
        try:
            return await self._run(
                ["rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{upstream}"]
            )
        except VcsError as e:
            logger.debug(f"No upstream for {self.path}: {e.stderr}")
            return None

    async def push(self, args: list[str]) -> None:
        """Runs `git push` with the given arguments."""
        await self._run(["push", *args])

    async def pull_rebase(self) -> None:
        await self._run(["pull", "--rebase"])
