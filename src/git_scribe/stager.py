import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache

from .config import Config
from .constants import APP_NAME
from .errors import StagingError, VcsError
from .git_wrapper import GitRepo

logger = logging.getLogger(APP_NAME)

# git add failures that mean "nothing to stage here" rather than a real error.
_SKIPPABLE_FAILURES = (
    (re.compile(r"pathspec .* is in submodule", re.IGNORECASE), "inside a submodule"),
    (
        re.compile(r"ignored by one of your \.gitignore files", re.IGNORECASE),
        "ignored by .gitignore",
    ),
    (re.compile(r"did not match any files", re.IGNORECASE), "pathspec matched nothing"),
)


@lru_cache(maxsize=64)
def _compile_glob(pattern: str) -> re.Pattern[str]:
    """Translates a glob into a regex.

    `**` spans directories, `*` and `?` stay within one path segment, and
    `{a,b}` alternates. A leading `**/` may match zero directories, so
    `**/*.py` also matches a top-level `setup.py`.
    """
    i, out, depth = 0, [], 0
    while i < len(pattern):
        c = pattern[i]
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
            continue
        if pattern.startswith("**", i):
            out.append(".*")
            i += 2
            continue
        if c == "*":
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "{":
            out.append("(?:")
            depth += 1
        elif c == "}" and depth:
            out.append(")")
            depth -= 1
        elif c == "," and depth:
            out.append("|")
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1 : end].replace("\\", "\\\\")
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("".join(out) + ")" * depth + r"\Z")


def matches_pattern(path: str, pattern: str) -> bool:
    """Checks a repository-relative path against the file glob.

    Args:
        path (str): Path relative to the repository root ('/' separated).
        pattern (str): The glob (e.g., '**/*', 'src/**/*.py').

    Returns:
        bool: True if the path matches.
    """
    return bool(_compile_glob(pattern.strip() or "**/*").match(path.replace("\\", "/")))


def classify_staging_failure(message: str) -> str | None:
    """Returns why a `git add` failure is skippable, or None if it is fatal."""
    for regex, reason in _SKIPPABLE_FAILURES:
        if regex.search(message):
            return reason
    return None


@dataclass
class StageResult:
    """What a staging pass did.

    Attributes:
        changed (list[str]): Every changed path git reported.
        matched (list[str]): The subset matching the file glob.
        staged (list[str]): Paths in the index for this commit.
        skipped (dict[str, str]): Paths skipped while staging, with the reason.
        pre_staged (bool): The user had staged changes; nothing was added.
        files_changed (int): Staged files, when thresholds were measured.
        lines_changed (int): Staged lines, when thresholds were measured.
        below_threshold (bool): The volume was under the configured minimums.
    """

    changed: list[str] = field(default_factory=list)
    matched: list[str] = field(default_factory=list)
    staged: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    pre_staged: bool = False
    files_changed: int = 0
    lines_changed: int = 0
    below_threshold: bool = False

    @property
    def ready(self) -> bool:
        """True when there is something worth committing."""
        return bool(self.staged) and not self.below_threshold


class ChangeStager:
    """Stages the changes of one commit cycle.

    Attributes:
        repo (GitRepo): The repository to stage in.
        config (Config): Supplies the file glob and the volume thresholds.
    """

    def __init__(self, repo: GitRepo, config: Config):
        self.repo = repo
        self.config = config

    async def stage(self) -> StageResult:
        """Prepares the index for a commit.

        If the user already staged changes, that set is used as is. Otherwise
        every changed path matching the glob is staged one at a time.

        Returns:
            StageResult: The outcome; `ready` is False when the cycle should be
            skipped.

        Raises:
            StagingError: If a path fails to stage for a non-skippable reason.
            VcsError: If git cannot report the repository state.
        """
        # 1. Respect a hand-crafted index.
        staged = await self.repo.staged_paths()
        if staged:
            logger.info(f"Using {len(staged)} pre-staged path(s) in {self.repo.path}")
            result = StageResult(staged=staged, pre_staged=True)
            if self.config.core.enforce_thresholds_on_staged:
                await self._apply_thresholds(result)
            return result

        # 2. Enumerate and filter.
        result = StageResult(changed=await self.repo.changed_paths())
        pattern = self.config.core.file_pattern
        result.matched = [p for p in result.changed if matches_pattern(p, pattern)]

        # 3. Stage one path at a time so a single bad path cannot block the rest.
        for path in result.matched:
            try:
                await self.repo.add(path)
            except VcsError as e:
                reason = classify_staging_failure(e.stderr or str(e))
                if reason is None:
                    raise StagingError(path, e.stderr or str(e)) from e
                logger.info(f"Skipping {path}: {reason}")
                result.skipped[path] = reason
                continue
            result.staged.append(path)

        if not result.staged:
            logger.debug(f"No stageable changes in {self.repo.path}")
            return result

        await self._apply_thresholds(result)
        return result

    async def _apply_thresholds(self, result: StageResult) -> None:
        core = self.config.core
        if core.min_files_changed <= 0 and core.min_lines_changed <= 0:
            return

        files, lines = await self.repo.staged_stats()
        result.files_changed, result.lines_changed = files, lines
        if files >= core.min_files_changed and lines >= core.min_lines_changed:
            return

        result.below_threshold = True
        logger.info(
            f"Change volume below threshold ({files} file(s), {lines} line(s); "
            f"need {core.min_files_changed} file(s), {core.min_lines_changed} line(s))"
        )
        if result.pre_staged:
            return
        try:
            await self.repo.reset_paths(result.staged)
        except VcsError as e:
            logger.warning(f"Failed to unstage below-threshold changes: {e}")
