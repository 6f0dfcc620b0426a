"""Prompt construction and response clean-up for AI commit messages."""

import re
from dataclasses import dataclass

from .constants import DIFF_TRUNCATION_MARKER, MESSAGE_LENGTHS, MIN_DIFF_CHARS

_BASE_RULES = """You are a git commit message generator. Given a git diff, write a concise, meaningful commit message.

Rules:
- Use imperative mood (e.g., "Add feature" not "Added feature")
- Keep the message on a single line, under {limit} characters
- Be specific about what changed
- Output ONLY the commit message, nothing else"""

_CUSTOM_RULES = """You are a git commit message generator. Given a git diff, write a commit message following these instructions:

{instructions}

Keep the message under {limit} characters and output ONLY the commit message, nothing else."""

_STYLE_RULES = {
    "conventional": """- Use Conventional Commits format: <type>: <description>
- Valid types: feat, fix, docs, style, refactor, test, chore, perf, ci, build, revert
- Example: "feat: add user authentication" or "fix: resolve memory leak\"""",
    "emoji": """- Start the message with an appropriate emoji:
  - ✨ New feature
  - 🐛 Bug fix
  - 📝 Documentation
  - ♻️ Refactor
  - 🎨 Style/format
  - ⚡ Performance
  - ✅ Tests
  - 🔧 Configuration
  - 🚀 Deployment
- Example: "✨ add user authentication" or "🐛 fix memory leak\"""",
}

_FENCE = re.compile(r"^```[^\n]*\n(.*?)\n?```$", re.DOTALL)
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class AIOptions:
    """Per-request generation options.

    Attributes:
        style (str): 'simple', 'conventional', 'emoji' or 'custom'.
        length (str): 'short', 'standard' or 'detailed'.
        custom_instructions (str): Extra rules, or the full rules for 'custom'.
        use_emojis (bool): Ask for a leading emoji (implied by the 'emoji' style).
        model (str | None): The resolved model, None for the provider default.
        max_diff_chars (int): Diff character cap before truncation.
    """

    style: str = "simple"
    length: str = "standard"
    custom_instructions: str = ""
    use_emojis: bool = False
    model: str | None = None
    max_diff_chars: int = 200_000


def max_message_length(length: str) -> int:
    return MESSAGE_LENGTHS.get(length, MESSAGE_LENGTHS["standard"])


def build_system_prompt(options: AIOptions) -> str:
    """Builds the instructions sent ahead of the diff.

    The 'custom' style with instructions replaces the structural rules
    entirely; every other style appends its rules to the base set.
    """
    limit = max_message_length(options.length)
    instructions = options.custom_instructions.strip()

    if options.style == "custom" and instructions:
        return _CUSTOM_RULES.format(instructions=instructions, limit=limit)

    prompt = _BASE_RULES.format(limit=limit)
    if options.style in _STYLE_RULES:
        prompt += "\n" + _STYLE_RULES[options.style]
    if options.use_emojis and options.style != "emoji":
        prompt += "\n- Prepend an appropriate emoji to the message"
    if instructions and options.style != "custom":
        prompt += f"\n- Additional instructions: {instructions}"
    return prompt


def build_user_prompt(diff: str) -> str:
    return f"Generate a commit message for the following git diff:\n\n{diff}"


def truncate_diff(diff: str, max_chars: int) -> str:
    """Caps the diff size, never below the minimum cap.

    Args:
        diff (str): The staged diff.
        max_chars (int): The configured cap.

    Returns:
        str: The diff, cut at the cap with a truncation marker appended when
        it was longer.
    """
    limit = max(MIN_DIFF_CHARS, max_chars)
    if len(diff) <= limit:
        return diff
    return diff[:limit] + DIFF_TRUNCATION_MARKER


def _strip_pair(text: str, char: str) -> str:
    if len(text) >= 2 and text.startswith(char) and text.endswith(char):
        return text[1:-1].strip()
    return text


def _normalize_once(text: str) -> str:
    cleaned = text.strip()
    cleaned = _FENCE.sub(r"\1", cleaned).strip()
    for char in ("`", '"', "'"):
        cleaned = _strip_pair(cleaned, char)
    return _WHITESPACE.sub(" ", cleaned).strip()


def normalize_message(text: str) -> str:
    """Cleans a raw model response into a single-line commit message.

    Strips a markdown code fence, then surrounding backticks, double quotes
    and single quotes, then collapses whitespace. The passes repeat until
    nothing changes, so normalizing twice equals normalizing once.

    Args:
        text (str): The raw response.

    Returns:
        str: The cleaned message (possibly empty).
    """
    current = text
    while True:
        cleaned = _normalize_once(current)
        if cleaned == current:
            return cleaned
        current = cleaned
