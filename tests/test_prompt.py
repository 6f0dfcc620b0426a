"""Tests for prompt construction and response normalization."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from git_scribe import constants, prompt
from git_scribe.constants import DIFF_TRUNCATION_MARKER, MIN_DIFF_CHARS
from git_scribe.prompt import (
    AIOptions,
    build_system_prompt,
    build_user_prompt,
    max_message_length,
    normalize_message,
    truncate_diff,
)


@pytest.mark.parametrize(
    "raw",
    [
        "fix bug",
        '"fix bug"',
        "'fix bug'",
        "`fix bug`",
        "```\nfix bug\n```",
        "```text\nfix bug\n```",
        '  "`fix bug`"  ',
        "fix\n  bug\t",
        "```\n\"fix bug\"\n```",
    ],
)
def test_normalize_message_examples(raw: str) -> None:
    """Every wrapping a model commonly adds is stripped down to the message."""
    assert normalize_message(raw) == "fix bug"


def test_normalize_message_keeps_inner_quotes() -> None:
    assert normalize_message('Rename "foo" to bar') == 'Rename "foo" to bar'
    assert normalize_message("Don't panic") == "Don't panic"


def test_normalize_message_empty() -> None:
    assert normalize_message("") == ""
    assert normalize_message('""') == ""
    assert normalize_message("```\n```") == ""


@given(st.text())
def test_normalize_message_is_idempotent(raw: str) -> None:
    """Property: normalizing an already normalized message changes nothing."""
    once = normalize_message(raw)
    assert normalize_message(once) == once


@given(st.text())
def test_normalize_message_is_single_line(raw: str) -> None:
    """Property: the result never contains line breaks or edge whitespace."""
    result = normalize_message(raw)
    assert "\n" not in result
    assert result == result.strip()


def test_truncate_diff_respects_minimum_cap() -> None:
    diff = "x" * (MIN_DIFF_CHARS + 100)

    truncated = truncate_diff(diff, 10)

    assert truncated == "x" * MIN_DIFF_CHARS + DIFF_TRUNCATION_MARKER


def test_truncate_diff_leaves_short_diffs_alone() -> None:
    assert truncate_diff("small diff", 1000) == "small diff"
    assert truncate_diff("y" * 1000, 1000) == "y" * 1000


def test_max_message_length() -> None:
    assert max_message_length("short") == 50
    assert max_message_length("standard") == 72
    assert max_message_length("detailed") == 100
    assert max_message_length("bogus") == 72


def test_system_prompt_styles() -> None:
    simple = build_system_prompt(AIOptions())
    assert "imperative mood" in simple
    assert "under 72 characters" in simple
    assert "Conventional Commits" not in simple

    conventional = build_system_prompt(AIOptions(style="conventional", length="short"))
    assert "Conventional Commits" in conventional
    assert "under 50 characters" in conventional

    emoji = build_system_prompt(AIOptions(style="emoji"))
    assert "✨" in emoji
    assert "Prepend an appropriate emoji" not in emoji

    with_emoji = build_system_prompt(AIOptions(use_emojis=True))
    assert "Prepend an appropriate emoji" in with_emoji


def test_custom_style_replaces_rules() -> None:
    prompt = build_system_prompt(
        AIOptions(style="custom", custom_instructions="Write in pirate speak.")
    )

    assert "Write in pirate speak." in prompt
    assert "imperative mood" not in prompt


def test_custom_style_without_instructions_uses_base_rules() -> None:
    assert "imperative mood" in build_system_prompt(AIOptions(style="custom"))


def test_additional_instructions_are_appended() -> None:
    prompt = build_system_prompt(AIOptions(custom_instructions="Mention the ticket"))

    assert "imperative mood" in prompt
    assert "Additional instructions: Mention the ticket" in prompt


def test_user_prompt_contains_diff() -> None:
    assert build_user_prompt("+line").endswith("\n\n+line")


@pytest.mark.parametrize("module", [prompt, constants])
def test_module_docstring_is_attached(module) -> None:
    assert module.__doc__ and module.__doc__.strip()
