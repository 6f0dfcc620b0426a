"""Tests for the Command Line Interface (CLI) module."""

import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_scribe import cli
from git_scribe.config import load_preferences, save_preference


def test_parser_defaults_to_watch() -> None:
    args = cli.build_parser().parse_args([])

    assert args.command is None
    assert args.path is None


def test_parser_sign_in_options() -> None:
    args = cli.build_parser().parse_args(["sign-in", "openai", "--api-key"])

    assert args.command == "sign-in"
    assert args.provider == "openai"
    assert args.api_key is True


def test_help_groups_commands(capsys: pytest.CaptureFixture) -> None:
    """Verifies that the help output lists subcommands under group headers.

    Args:
        capsys (pytest.CaptureFixture): Pytest fixture for capturing stdout.
    """
    cli.main(["help"])

    out = capsys.readouterr().out
    assert "Engine:" in out
    assert "AI Providers:" in out
    assert out.index("select-model") > out.index("AI Providers:")


@pytest.mark.parametrize(("command", "expected"), [("enable", True), ("disable", False)])
def test_enable_disable_persist(command: str, expected: bool) -> None:
    cli.main([command])

    assert load_preferences()["core"]["enabled"] is expected


def test_watch_is_the_default(mocker: MagicMock) -> None:
    run = mocker.patch("git_scribe.cli.daemon.main")

    cli.main(["-C", "/work/repo"])

    run.assert_called_once_with([Path("/work/repo")], interactive=True)


def test_watch_background(mocker: MagicMock) -> None:
    run = mocker.patch("git_scribe.cli.daemon.main")

    cli.main(["watch", "a", "b", "--background"])

    run.assert_called_once_with([Path("a"), Path("b")], interactive=False)


def test_config_list(mocker: MagicMock) -> None:
    reference = mocker.patch("git_scribe.cli.ops.show_config_reference")
    editor = mocker.patch("git_scribe.cli.ops.open_config")

    cli.main(["config", "--list"])

    reference.assert_called_once()
    editor.assert_not_called()


def test_commit_command(
    git_repo: Path,
    run_git,
    capsys: pytest.CaptureFixture,
    restore_logger: logging.Logger,
) -> None:
    save_preference("ai.enabled", False)
    save_preference("core.message_format", "manual checkpoint")
    save_preference("sync.auto_push", "off")
    (git_repo / "README.md").write_text("edited\n")

    cli.main(["-C", str(git_repo), "commit"])

    assert "Committed: manual checkpoint" in capsys.readouterr().out
    assert run_git(git_repo, "log", "-1", "--format=%s").strip() == "manual checkpoint"


def test_commit_with_nothing_to_do(
    git_repo: Path, capsys: pytest.CaptureFixture, restore_logger: logging.Logger
) -> None:
    save_preference("ai.enabled", False)

    cli.main(["-C", str(git_repo), "commit"])

    assert "Nothing committed (no changes to commit)" in capsys.readouterr().out


def test_commit_outside_repository(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["-C", str(tmp_path), "commit"])

    assert exc_info.value.code == 1


def test_push_without_remote(
    git_repo: Path, capsys: pytest.CaptureFixture, restore_logger: logging.Logger
) -> None:
    cli.main(["-C", str(git_repo), "push"])

    assert "Nothing to push" in capsys.readouterr().out


def test_providers_use(git_repo: Path) -> None:
    cli.main(["-C", str(git_repo), "providers", "--use", "copilot"])

    prefs = load_preferences()
    assert prefs["ai"]["provider"] == "copilot"
    assert prefs["providers"]["copilot"]["enabled"] is True


def test_providers_rejects_unknown_id(git_repo: Path) -> None:
    with pytest.raises(SystemExit):
        cli.main(["-C", str(git_repo), "providers", "--disable", "gemini"])
