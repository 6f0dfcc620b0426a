"""Tests for the HTTP and CLI backed commit message providers."""

import json
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from git_scribe.config import Config
from git_scribe.errors import ProviderRequestError, ProviderUnavailable
from git_scribe.messages import MessageGenerator, MessageSource
from git_scribe.prompt import AIOptions
from git_scribe.providers import (
    ClaudeProvider,
    CopilotProvider,
    OpenAIProvider,
    build_providers,
    is_chat_model,
)


@pytest.fixture
def auth() -> MagicMock:
    auth = MagicMock()
    auth.api_key.return_value = "sk-ant-test"
    auth.github_token = AsyncMock(return_value="gho_test")
    auth.has_codex_auth = AsyncMock(return_value=False)
    auth.has_claude_cli_auth = AsyncMock(return_value=False)
    return auth


@pytest.fixture
def mock_http(mocker: MagicMock):
    """Routes every `httpx.AsyncClient` through a handler set by the test."""
    real_client = httpx.AsyncClient
    routes: dict[str, httpx.Response] = {}
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return routes[request.url.path]

    def client(**kwargs) -> httpx.AsyncClient:
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    mocker.patch.object(httpx, "AsyncClient", side_effect=client)
    return SimpleNamespace(routes=routes, requests=requests)


def _chat_response(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def openai_client(mocker: MagicMock) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=_chat_response("Fix bug"))
    client.close = AsyncMock()
    mocker.patch("git_scribe.providers.AsyncOpenAI", return_value=client)
    return client


@pytest.mark.asyncio
async def test_claude_messages_api(auth: MagicMock, mock_http) -> None:
    mock_http.routes["/v1/messages"] = httpx.Response(
        200, json={"content": [{"type": "text", "text": "Add login form"}]}
    )
    provider = ClaudeProvider(Config(), auth)

    text = await provider.generate_commit_message("+diff", AIOptions(model="claude-x"))

    assert text == "Add login form"
    request = mock_http.requests[0]
    assert request.headers["x-api-key"] == "sk-ant-test"
    body = json.loads(request.content)
    assert body["model"] == "claude-x"
    assert "imperative mood" in body["system"]
    assert body["messages"][0]["content"].endswith("+diff")


@pytest.mark.asyncio
async def test_claude_http_error(auth: MagicMock, mock_http) -> None:
    mock_http.routes["/v1/messages"] = httpx.Response(401, text="invalid x-api-key")

    with pytest.raises(ProviderRequestError, match="401"):
        await ClaudeProvider(Config(), auth).generate_commit_message("+d", AIOptions())


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>proxy error</html>"),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={"content": "plain text"}),
    ],
)
@pytest.mark.asyncio
async def test_claude_malformed_body(
    auth: MagicMock, mock_http, response: httpx.Response
) -> None:
    mock_http.routes["/v1/messages"] = response

    with pytest.raises(ProviderRequestError, match="Claude API returned"):
        await ClaudeProvider(Config(), auth).generate_commit_message("+d", AIOptions())


@pytest.mark.asyncio
async def test_malformed_body_falls_back_to_timestamp(auth: MagicMock, mock_http) -> None:
    mock_http.routes["/v1/messages"] = httpx.Response(200, text="<html>proxy error</html>")
    conf = Config()
    conf.ai.retry_attempts = 2
    conf.ai.retry_delay = 0.0
    generator = MessageGenerator(conf, build_providers(conf, auth))

    message = await generator.generate("+diff")

    assert message.source == MessageSource.TIMESTAMP
    assert len(mock_http.requests) == 2


@pytest.mark.asyncio
async def test_claude_without_key(auth: MagicMock) -> None:
    auth.api_key.return_value = None
    provider = ClaudeProvider(Config(), auth)

    assert not await provider.is_available()
    with pytest.raises(ProviderUnavailable):
        await provider.generate_commit_message("+d", AIOptions())


@pytest.mark.asyncio
async def test_claude_cli_login_availability(auth: MagicMock) -> None:
    auth.api_key.return_value = None
    auth.has_claude_cli_auth.return_value = True
    conf = Config()
    conf.auth.method = "cli-login"

    assert await ClaudeProvider(conf, auth).is_available()


@pytest.mark.asyncio
async def test_claude_list_models(auth: MagicMock, mock_http) -> None:
    mock_http.routes["/v1/models"] = httpx.Response(
        200,
        json={
            "data": [
                {"id": "claude-old", "created_at": "2024-01-01T00:00:00Z"},
                {"id": "claude-new", "display_name": "New", "created_at": "2025-06-01T00:00:00Z"},
            ]
        },
    )

    models = await ClaudeProvider(Config(), auth).list_models()

    assert [m.id for m in models] == ["claude-new", "claude-old"]
    assert models[0].display_name == "New"


@pytest.mark.asyncio
async def test_claude_list_models_falls_back(auth: MagicMock, mock_http) -> None:
    mock_http.routes["/v1/models"] = httpx.Response(500)
    provider = ClaudeProvider(Config(), auth)

    models = await provider.list_models()

    assert [m.id for m in models] == list(ClaudeProvider.fallback_models)


@pytest.mark.asyncio
async def test_openai_chat_completion(auth: MagicMock, openai_client: MagicMock) -> None:
    auth.api_key.return_value = "sk-openai"

    text = await OpenAIProvider(Config(), auth).generate_commit_message(
        "+diff", AIOptions(model="gpt-test")
    )

    assert text == "Fix bug"
    kwargs = openai_client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "gpt-test"
    assert kwargs["messages"][0]["role"] == "system"
    openai_client.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_openai_empty_response(auth: MagicMock, openai_client: MagicMock) -> None:
    openai_client.chat.completions.create.return_value = _chat_response(None)

    with pytest.raises(ProviderRequestError, match="No response"):
        await OpenAIProvider(Config(), auth).generate_commit_message("+d", AIOptions())


@pytest.mark.asyncio
async def test_codex_retries_rejected_model(auth: MagicMock, mocker: MagicMock) -> None:
    """A model the account cannot use is retried with Codex's own default."""
    auth.has_codex_auth.return_value = True
    conf = Config()
    conf.auth.method = "cli-login"
    conf.providers.openai.model = "gpt-unknown"
    provider = OpenAIProvider(conf, auth)
    exec_codex = mocker.patch.object(
        provider,
        "_exec_codex",
        side_effect=[ProviderRequestError("Codex CLI error: model not supported"), "Fix bug"],
    )

    text = await provider.generate_commit_message("+d", AIOptions(), cwd=Path("/repo"))

    assert text == "Fix bug"
    assert exec_codex.await_args_list[0].args[2] == "gpt-unknown"
    assert len(exec_codex.await_args_list[1].args) == 2


@pytest.mark.asyncio
async def test_copilot_uses_github_models(
    auth: MagicMock, openai_client: MagicMock, mocker: MagicMock
) -> None:
    factory = mocker.patch("git_scribe.providers.AsyncOpenAI", return_value=openai_client)

    text = await CopilotProvider(Config(), auth).generate_commit_message("+d", AIOptions())

    assert text == "Fix bug"
    assert factory.call_args.kwargs["api_key"] == "gho_test"
    assert "models" in factory.call_args.kwargs["base_url"]


@pytest.mark.asyncio
async def test_copilot_without_token(auth: MagicMock) -> None:
    auth.github_token.return_value = None
    provider = CopilotProvider(Config(), auth)

    assert not await provider.is_available()
    assert [m.id for m in await provider.list_models()] == list(
        CopilotProvider.fallback_models
    )


@pytest.mark.asyncio
async def test_run_cli(auth: MagicMock, tmp_path: Path) -> None:
    provider = ClaudeProvider(Config(), auth)
    env = {"PATH": "/bin:/usr/bin"}

    out = await provider._run_cli(["sh", "-c", "echo '  Fix bug  '"], env, tmp_path, "Test CLI")
    assert out == "Fix bug"

    with pytest.raises(ProviderRequestError, match="Test CLI error: boom"):
        await provider._run_cli(
            ["sh", "-c", "echo boom >&2; exit 3"], env, tmp_path, "Test CLI"
        )

    with pytest.raises(ProviderRequestError, match="could not be started"):
        await provider._run_cli(["/nonexistent/cli"], {}, tmp_path, "Test CLI")


@pytest.mark.parametrize(
    ("model_id", "expected"),
    [
        ("gpt-4.1", True),
        ("o3-mini", True),
        ("gpt-5.1-codex-mini", True),
        ("text-embedding-3-small", False),
        ("whisper-1", False),
        ("gpt-4o-search-preview", False),
        ("davinci-002", False),
    ],
)
def test_is_chat_model(model_id: str, expected: bool) -> None:
    assert is_chat_model(model_id) is expected


def test_build_providers_order(auth: MagicMock) -> None:
    assert list(build_providers(Config(), auth)) == ["claude", "openai", "copilot"]
