import stat
from pathlib import Path

import pytest

from git_scribe.credentials import API_KEY, OAUTH_TOKEN, SecretStore


@pytest.fixture
def store(tmp_path: Path) -> SecretStore:
    return SecretStore(tmp_path / "state" / "credentials.json")


def test_set_and_get(store: SecretStore) -> None:
    store.set("claude", API_KEY, "  sk-ant-123  ")

    assert store.get("claude", API_KEY) == "sk-ant-123"
    assert store.get("claude", OAUTH_TOKEN) is None
    assert store.get("openai", API_KEY) is None


def test_file_is_owner_only(store: SecretStore) -> None:
    """Verifies that the backing file is created with mode 0600."""
    store.set("openai", API_KEY, "sk-1")

    assert stat.S_IMODE(store.path.stat().st_mode) == 0o600


def test_set_rejects_bad_input(store: SecretStore) -> None:
    with pytest.raises(ValueError, match="Unknown secret kind"):
        store.set("claude", "password", "x")
    with pytest.raises(ValueError, match="empty"):
        store.set("claude", API_KEY, "   ")
    assert not store.path.exists()


def test_delete_single_and_all(store: SecretStore) -> None:
    store.set("openai", API_KEY, "sk-1")
    store.set("openai", OAUTH_TOKEN, "tok")
    store.set("claude", API_KEY, "sk-ant-1")

    assert store.delete("openai", OAUTH_TOKEN)
    assert store.get("openai", API_KEY) == "sk-1"

    assert store.delete("openai")
    assert store.get("openai", API_KEY) is None
    assert store.get("claude", API_KEY) == "sk-ant-1"
    assert not store.delete("openai")


def test_corrupt_file_reads_as_empty(store: SecretStore) -> None:
    store.path.parent.mkdir(parents=True)
    store.path.write_text("{not json")

    assert store.get("claude", API_KEY) is None

    store.set("claude", API_KEY, "sk-ant-2")
    assert store.get("claude", API_KEY) == "sk-ant-2"
