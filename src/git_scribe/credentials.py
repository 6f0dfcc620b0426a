import json
import logging
import os
from pathlib import Path

from .constants import APP_NAME, CREDENTIALS_FILE

logger = logging.getLogger(APP_NAME)

API_KEY = "api_key"
OAUTH_TOKEN = "oauth_token"
SECRET_KINDS = (API_KEY, OAUTH_TOKEN)


class SecretStore:
    """Owner-only JSON file holding provider secrets.

    Entries are keyed `<provider>.<kind>` (e.g., 'claude.api_key'). Every
    write replaces the file atomically and keeps its mode at 0600.

    Attributes:
        path (Path): The backing file.
    """

    def __init__(self, path: Path = CREDENTIALS_FILE):
        self.path = path

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Credential store {self.path} is unreadable: {e}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _save(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = self.path.with_suffix(".tmp")
        fd = os.open(tmp_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_file, self.path)
        os.chmod(self.path, 0o600)

    def get(self, provider: str, kind: str) -> str | None:
        value = self._load().get(f"{provider}.{kind}", "").strip()
        return value or None

    def set(self, provider: str, kind: str, value: str) -> None:
        """Stores a secret, replacing any previous value.

        Raises:
            ValueError: If the kind is unknown or the value is blank.
        """
        if kind not in SECRET_KINDS:
            raise ValueError(f"Unknown secret kind '{kind}'")
        if not value.strip():
            raise ValueError("Secret value is empty")
        data = self._load()
        data[f"{provider}.{kind}"] = value.strip()
        self._save(data)
        logger.info(f"Stored {kind} for {provider}")

    def delete(self, provider: str, kind: str | None = None) -> bool:
        """Removes one secret, or every secret of a provider when kind is None.

        Returns:
            bool: True if anything was removed.
        """
        data = self._load()
        keys = [f"{provider}.{k}" for k in ([kind] if kind else SECRET_KINDS)]
        removed = [k for k in keys if data.pop(k, None) is not None]
        if removed:
            self._save(data)
            logger.info(f"Cleared credentials for {provider}")
        return bool(removed)
