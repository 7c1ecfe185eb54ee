"""Per-installation session identifier, persisted in a local JSON store."""

import json
from pathlib import Path
from typing import Dict, Optional
from uuid import uuid4

import structlog

logger = structlog.get_logger()

SESSION_KEY = "chat_session_id"


class LocalStorage:
    """Tiny string key-value store backed by a JSON file.

    Raises OSError when the file cannot be read or written.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except ValueError as e:
            raise OSError(f"Corrupt storage file {self.path}: {e}") from e
        return data if isinstance(data, dict) else {}

    def get_item(self, key: str) -> Optional[str]:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data), encoding="utf-8")


class SessionIdentifierManager:
    """Hands out a stable session id for this client installation.

    If storage is unavailable the id is still usable, but it only lives as
    long as this manager does.
    """

    def __init__(self, storage: LocalStorage, key: str = SESSION_KEY) -> None:
        self.storage = storage
        self.key = key
        self._session_id: Optional[str] = None

    def get_or_create(self) -> str:
        if self._session_id is not None:
            return self._session_id

        try:
            session_id = self.storage.get_item(self.key)
        except OSError as e:
            logger.warning("session_storage_unreadable", error=str(e))
            session_id = None

        if not session_id:
            session_id = str(uuid4())
            try:
                self.storage.set_item(self.key, session_id)
            except OSError as e:
                logger.warning("session_storage_unwritable", error=str(e))

        self._session_id = session_id
        return session_id

    def reset(self) -> None:
        """Forget the cached id; the persisted value is kept."""
        self._session_id = None
