"""Client-local key/value flags (JSON + fcntl.flock + atomic write)."""

import fcntl
import json
import os
import tempfile
from pathlib import Path

import structlog

logger = structlog.get_logger()

IS_NEW_USER = "isNewUser"
SIDEBAR_COLLAPSED = "sidebarCollapsed"
THEME = "theme"
AUTH_SESSION = "auth.session"

PREFERENCE_KEYS = (SIDEBAR_COLLAPSED, THEME)


class LocalStateStore:
    """String key/value pairs that survive restarts, scoped to this client.

    Args:
        path: JSON file backing the store.
    """

    def __init__(self, path: Path):
        self.path = path

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path) as f:
            fcntl.flock(f, fcntl.LOCK_SH)
            try:
                data = json.load(f)
            except json.JSONDecodeError:
                logger.warning("local_state_unreadable", path=str(self.path))
                data = {}
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)
        if not isinstance(data, dict):
            logger.warning("local_state_unreadable", path=str(self.path))
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", dir=self.path.parent, delete=False, suffix=".json"
        ) as tmp:
            json.dump(data, tmp)
        os.replace(tmp.name, self.path)

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def get_flag(self, key: str) -> bool:
        return self.get(key) == "true"

    def preferences(self) -> dict[str, str]:
        data = self._read()
        return {k: data[k] for k in PREFERENCE_KEYS if k in data}
