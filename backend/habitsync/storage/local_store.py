"""Local Durable Store – best-effort key/value persistence on disk.

Holds the session key, the last-sync timestamp and the pending operation
queue in one JSON document.  Storage is never a hard dependency: corrupt
or unreadable files read as empty and failed writes are logged, so the
in-memory flow keeps working either way.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SESSION_KEY = "session_key"
LAST_SYNC = "last_sync"
PENDING_SYNC = "pending_sync"

# 16 random bytes -> 32 hex chars; every key has the same length so the
# pairing-code prefix is always meaningful.
SESSION_KEY_BYTES = 16
PAIRING_CODE_LENGTH = 8


def pairing_code_for(session_key: str) -> str:
    """Human-shareable prefix of *session_key*."""

    return session_key[:PAIRING_CODE_LENGTH].upper()


class LocalDurableStore:
    """JSON-file key/value store.  ``path=None`` keeps everything in memory."""

    def __init__(self, path: str | os.PathLike | None = None):
        self.path = Path(path).expanduser() if path is not None else None
        self._memory: dict[str, Any] = {}

    # ------------------------------------------------------------------
    # raw document access
    # ------------------------------------------------------------------

    def _read(self) -> dict[str, Any]:
        if self.path is None:
            return dict(self._memory)
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning(f"Local store at {self.path} unreadable, treating as empty: {exc}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Local store at {self.path} is not a JSON object, treating as empty")
            return {}
        return data

    def _write(self, data: dict[str, Any]) -> None:
        if self.path is None:
            self._memory = dict(data)
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Write-then-rename so a crash never leaves a half-written file
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".habitsync-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh)
                os.replace(tmp, self.path)
            finally:
                if os.path.exists(tmp):
                    os.unlink(tmp)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning(f"Failed to write local store at {self.path}: {exc}")

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    # ------------------------------------------------------------------
    # session key
    # ------------------------------------------------------------------

    def get_session_key(self) -> str | None:
        value = self.get(SESSION_KEY)
        return value if isinstance(value, str) and value else None

    def set_session_key(self, session_key: str) -> None:
        self.set(SESSION_KEY, session_key)

    def clear_session_key(self) -> None:
        self.remove(SESSION_KEY)

    @staticmethod
    def generate_session_key() -> str:
        return secrets.token_hex(SESSION_KEY_BYTES)

    # ------------------------------------------------------------------
    # last sync
    # ------------------------------------------------------------------

    def get_last_sync(self) -> str | None:
        value = self.get(LAST_SYNC)
        return value if isinstance(value, str) else None

    def set_last_sync(self, timestamp: str) -> None:
        self.set(LAST_SYNC, timestamp)

    # ------------------------------------------------------------------
    # pending operations
    # ------------------------------------------------------------------

    def get_pending_sync(self) -> list[dict[str, Any]]:
        value = self.get(PENDING_SYNC, [])
        if not isinstance(value, list):
            return []
        return [op for op in value if isinstance(op, dict)]

    def set_pending_sync(self, operations: list[dict[str, Any]]) -> None:
        self.set(PENDING_SYNC, operations)

    def clear_pending_sync(self) -> None:
        self.remove(PENDING_SYNC)
