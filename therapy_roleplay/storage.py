"""Message storage.

The orchestrator persists every finished message through a store matching:

    append(session_id, message)        raises StoreError on failure
    list_recent(session_id, limit)     newest `limit` messages, oldest first
    prune_empty(session_id)            drop zero-length abandoned messages

All three raise StoreError when the session cannot be read or written.

JsonMessageStore keeps one flat JSON file per session; there is no database.

    {base}/
      sessions/
        {session_id}/
          messages.json     ← append-only Message list
"""

from __future__ import annotations

import json
import logging
import re
from collections import defaultdict
from pathlib import Path
from typing import Any, Protocol

from therapy_roleplay.models import Message

logger = logging.getLogger(__name__)

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")


class StoreError(Exception):
    """Raised when session messages cannot be read or persisted."""


def validate_session_id(session_id: str) -> str:
    """Session ids become directory names, so only a safe charset is accepted."""
    if not _SESSION_ID_RE.match(session_id):
        raise ValueError(f"Invalid session id: {session_id!r}")
    return session_id


class MessageStore(Protocol):
    def append(self, session_id: str, message: Message) -> None: ...

    def list_recent(self, session_id: str, limit: int) -> list[Message]: ...

    def prune_empty(self, session_id: str) -> int: ...


class JsonMessageStore:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._sessions_root = base_path / "sessions"
        self._sessions_root.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _messages_file(self, session_id: str) -> Path:
        return self._sessions_root / validate_session_id(session_id) / "messages.json"

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2))

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def get_messages(self, session_id: str) -> list[Message]:
        path = self._messages_file(session_id)
        if not path.exists():
            return []
        try:
            return [Message.model_validate(m) for m in self._read_json(path)]
        except (OSError, ValueError, TypeError) as e:
            raise StoreError(f"Could not read messages for session {session_id}: {e}") from e

    def append(self, session_id: str, message: Message) -> None:
        try:
            existing = self.get_messages(session_id)
            existing.append(message)
            self._write_json(
                self._messages_file(session_id),
                [m.model_dump(mode="json") for m in existing],
            )
        except (OSError, ValueError) as e:
            raise StoreError(f"Could not save message for session {session_id}: {e}") from e

    def list_recent(self, session_id: str, limit: int) -> list[Message]:
        if limit <= 0:
            return []
        return self.get_messages(session_id)[-limit:]

    def prune_empty(self, session_id: str) -> int:
        messages = self.get_messages(session_id)
        kept = [m for m in messages if m.text]
        removed = len(messages) - len(kept)
        if removed:
            try:
                self._write_json(
                    self._messages_file(session_id),
                    [m.model_dump(mode="json") for m in kept],
                )
            except OSError as e:
                raise StoreError(f"Could not prune session {session_id}: {e}") from e
            logger.info("pruned %d empty messages from session %s", removed, session_id)
        return removed

    def list_sessions(self) -> list[str]:
        return sorted(
            p.name for p in self._sessions_root.iterdir()
            if p.is_dir() and (p / "messages.json").exists()
        )


class MemoryMessageStore:
    """In-process store for tests and throwaway sessions."""

    def __init__(self) -> None:
        self._messages: dict[str, list[Message]] = defaultdict(list)

    def append(self, session_id: str, message: Message) -> None:
        self._messages[session_id].append(message.model_copy())

    def list_recent(self, session_id: str, limit: int) -> list[Message]:
        if limit <= 0:
            return []
        return [m.model_copy() for m in self._messages[session_id][-limit:]]

    def prune_empty(self, session_id: str) -> int:
        messages = self._messages[session_id]
        kept = [m for m in messages if m.text]
        self._messages[session_id] = kept
        return len(messages) - len(kept)
