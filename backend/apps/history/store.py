"""
Chat history storage.

Chat sessions are kept in one JSON file (CHAT_HISTORY_PATH), most recently
updated first, with a cap on the number of sessions and on the messages
kept per session. Every operation reads the file, changes it and writes
it back: the last writer wins.
"""
import contextlib
import json
import logging
import os
import random
import string
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from django.conf import settings

logger = logging.getLogger(__name__)

DEFAULT_MAX_SESSIONS = 50
DEFAULT_MAX_MESSAGES = 100
TITLE_LENGTH = 50

ID_ALPHABET = string.digits + string.ascii_lowercase


class HistoryStorageError(Exception):
    """Raised when the history file cannot be written."""
    pass


def generate_id(now_ms: int) -> str:
    """Id of the form <epoch ms>-<9 base36 chars>."""
    suffix = "".join(random.choice(ID_ALPHABET) for _ in range(9))
    return f"{now_ms}-{suffix}"


@dataclass
class StoredMessage:
    """A message as kept in history."""
    id: str
    role: str
    content: str
    timestamp: int
    citations: Optional[List[dict]] = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.citations is not None:
            data["citations"] = self.citations
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "StoredMessage":
        return cls(
            id=data["id"],
            role=data.get("role", "user"),
            content=data.get("content", ""),
            timestamp=data.get("timestamp", 0),
            citations=data.get("citations"),
        )


@dataclass
class ChatSession:
    """A conversation and its messages, oldest first."""
    id: str
    title: str
    created_at: int
    updated_at: int
    messages: List[StoredMessage] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChatSession":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            created_at=data.get("createdAt", 0),
            updated_at=data.get("updatedAt", 0),
            messages=[StoredMessage.from_dict(m) for m in data.get("messages", [])],
        )


def is_timestamp(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def is_valid_message(message) -> bool:
    if not isinstance(message, dict):
        return False
    if not message.get("id") or not isinstance(message["id"], str):
        return False
    if message.get("role", "user") not in ("user", "assistant"):
        return False
    if not isinstance(message.get("content", ""), str):
        return False
    if "timestamp" in message and not is_timestamp(message["timestamp"]):
        return False
    return isinstance(message.get("citations"), (list, type(None)))


def is_valid_export(sessions) -> bool:
    """
    An import must be a list of sessions, each with a string id and a list
    of messages. Timestamps must be integers where present, and message
    roles must be user or assistant.
    """
    if not isinstance(sessions, list):
        return False
    for session in sessions:
        if not isinstance(session, dict):
            return False
        if not session.get("id") or not isinstance(session["id"], str):
            return False
        if not isinstance(session.get("title", ""), str):
            return False
        if any(key in session and not is_timestamp(session[key]) for key in ("createdAt", "updatedAt")):
            return False
        if not isinstance(session.get("messages"), list):
            return False
        if not all(is_valid_message(m) for m in session["messages"]):
            return False
    return True


class ChatHistoryStore:
    """
    File-backed chat session store.

    Args:
        path: JSON file holding the sessions
        max_sessions: Sessions kept; the least recently updated go first
        max_messages: Messages kept per session; the oldest go first
        clock: Returns the current time in epoch milliseconds
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        max_sessions: Optional[int] = None,
        max_messages: Optional[int] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.path = Path(path or settings.CHAT_HISTORY_PATH)
        self.max_sessions = max_sessions or getattr(settings, 'CHAT_HISTORY_MAX_SESSIONS', DEFAULT_MAX_SESSIONS)
        self.max_messages = max_messages or getattr(settings, 'CHAT_HISTORY_MAX_MESSAGES', DEFAULT_MAX_MESSAGES)
        self.clock = clock or (lambda: int(time.time() * 1000))

    # -------------------------------------------------------------------------
    # File access
    # -------------------------------------------------------------------------

    def _load(self) -> List[ChatSession]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding='utf-8'))
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable chat history at {self.path}, starting empty: {e}")
            return []
        if not is_valid_export(raw):
            logger.warning(f"Malformed chat history at {self.path}, starting empty")
            return []
        return [ChatSession.from_dict(s) for s in raw]

    def _save(self, sessions: List[ChatSession]) -> None:
        self._write_raw([s.to_dict() for s in sessions])

    def _write_raw(self, data) -> None:
        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix='.history-')
            with os.fdopen(fd, 'w', encoding='utf-8') as tmp:
                json.dump(data, tmp)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to save chat history to {self.path}: {e}")
            raise HistoryStorageError(f"Failed to save chat history: {e}")
        finally:
            # Already gone once os.replace has succeeded
            if tmp_path is not None:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(tmp_path)

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def list_sessions(self) -> List[ChatSession]:
        """All sessions, most recently updated first."""
        return sorted(self._load(), key=lambda s: s.updated_at, reverse=True)

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        return next((s for s in self.list_sessions() if s.id == session_id), None)

    def create_session(self, title: Optional[str] = None) -> ChatSession:
        sessions = self.list_sessions()
        now = self.clock()

        session = ChatSession(
            id=generate_id(now),
            title=title or f"Chat {len(sessions) + 1}",
            created_at=now,
            updated_at=now,
        )
        sessions.insert(0, session)

        self._save(sessions[:self.max_sessions])
        logger.info(f"Created chat session {session.id}")
        return session

    def add_message(
        self,
        session_id: str,
        role: str,
        content: str,
        citations: Optional[List[dict]] = None,
    ) -> Optional[StoredMessage]:
        """
        Append a message and move its session to the front.

        The first user message also becomes the session title.

        Returns:
            The stored message, or None if the session does not exist
        """
        sessions = self.list_sessions()
        index = next((i for i, s in enumerate(sessions) if s.id == session_id), None)
        if index is None:
            return None

        now = self.clock()
        session = sessions.pop(index)
        message = StoredMessage(
            id=generate_id(now),
            role=role,
            content=content,
            timestamp=now,
            citations=citations,
        )
        session.messages.append(message)

        if len(session.messages) > self.max_messages:
            session.messages = session.messages[-self.max_messages:]

        session.updated_at = now

        if role == "user" and sum(1 for m in session.messages if m.role == "user") == 1:
            session.title = content[:TITLE_LENGTH] + ("..." if len(content) > TITLE_LENGTH else "")

        sessions.insert(0, session)
        self._save(sessions)
        return message

    def rename_session(self, session_id: str, title: str) -> bool:
        sessions = self.list_sessions()
        session = next((s for s in sessions if s.id == session_id), None)
        if session is None:
            return False

        session.title = title
        session.updated_at = self.clock()
        self._save(sessions)
        return True

    def delete_session(self, session_id: str) -> bool:
        sessions = self.list_sessions()
        remaining = [s for s in sessions if s.id != session_id]
        if len(remaining) == len(sessions):
            return False

        self._save(remaining)
        logger.info(f"Deleted chat session {session_id}")
        return True

    def clear(self) -> None:
        """Remove all history."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        logger.info("Cleared chat history")

    # -------------------------------------------------------------------------
    # Export / import
    # -------------------------------------------------------------------------

    def export_json(self) -> str:
        return json.dumps([s.to_dict() for s in self.list_sessions()], indent=2)

    def import_json(self, data: str) -> bool:
        """
        Replace all history with an export.

        The imported sessions are held to the same caps as stored ones: the
        most recently updated max_sessions are kept, each with its newest
        max_messages messages.

        Returns:
            False, leaving history untouched, if the data is not a valid export
        """
        try:
            raw = json.loads(data)
        except (TypeError, ValueError):
            return False

        if not is_valid_export(raw):
            return False

        sessions = sorted(
            (ChatSession.from_dict(s) for s in raw),
            key=lambda s: s.updated_at,
            reverse=True,
        )[:self.max_sessions]
        for session in sessions:
            session.messages = session.messages[-self.max_messages:]

        self._save(sessions)
        logger.info(f"Imported {len(sessions)} of {len(raw)} chat sessions")
        return True


def get_store() -> ChatHistoryStore:
    """Store bound to the configured history file."""
    return ChatHistoryStore()
