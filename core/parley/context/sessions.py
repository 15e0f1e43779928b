"""
Chat session persistence.

Sessions are kept as one JSON mapping (session id -> session record) under a
single namespaced key of a durable key-value store. Every save rewrites the
whole message list of a session.
"""

import json
import sqlite3
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Sequence

from parley import config
from parley.utils.logging import logger

# Raised by a state store that cannot be read or written
STATE_ERRORS = (sqlite3.Error, OSError)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_timestamp(value: Any) -> datetime:
    """Parse an ISO string or epoch number; fall back to now."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        # Browser clocks report milliseconds
        seconds = value / 1000 if value > 1e11 else value
        try:
            parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return utcnow()
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return utcnow()
    else:
        return utcnow()

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Sender(str, Enum):
    """Author of a chat turn."""
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def coerce(cls, value: Any) -> "Sender":
        # Older records use "bot"; anything that isn't the user is the assistant
        return cls.USER if value == cls.USER.value else cls.ASSISTANT


@dataclass(frozen=True)
class ChatMessage:
    """One immutable conversation turn."""
    id: str
    text: str
    sender: Sender
    created_at: datetime
    # File path -> content injected into the prompt with this turn
    attachment: Optional[dict[str, str]] = None

    @classmethod
    def create(
        cls,
        text: str,
        sender: Sender,
        attachment: Optional[dict[str, str]] = None,
    ) -> "ChatMessage":
        return cls(
            id=uuid.uuid4().hex,
            text=text,
            sender=sender,
            created_at=utcnow(),
            attachment=attachment or None,
        )

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "text": self.text,
            "sender": self.sender.value,
            "createdAt": self.created_at.isoformat(),
        }
        if self.attachment:
            data["attachment"] = dict(self.attachment)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "ChatMessage":
        """Build a message from a persisted record, defaulting bad fields."""
        if not isinstance(data, dict):
            logger.warning(f"Malformed chat message entry: {data!r}")
            data = {}

        text = data.get("text")
        attachment = data.get("attachment")
        if not isinstance(attachment, dict):
            attachment = None

        return cls(
            id=str(data.get("id") or uuid.uuid4().hex),
            text=text if isinstance(text, str) else "",
            sender=Sender.coerce(data.get("sender")),
            created_at=_coerce_timestamp(data.get("createdAt", data.get("timestamp"))),
            attachment={str(k): str(v) for k, v in attachment.items()} if attachment else None,
        )


@dataclass
class ChatSession:
    """An ordered conversation belonging to one workspace scope."""
    id: str
    workspace_scope: str
    messages: list[ChatMessage] = field(default_factory=list)
    last_updated: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "messages": [m.to_dict() for m in self.messages],
            "workspaceScope": self.workspace_scope,
            "lastUpdated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict, session_id: Optional[str] = None) -> "ChatSession":
        messages = data.get("messages")
        if not isinstance(messages, list):
            messages = []
        return cls(
            id=str(data.get("id") or session_id or uuid.uuid4().hex),
            workspace_scope=str(data.get("workspaceScope") or config.DEFAULT_SCOPE),
            messages=[ChatMessage.from_dict(m) for m in messages],
            last_updated=_coerce_timestamp(data.get("lastUpdated")),
        )


# --- Key-value state stores ---


class StateStore(ABC):
    """Durable key-value storage for JSON-serializable values."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        pass

    @abstractmethod
    def update(self, key: str, value: Any) -> None:
        pass


class MemoryStateStore(StateStore):
    """Process-local state, lost on exit."""

    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else default

    def update(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)


class SqliteStateStore(StateStore):
    """SQLite-backed key-value state, one JSON document per key."""

    def __init__(self, db_path: Optional[str] = None):
        """
        Args:
            db_path: Path to SQLite database. Defaults to config.STATE_DB_PATH
        """
        if db_path is None:
            config.STATE_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
            db_path = str(config.STATE_DB_PATH)

        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()

    def get(self, key: str, default: Any = None) -> Any:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT value FROM state WHERE key = ?",
                (key,)
            ).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.error(f"Corrupt state value for key {key}")
            return default

    def update(self, key: str, value: Any) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO state (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (key, json.dumps(value))
            )
            conn.commit()


# --- Session store ---


class SessionStore:
    """
    Persists chat sessions keyed by id and filtered by workspace scope.

    Must be given a state store with ``initialize`` before use. Until then,
    every method logs an error and returns an empty result, so chat keeps
    working without persistence.
    """

    def __init__(self, scope: str = config.DEFAULT_SCOPE, key: str = config.SESSIONS_KEY):
        self.scope = scope
        self.key = key
        self._state: Optional[StateStore] = None

    def initialize(self, state: StateStore) -> None:
        self._state = state

    @property
    def is_initialized(self) -> bool:
        return self._state is not None

    def _check_initialized(self) -> bool:
        if self._state is None:
            logger.error("SessionStore not initialized with a state store")
            return False
        return True

    def _load_all(self) -> dict[str, dict]:
        raw = self._state.get(self.key, {})
        if not isinstance(raw, dict):
            logger.error(f"Ignoring malformed session collection under {self.key}")
            return {}
        return raw

    def save(
        self,
        session_id: str,
        messages: Sequence[ChatMessage],
        scope: Optional[str] = None,
    ) -> Optional[ChatSession]:
        """
        Replace the session's message list and refresh ``last_updated``.

        Returns None if the state store could not be written; the caller
        keeps its messages in memory.
        """
        if not self._check_initialized():
            return None

        session = ChatSession(
            id=session_id,
            workspace_scope=scope or self.scope,
            messages=list(messages),
            last_updated=utcnow(),
        )
        try:
            sessions = self._load_all()
            sessions[session_id] = session.to_dict()
            self._state.update(self.key, sessions)
        except STATE_ERRORS as e:
            logger.error(f"Failed to save session {session_id}: {e}")
            return None
        logger.debug(f"Saved session {session_id} with {len(session.messages)} messages")
        return session

    def get(self, session_id: str) -> Optional[ChatSession]:
        if not self._check_initialized():
            return None
        try:
            data = self._load_all().get(session_id)
        except STATE_ERRORS as e:
            logger.error(f"Failed to read session {session_id}: {e}")
            return None
        if not isinstance(data, dict):
            return None
        return ChatSession.from_dict(data, session_id=session_id)

    def list_for_scope(self, scope: Optional[str] = None) -> list[ChatSession]:
        """Sessions of ``scope``, most recently updated first."""
        if not self._check_initialized():
            return []

        scope = scope or self.scope
        try:
            raw = self._load_all()
        except STATE_ERRORS as e:
            logger.error(f"Failed to read sessions: {e}")
            return []

        sessions = []
        for session_id, data in raw.items():
            if not isinstance(data, dict):
                logger.warning(f"Skipping malformed session {session_id}")
                continue
            session = ChatSession.from_dict(data, session_id=session_id)
            if session.workspace_scope == scope:
                sessions.append(session)

        sessions.sort(key=lambda s: s.last_updated, reverse=True)
        return sessions

    def delete(self, session_id: str) -> bool:
        if not self._check_initialized():
            return False
        try:
            sessions = self._load_all()
            if session_id not in sessions:
                return False
            del sessions[session_id]
            self._state.update(self.key, sessions)
        except STATE_ERRORS as e:
            logger.error(f"Failed to delete session {session_id}: {e}")
            return False
        logger.info(f"Deleted session {session_id}")
        return True

    def clear_all(self) -> bool:
        if not self._check_initialized():
            return False
        try:
            self._state.update(self.key, {})
        except STATE_ERRORS as e:
            logger.error(f"Failed to clear chat sessions: {e}")
            return False
        logger.info("Cleared all chat sessions")
        return True
