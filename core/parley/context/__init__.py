"""
Conversation context: file mentions, file resolution and session history.

This module provides:
- MentionParser: Finds @path file mentions in user text
- FileResolver: Reads mentioned files from the workspace roots
- SessionStore: Persists ordered chat sessions per workspace scope
"""

from parley.context.files import (
    FileInfo,
    FileRecord,
    FileResolver,
)
from parley.context.mentions import Mention, MentionParser
from parley.context.sessions import (
    ChatMessage,
    ChatSession,
    MemoryStateStore,
    Sender,
    SessionStore,
    SqliteStateStore,
    StateStore,
)

__all__ = [
    "ChatMessage",
    "ChatSession",
    "FileInfo",
    "FileRecord",
    "FileResolver",
    "MemoryStateStore",
    "Mention",
    "MentionParser",
    "Sender",
    "SessionStore",
    "SqliteStateStore",
    "StateStore",
]
