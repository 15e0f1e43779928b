"""Shared services for API routes."""

import sqlite3
from dataclasses import dataclass
from typing import Optional

from fastapi import Request, WebSocket

from parley.context import FileResolver, SessionStore, SqliteStateStore, StateStore
from parley.engine.backend import GeminiBackend, ModelBackend
from parley.engine.orchestrator import ConversationOrchestrator, PostMessage
from parley.utils.logging import logger


@dataclass
class Services:
    """Components shared by every panel connection of one app."""

    resolver: FileResolver
    store: SessionStore
    backend: ModelBackend

    @classmethod
    def create(
        cls,
        resolver: Optional[FileResolver] = None,
        state: Optional[StateStore] = None,
        backend: Optional[ModelBackend] = None,
    ) -> "Services":
        resolver = resolver or FileResolver()
        store = SessionStore(scope=resolver.workspace_scope)
        try:
            store.initialize(state or SqliteStateStore())
        except (OSError, sqlite3.Error) as e:
            # Chat still works; sessions just aren't persisted
            logger.error(f"Session persistence unavailable: {e}")
        return cls(resolver=resolver, store=store, backend=backend or GeminiBackend())

    def orchestrator(self, post_message: PostMessage) -> ConversationOrchestrator:
        """Build an orchestrator for a new panel."""
        return ConversationOrchestrator(
            resolver=self.resolver,
            store=self.store,
            backend=self.backend,
            post_message=post_message,
        )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_ws_services(websocket: WebSocket) -> Services:
    return websocket.app.state.services
