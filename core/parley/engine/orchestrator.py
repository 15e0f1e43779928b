"""
Conversation orchestrator for one chat panel.

Owns the active session's turn sequence and the start-up handshake with the
panel:

    STARTUP -> AWAITING_READY -> ACTIVE

History is loaded once, on whichever comes first: the panel's ready signal
or the ready timeout. Every user turn is persisted before the model is
called, and every user turn is answered, by the model or by a fixed
fallback message.
"""

import asyncio
import uuid
from enum import Enum
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from parley import config
from parley.api.schemas import (
    CamelModel,
    FileAccessError,
    FileAttachment,
    FileContent,
    FileInfoSchema,
    FileSuggestions,
    GetFileContent,
    GetFileSuggestions,
    LoadChatHistory,
    NewChat,
    ReceiveMessage,
    SendMessage,
    WebviewReady,
    WorkspaceInfo,
    inbound_adapter,
)
from parley.context import (
    ChatMessage,
    ChatSession,
    FileRecord,
    FileResolver,
    MentionParser,
    Sender,
    SessionStore,
)
from parley.engine.backend import ModelBackend, Turn
from parley.utils.logging import logger

PostMessage = Callable[[dict], Awaitable[None]]


class PanelState(str, Enum):
    """Start-up handshake state of a panel."""
    STARTUP = "startup"
    AWAITING_READY = "awaiting_ready"
    ACTIVE = "active"


class ConversationOrchestrator:
    """
    Ties mention parsing, file resolution, session persistence and the model
    backend together for a single panel.

    All collaborators are injected; ``post_message`` delivers outbound panel
    messages (plain dicts with a ``command`` key).
    """

    FALLBACK_MESSAGE = "Sorry, I encountered an error processing your request."

    ROLE_MAP = {
        Sender.USER: "user",
        Sender.ASSISTANT: "model",
    }

    def __init__(
        self,
        resolver: FileResolver,
        store: SessionStore,
        backend: ModelBackend,
        post_message: PostMessage,
        ready_timeout: float = config.HISTORY_READY_TIMEOUT,
        parser: Optional[MentionParser] = None,
    ):
        self.resolver = resolver
        self.store = store
        self.backend = backend
        self.parser = parser or MentionParser(resolver)
        self.ready_timeout = ready_timeout
        self._post_message = post_message

        self.state = PanelState.STARTUP
        self._session_id = uuid.uuid4().hex
        self._messages: list[ChatMessage] = []
        self._ready_task: Optional[asyncio.Task] = None

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def messages(self) -> list[ChatMessage]:
        """Copy of the active session's turns."""
        return list(self._messages)

    @property
    def scope(self) -> str:
        return self.resolver.workspace_scope

    # --- Lifecycle ---

    async def start(self) -> None:
        """Announce the workspace and wait for the panel (or the timeout)."""
        if self.state == PanelState.STARTUP:
            self.state = PanelState.AWAITING_READY
            self._ready_task = asyncio.create_task(self._ready_timeout())
        await self._post(WorkspaceInfo(folders=self.resolver.folders))

    async def _ready_timeout(self) -> None:
        await asyncio.sleep(self.ready_timeout)
        try:
            await self._activate("timeout")
        except Exception as e:
            logger.error(f"Loading history on timeout failed: {type(e).__name__}: {e}")

    async def webview_ready(self) -> None:
        await self._activate("ready signal")

    async def _activate(self, trigger: str) -> None:
        # Checked and set without awaiting in between, so only one trigger wins
        if self.state == PanelState.ACTIVE:
            logger.debug(f"History already loaded, ignoring {trigger}")
            return
        self.state = PanelState.ACTIVE

        task = self._ready_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        self._ready_task = None

        logger.info(f"Panel active via {trigger}")
        if self._messages:
            # The panel already started this conversation; keep it
            logger.info(f"Keeping session {self._session_id} started before history loaded")
            return
        await self.load_chat_history()

    async def close(self) -> None:
        if self._ready_task is not None:
            self._ready_task.cancel()
            self._ready_task = None

    # --- Panel messages ---

    async def handle_message(self, payload: dict) -> None:
        """Validate an inbound panel message and dispatch it."""
        try:
            message = inbound_adapter.validate_python(payload)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid panel message ({e.error_count()} errors): {payload!r}")
            return

        if isinstance(message, SendMessage):
            await self.process_user_message(message.text)
        elif isinstance(message, GetFileSuggestions):
            await self.provide_file_suggestions(message.partial)
        elif isinstance(message, GetFileContent):
            await self.provide_file_content(message.file_path)
        elif isinstance(message, WebviewReady):
            await self.webview_ready()
        elif isinstance(message, NewChat):
            await self.new_session()

    async def process_user_message(self, text: str) -> Optional[str]:
        """
        Run one user turn to completion.

        Returns the assistant reply (the fallback message if the backend
        failed), or None for blank input.
        """
        if not text or not text.strip():
            logger.debug("Ignoring blank message")
            return None

        logger.info(f"Received message: {text[:50]}...")

        attachments: dict[str, str] = {}
        invalid_files: list[str] = []
        for mention in self.parser.parse_mentions(text):
            path = mention.reference_path
            if path in attachments or path in invalid_files:
                continue

            record = await self._read_file(path) if mention.is_resolvable else None
            if record is None:
                invalid_files.append(path)
                continue

            attachments[path] = record.content
            await self._post(FileAttachment(
                file_path=path,
                content=record.content,
                file_info=FileInfoSchema(**record.info.to_dict()),
            ))

        if invalid_files:
            logger.warning(f"Unresolved file mentions: {invalid_files}")
            await self._post(FileAccessError(files=invalid_files))

        self._append(ChatMessage.create(text, Sender.USER, attachment=attachments))

        try:
            reply = await self.backend.generate(self.build_turns())
        except Exception as e:
            logger.error(f"Model backend failed: {type(e).__name__}: {e}")
            reply = self.FALLBACK_MESSAGE

        self._append(ChatMessage.create(reply, Sender.ASSISTANT))
        await self._post(ReceiveMessage(text=reply))
        return reply

    async def provide_file_suggestions(self, partial: str) -> list[str]:
        loop = asyncio.get_running_loop()
        suggestions = await loop.run_in_executor(None, self.resolver.list_candidates, partial)
        await self._post(FileSuggestions(suggestions=suggestions))
        return suggestions

    async def provide_file_content(self, file_path: str) -> Optional[FileRecord]:
        record = await self._read_file(file_path)
        if record is None:
            await self._post(FileAccessError(files=[file_path]))
            return None

        await self._post(FileContent(
            file_path=file_path,
            content=record.content,
            file_info=FileInfoSchema(**record.info.to_dict()),
        ))
        return record

    # --- History ---

    async def load_chat_history(self) -> Optional[ChatSession]:
        """Make the scope's most recent session active and publish it."""
        sessions = self.store.list_for_scope(self.scope)
        if not sessions:
            logger.info(f"No previous sessions for {self.scope}, keeping {self._session_id}")
            return None

        latest = sessions[0]
        self._session_id = latest.id
        self._messages = list(latest.messages)
        logger.info(f"Loaded session {latest.id} with {len(latest.messages)} messages")

        await self._post(LoadChatHistory(messages=[m.to_dict() for m in latest.messages]))
        return latest

    async def new_session(self) -> str:
        """Start an empty conversation and clear the panel."""
        self._session_id = uuid.uuid4().hex
        self._messages = []
        await self._post(LoadChatHistory(messages=[]))
        return self._session_id

    def build_turns(self) -> list[Turn]:
        """Derive the model's turn list from the active session."""
        return [
            Turn(role=self.ROLE_MAP[m.sender], content=self.compose_content(m))
            for m in self._messages
        ]

    @staticmethod
    def compose_content(message: ChatMessage) -> str:
        """The message text followed by any attached file contents."""
        if not message.attachment:
            return message.text

        prompt = message.text + "\n\nReference files:\n"
        for path, content in message.attachment.items():
            prompt += f"\n--- {path} ---\n{content}\n"
        return prompt

    # --- Internals ---

    def _append(self, message: ChatMessage) -> None:
        # The store replaces the whole list; concurrent saves to one id can drop a turn
        self._messages.append(message)
        self.store.save(self._session_id, self._messages, scope=self.scope)

    async def _read_file(self, path: str) -> Optional[FileRecord]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.resolver.resolve, path)

    async def _post(self, message: CamelModel) -> None:
        await self._post_message(message.to_payload())
