"""
Tests for the conversation orchestrator.

Simulate panel flows with a temp workspace, an in-memory session store and a
stub model backend.
"""

import asyncio
import logging
import sqlite3
import tempfile
from pathlib import Path

import pytest

from parley.context import (
    ChatMessage,
    FileResolver,
    MemoryStateStore,
    Sender,
    SessionStore,
)
from parley.engine.backend import ModelBackend, NetworkError
from parley.engine.orchestrator import ConversationOrchestrator, PanelState


class StubBackend(ModelBackend):
    """Records every call and answers with a fixed reply or error."""

    def __init__(self, reply="Summary: greeting", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    async def generate(self, turns):
        self.calls.append(list(turns))
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def workspace():
    with tempfile.TemporaryDirectory() as root:
        Path(root, "readme.md").write_text("Hello world")
        yield root


@pytest.fixture
def resolver(workspace):
    return FileResolver(roots=[workspace])


@pytest.fixture
def store(resolver):
    store = SessionStore(scope=resolver.workspace_scope)
    store.initialize(MemoryStateStore())
    return store


@pytest.fixture
def posted():
    return []


class ReadOnlyStateStore(MemoryStateStore):
    def update(self, key, value):
        raise sqlite3.OperationalError("attempt to write a readonly database")


def _orchestrator(resolver, store, backend, posted, ready_timeout=5.0):
    async def post(message):
        posted.append(message)

    return ConversationOrchestrator(
        resolver=resolver,
        store=store,
        backend=backend,
        post_message=post,
        ready_timeout=ready_timeout,
    )


def _commands(posted, command):
    return [m for m in posted if m["command"] == command]


class TestUserTurns:
    """A submission always ends in a closed user -> assistant pair."""

    @pytest.mark.asyncio
    async def test_mention_content_is_injected(self, resolver, store, posted):
        backend = StubBackend()
        orch = _orchestrator(resolver, store, backend, posted)

        reply = await orch.process_user_message("Summarize @readme.md")

        assert reply == "Summary: greeting"
        assert len(backend.calls) == 1
        [turn] = backend.calls[0]
        assert turn.role == "user"
        assert "Summarize @readme.md" in turn.content
        assert "Hello world" in turn.content
        assert turn.content.index("Summarize") < turn.content.index("Hello world")

        messages = orch.messages
        assert [m.sender for m in messages] == [Sender.USER, Sender.ASSISTANT]
        assert messages[0].text == "Summarize @readme.md"
        assert messages[1].text == "Summary: greeting"

        saved = store.get(orch.session_id)
        assert saved.messages == messages

        [attachment] = _commands(posted, "fileAttachment")
        assert attachment["filePath"] == "readme.md"
        assert attachment["content"] == "Hello world"
        assert attachment["fileInfo"]["kind"] == "Markdown"
        assert _commands(posted, "receiveMessage") == [
            {"command": "receiveMessage", "text": "Summary: greeting"}
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [NetworkError("down", status_code=503), RuntimeError("boom")])
    async def test_backend_failure_closes_the_turn(self, resolver, store, posted, error):
        orch = _orchestrator(resolver, store, StubBackend(error=error), posted)

        reply = await orch.process_user_message("Hello?")

        assert reply == ConversationOrchestrator.FALLBACK_MESSAGE
        saved = store.get(orch.session_id)
        assert [m.sender for m in saved.messages] == [Sender.USER, Sender.ASSISTANT]
        assert saved.messages[1].text == ConversationOrchestrator.FALLBACK_MESSAGE
        assert _commands(posted, "receiveMessage")[0]["text"] == ConversationOrchestrator.FALLBACK_MESSAGE

    @pytest.mark.asyncio
    async def test_user_turn_is_persisted_before_the_model_call(self, resolver, store, posted):
        seen = []

        class CheckingBackend(StubBackend):
            async def generate(self, turns):
                seen.append(store.get(orch.session_id))
                return await super().generate(turns)

        orch = _orchestrator(resolver, store, CheckingBackend(), posted)
        await orch.process_user_message("Remember me")

        assert [m.text for m in seen[0].messages] == ["Remember me"]

    @pytest.mark.asyncio
    async def test_unresolved_mentions_are_reported(self, resolver, store, posted):
        backend = StubBackend()
        orch = _orchestrator(resolver, store, backend, posted)

        await orch.process_user_message("Compare @missing.md with @readme.md and @missing.md")

        assert _commands(posted, "fileAccessError") == [
            {"command": "fileAccessError", "files": ["missing.md"]}
        ]
        assert len(backend.calls) == 1
        assert "Hello world" in backend.calls[0][0].content
        assert len(orch.messages) == 2

    @pytest.mark.asyncio
    async def test_follow_up_sends_full_history(self, resolver, store, posted):
        backend = StubBackend()
        orch = _orchestrator(resolver, store, backend, posted)

        await orch.process_user_message("Summarize @readme.md")
        backend.reply = "It says hello."
        await orch.process_user_message("And in one word?")

        turns = backend.calls[1]
        assert [t.role for t in turns] == ["user", "model", "user"]
        assert "Hello world" in turns[0].content
        assert turns[1].content == "Summary: greeting"
        assert turns[2].content == "And in one word?"
        assert len(store.get(orch.session_id).messages) == 4

    @pytest.mark.asyncio
    async def test_blank_message_is_ignored(self, resolver, store, posted):
        backend = StubBackend()
        orch = _orchestrator(resolver, store, backend, posted)

        assert await orch.process_user_message("   ") is None
        assert backend.calls == []
        assert orch.messages == []

    @pytest.mark.asyncio
    async def test_works_without_persistence(self, resolver, posted):
        store = SessionStore(scope=resolver.workspace_scope)
        backend = StubBackend()
        orch = _orchestrator(resolver, store, backend, posted)

        await orch.process_user_message("one")
        await orch.process_user_message("two")

        assert len(orch.messages) == 4
        assert [t.role for t in backend.calls[1]] == ["user", "model", "user"]

    @pytest.mark.asyncio
    async def test_storage_failure_still_answers(self, resolver, posted):
        store = SessionStore(scope=resolver.workspace_scope)
        store.initialize(ReadOnlyStateStore())
        orch = _orchestrator(resolver, store, StubBackend(), posted)

        reply = await orch.process_user_message("hello")

        assert reply == "Summary: greeting"
        assert [m.sender for m in orch.messages] == [Sender.USER, Sender.ASSISTANT]
        assert _commands(posted, "receiveMessage") == [
            {"command": "receiveMessage", "text": "Summary: greeting"}
        ]

    @pytest.mark.asyncio
    async def test_files_outside_the_workspace_are_not_sent(self, resolver, store, posted):
        backend = StubBackend()
        orch = _orchestrator(resolver, store, backend, posted)
        with tempfile.TemporaryDirectory() as other:
            Path(other, "secret.md").write_text("TOP SECRET")
            ref = f"../{Path(other).name}/secret.md"

            await orch.process_user_message(f"Read @{ref}")

        assert _commands(posted, "fileAttachment") == []
        assert _commands(posted, "fileAccessError") == [{"command": "fileAccessError", "files": [ref]}]
        assert "TOP SECRET" not in backend.calls[0][0].content

    @pytest.mark.asyncio
    async def test_oversized_mention_is_reported(self, workspace, store, posted):
        resolver = FileResolver(roots=[workspace], max_bytes=5)
        backend = StubBackend()
        orch = _orchestrator(resolver, store, backend, posted)

        await orch.process_user_message("Summarize @readme.md")

        assert _commands(posted, "fileAccessError") == [{"command": "fileAccessError", "files": ["readme.md"]}]
        assert backend.calls[0][0].content == "Summarize @readme.md"


class TestHistoryHandshake:
    """Ready signal and timeout load history exactly once."""

    def _seed(self, store):
        messages = [
            ChatMessage.create("earlier question", Sender.USER),
            ChatMessage.create("earlier answer", Sender.ASSISTANT),
        ]
        store.save("previous", messages)
        return messages

    @pytest.mark.asyncio
    async def test_start_announces_workspace(self, resolver, store, posted):
        orch = _orchestrator(resolver, store, StubBackend(), posted)

        await orch.start()

        assert orch.state == PanelState.AWAITING_READY
        assert posted[0] == {"command": "workspaceInfo", "folders": resolver.folders}
        await orch.close()

    @pytest.mark.asyncio
    async def test_ready_then_timeout_loads_once(self, resolver, store, posted):
        seeded = self._seed(store)
        orch = _orchestrator(resolver, store, StubBackend(), posted, ready_timeout=0.05)

        await orch.start()
        await orch.webview_ready()
        await asyncio.sleep(0.15)

        loads = _commands(posted, "loadChatHistory")
        assert len(loads) == 1
        assert [m["text"] for m in loads[0]["messages"]] == [m.text for m in seeded]
        assert orch.session_id == "previous"
        assert orch.state == PanelState.ACTIVE

    @pytest.mark.asyncio
    async def test_timeout_then_ready_loads_once(self, resolver, store, posted):
        self._seed(store)
        orch = _orchestrator(resolver, store, StubBackend(), posted, ready_timeout=0.01)

        await orch.start()
        await asyncio.sleep(0.1)
        assert orch.state == PanelState.ACTIVE

        await orch.webview_ready()
        await orch.webview_ready()

        assert len(_commands(posted, "loadChatHistory")) == 1

    @pytest.mark.asyncio
    async def test_no_previous_session_keeps_fresh_one(self, resolver, store, posted):
        orch = _orchestrator(resolver, store, StubBackend(), posted)
        fresh_id = orch.session_id

        await orch.start()
        await orch.webview_ready()

        assert _commands(posted, "loadChatHistory") == []
        assert orch.session_id == fresh_id
        assert orch.messages == []

    @pytest.mark.asyncio
    async def test_most_recent_session_of_scope_wins(self, resolver, store, posted):
        self._seed(store)
        await asyncio.sleep(0.01)
        store.save("other-scope", [ChatMessage.create("elsewhere", Sender.USER)], scope="elsewhere")
        store.save("latest", [ChatMessage.create("latest question", Sender.USER)])
        orch = _orchestrator(resolver, store, StubBackend(), posted)

        session = await orch.load_chat_history()

        assert session.id == "latest"
        assert orch.session_id == "latest"
        assert [m.text for m in orch.messages] == ["latest question"]

    @pytest.mark.asyncio
    async def test_loaded_history_feeds_the_model(self, resolver, store, posted):
        state = MemoryStateStore()
        state.update(store.key, {
            "legacy": {
                "id": "legacy",
                "workspaceScope": resolver.workspace_scope,
                "lastUpdated": "2024-01-01T00:00:00Z",
                "messages": [
                    {"id": "1", "text": "hi", "sender": "user", "timestamp": "2024-01-01T00:00:00Z"},
                    {"id": "2", "text": "hello!", "sender": "bot", "timestamp": "2024-01-01T00:00:01Z"},
                ],
            }
        })
        store.initialize(state)
        backend = StubBackend()
        orch = _orchestrator(resolver, store, backend, posted)

        await orch.load_chat_history()
        await orch.process_user_message("how are you?")

        assert [t.role for t in backend.calls[0]] == ["user", "model", "user"]
        assert [m.text for m in store.get("legacy").messages] == [
            "hi", "hello!", "how are you?", "Summary: greeting",
        ]

    @pytest.mark.asyncio
    async def test_new_session_clears_the_panel(self, resolver, store, posted):
        orch = _orchestrator(resolver, store, StubBackend(), posted)
        await orch.process_user_message("first chat")
        old_id = orch.session_id

        new_id = await orch.new_session()

        assert new_id != old_id
        assert orch.messages == []
        assert _commands(posted, "loadChatHistory") == [{"command": "loadChatHistory", "messages": []}]
        assert len(store.get(old_id).messages) == 2

    @pytest.mark.asyncio
    async def test_timeout_during_first_reply_keeps_the_conversation(self, resolver, store, posted):
        self._seed(store)
        entered = asyncio.Event()
        release = asyncio.Event()

        class SlowBackend(StubBackend):
            async def generate(self, turns):
                entered.set()
                await release.wait()
                return await super().generate(turns)

        backend = SlowBackend()
        orch = _orchestrator(resolver, store, backend, posted, ready_timeout=0.02)
        fresh_id = orch.session_id

        await orch.start()
        turn = asyncio.create_task(orch.process_user_message("hello"))
        await entered.wait()
        await asyncio.sleep(0.1)
        assert orch.state == PanelState.ACTIVE

        release.set()
        await turn

        assert _commands(posted, "loadChatHistory") == []
        assert orch.session_id == fresh_id
        assert [t.role for t in backend.calls[0]] == ["user"]
        saved = store.get(fresh_id)
        assert [(m.sender, m.text) for m in saved.messages] == [
            (Sender.USER, "hello"),
            (Sender.ASSISTANT, "Summary: greeting"),
        ]
        assert len(store.get("previous").messages) == 2

    @pytest.mark.asyncio
    async def test_timeout_failure_is_logged(self, resolver, store, caplog):
        self._seed(store)

        async def post(message):
            if message["command"] == "loadChatHistory":
                raise RuntimeError("panel gone")

        orch = ConversationOrchestrator(
            resolver=resolver,
            store=store,
            backend=StubBackend(),
            post_message=post,
            ready_timeout=0.01,
        )

        with caplog.at_level(logging.ERROR, logger="parley"):
            await orch.start()
            timer = orch._ready_task
            await asyncio.wait_for(timer, timeout=1)

        assert timer.exception() is None
        assert "panel gone" in caplog.text


class TestPanelMessages:
    """Inbound message dispatch."""

    @pytest.mark.asyncio
    async def test_file_suggestions(self, resolver, store, posted):
        orch = _orchestrator(resolver, store, StubBackend(), posted)

        await orch.handle_message({"command": "getFileSuggestions", "partial": "READ"})

        [message] = _commands(posted, "fileSuggestions")
        assert len(message["suggestions"]) == 1
        assert message["suggestions"][0].endswith("readme.md")

    @pytest.mark.asyncio
    async def test_file_content(self, resolver, store, posted):
        orch = _orchestrator(resolver, store, StubBackend(), posted)

        await orch.handle_message({"command": "getFileContent", "filePath": "readme.md"})
        await orch.handle_message({"command": "getFileContent", "filePath": "nope.md"})

        [content] = _commands(posted, "fileContent")
        assert content["filePath"] == "readme.md"
        assert content["content"] == "Hello world"
        assert content["fileInfo"] == {
            "name": "readme.md", "kind": "Markdown", "size": 11, "language": "markdown",
        }
        assert _commands(posted, "fileAccessError") == [
            {"command": "fileAccessError", "files": ["nope.md"]}
        ]

    @pytest.mark.asyncio
    async def test_send_message(self, resolver, store, posted):
        backend = StubBackend()
        orch = _orchestrator(resolver, store, backend, posted)

        await orch.handle_message({"command": "sendMessage", "text": "hi"})

        assert len(backend.calls) == 1
        assert len(orch.messages) == 2

    @pytest.mark.asyncio
    async def test_invalid_messages_are_ignored(self, resolver, store, posted):
        orch = _orchestrator(resolver, store, StubBackend(), posted)

        await orch.handle_message({"command": "launchRockets"})
        await orch.handle_message({"command": "sendMessage"})
        await orch.handle_message({})

        assert posted == []
