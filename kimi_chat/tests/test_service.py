"""测试 ChatService：占位消息生命周期、metadata 与失败兜底。"""

import asyncio
import tempfile
from pathlib import Path

import pytest

from kimi_chat.agents.orchestrator import CancelToken, CompletionOrchestrator, OrchestratorConfig
from kimi_chat.api.service import ERROR_RESPONSE, ChatService, create_store
from kimi_chat.domain.exceptions import ApiError, CompletionCancelledError, ValidationError
from kimi_chat.domain.models import ChatChoice, ChatMessage, ChatResult
from kimi_chat.infrastructure.storage.json_store import JsonConversationStore
from kimi_chat.tools.definitions import ToolCall


class FakeProvider:
    """模拟的 Provider，并记录每次请求时存储中的消息。"""

    name = "fake"

    def __init__(self, results, store=None):
        self._results = list(results)
        self._store = store
        self.requests = []
        self.snapshots = []

    async def chat(self, req):
        self.requests.append(req)
        if self._store is not None:
            for conv in self._store.list_conversations():
                self.snapshots.append(self._store.list_messages(conv.id))
        item = self._results.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _final(text):
    return ChatResult(
        provider="fake",
        model="chat",
        choices=[ChatChoice(index=0, message=ChatMessage(role="assistant", content=text), finish_reason="stop")],
    )


def _tool_call(name, arguments):
    msg = ChatMessage(role="assistant", content="", tool_calls=[ToolCall(id="call_1", name=name, arguments=arguments)])
    return ChatResult(provider="fake", model="chat", choices=[ChatChoice(index=0, message=msg, finish_reason="tool_calls")])


def _service(store, provider, **config):
    return ChatService(store=store, orchestrator=CompletionOrchestrator(provider, config=OrchestratorConfig(**config)))


def test_send_message_creates_conversation_and_persists_answer():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        provider = FakeProvider(
            [_tool_call("get_weather", '{"city": "Paris"}'), _final("It's sunny in Paris.")],
            store=store,
        )
        service = _service(store, provider)
        seen = []
        question = "What's the weather in Paris? " + "x" * 60

        outcome = asyncio.run(service.send_message(question, on_tool_execution=seen.append))

        assert outcome.error is None
        assert outcome.conversation.title == question[:50]
        assert outcome.user_message.content == question
        assert outcome.assistant_message.content == "It's sunny in Paris."
        assert [e.name for e in outcome.tool_executions] == ["get_weather"]
        assert [e.name for e in seen] == ["get_weather"]
        executions = outcome.assistant_message.metadata["tool_executions"]
        assert executions[0]["name"] == "get_weather"
        assert executions[0]["arguments"] == {"city": "Paris"}

        # 占位消息在请求期间存在，但不会发给模型
        assert any(m.is_thinking for m in provider.snapshots[0])
        first_turns = provider.requests[0].messages
        assert [m.role for m in first_turns] == ["system", "user"]

        stored = service.list_messages(outcome.conversation.id)
        assert [(m.role, m.is_thinking) for m in stored] == [("user", False), ("assistant", False)]


def test_send_message_continues_existing_conversation():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        provider = FakeProvider([_final("first"), _final("second")])
        service = _service(store, provider)

        first = asyncio.run(service.send_message("hello"))
        second = asyncio.run(service.send_message("again", conversation_id=first.conversation.id))

        assert second.conversation.id == first.conversation.id
        roles = [m.role for m in provider.requests[1].messages]
        assert roles == ["system", "user", "assistant", "user"]
        assert len(service.list_conversations()) == 1


def test_send_message_transport_failure_persists_apology():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        provider = FakeProvider([ApiError(code="API_ERROR", message="bad gateway", http_status=502)])
        service = _service(store, provider)

        outcome = asyncio.run(service.send_message("hi"))

        assert outcome.error is not None
        assert outcome.error.code == "API_ERROR"
        assert outcome.assistant_message.content == ERROR_RESPONSE
        assert outcome.assistant_message.metadata["error"]["code"] == "API_ERROR"
        stored = service.list_messages(outcome.conversation.id)
        assert not any(m.is_thinking for m in stored)
        assert [m.content for m in stored] == ["hi", ERROR_RESPONSE]


def test_send_message_round_limit_marks_metadata():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        provider = FakeProvider([_tool_call("search_web", '{"query": "x"}')] * 2)
        service = _service(store, provider, max_rounds=2)

        outcome = asyncio.run(service.send_message("research"))
        assert outcome.assistant_message.metadata["stop_reason"] == "round_limit"
        assert len(outcome.assistant_message.metadata["tool_executions"]) == 2


def test_send_message_cancelled_cleans_placeholder():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        service = _service(store, FakeProvider([_final("never")]))
        token = CancelToken()
        token.cancel()
        with pytest.raises(CompletionCancelledError):
            asyncio.run(service.send_message("hi", cancel_token=token))
        conv = service.list_conversations()[0]
        assert [m.content for m in service.list_messages(conv.id)] == ["hi"]


def test_send_message_rejects_blank_input():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        service = _service(store, FakeProvider([]))
        with pytest.raises(ValidationError):
            asyncio.run(service.send_message("   "))
        assert service.list_conversations() == []


def test_start_and_delete_conversation():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        service = _service(store, FakeProvider([]))
        conv = service.start_conversation()
        assert conv.title == "New Conversation"
        service.delete_conversation(conv.id)
        assert service.list_conversations() == []


def test_create_store_uses_backend_setting():
    class JsonSettings:
        storage_backend = "json"

        def __init__(self, root):
            self.storage_root = root

    with tempfile.TemporaryDirectory() as d:
        assert isinstance(create_store(JsonSettings(d)), JsonConversationStore)
