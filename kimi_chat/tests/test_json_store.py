import tempfile
import time
from pathlib import Path

import pytest

from kimi_chat.domain.exceptions import StoreError
from kimi_chat.infrastructure.storage.json_store import JsonConversationStore


def test_json_store_create_and_messages():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        conv = store.create_conversation("Trip planning")
        assert conv.title == "Trip planning"
        m1 = store.create_message(conv.id, "user", "hello")
        m2 = store.create_message(conv.id, "assistant", "Thinking...", is_thinking=True)
        m3 = store.create_message(conv.id, "assistant", "hi", metadata={"tool_executions": []})
        msgs = store.list_messages(conv.id)
        assert [m.id for m in msgs] == [m1.id, m2.id, m3.id]
        assert msgs[1].is_thinking is True
        assert msgs[2].metadata == {"tool_executions": []}


def test_json_store_blank_title_defaults():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        assert store.create_conversation("   ").title == "New Conversation"


def test_json_store_delete_message():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        conv = store.create_conversation("t")
        keep = store.create_message(conv.id, "user", "keep")
        drop = store.create_message(conv.id, "assistant", "Thinking...", is_thinking=True)
        store.delete_message(drop.id)
        assert [m.id for m in store.list_messages(conv.id)] == [keep.id]
        with pytest.raises(StoreError) as exc_info:
            store.delete_message(drop.id)
        assert exc_info.value.code == "MESSAGE_NOT_FOUND"


def test_json_store_recency_order_and_touch():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        first = store.create_conversation("first")
        time.sleep(0.01)
        second = store.create_conversation("second")
        assert [c.id for c in store.list_conversations()] == [second.id, first.id]
        time.sleep(0.01)
        store.touch_conversation(first.id)
        assert [c.id for c in store.list_conversations()] == [first.id, second.id]
        time.sleep(0.01)
        store.create_message(second.id, "user", "bump")
        assert store.list_conversations()[0].id == second.id


def test_json_store_missing_conversation():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        with pytest.raises(StoreError) as exc_info:
            store.create_message("c-missing", "user", "x")
        assert exc_info.value.code == "CONVERSATION_NOT_FOUND"
        assert store.list_messages("c-missing") == []


def test_json_store_delete_conversation():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        store = JsonConversationStore(root=root)
        conv = store.create_conversation("temp")
        conv_dir = root / "conversations" / conv.id
        assert conv_dir.exists()
        store.delete_conversation(conv.id)
        assert not conv_dir.exists()
        assert conv.id not in {c.id for c in store.list_conversations()}
