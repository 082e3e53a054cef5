from datetime import datetime, timedelta, timezone

from kimi_chat.agents.formatter import format_messages_for_api
from kimi_chat.domain.conversation import MessageRecord


def _msg(idx, role, content, is_thinking=False, metadata=None):
    return MessageRecord(
        id=f"m{idx}",
        conversation_id="c1",
        role=role,
        content=content,
        is_thinking=is_thinking,
        created_at=datetime.now(timezone.utc) + timedelta(seconds=idx),
        metadata=metadata or {},
    )


def test_format_drops_thinking_and_keeps_order():
    msgs = [
        _msg(1, "user", "hi"),
        _msg(2, "assistant", "hello", metadata={"tool_executions": [{"name": "x"}]}),
        _msg(3, "user", "weather?"),
        _msg(4, "assistant", "Thinking...", is_thinking=True),
    ]
    out = format_messages_for_api(msgs)
    assert len(out) == 3
    assert [(m.role, m.content) for m in out] == [
        ("user", "hi"),
        ("assistant", "hello"),
        ("user", "weather?"),
    ]
    assert all(m.tool_calls is None and m.tool_call_id is None for m in out)


def test_format_length_matches_non_transient_count():
    for pattern in ([], [True], [False], [True, False, True, False, False], [True] * 4):
        msgs = [_msg(i, "user", str(i), is_thinking=flag) for i, flag in enumerate(pattern)]
        out = format_messages_for_api(msgs)
        assert len(out) == pattern.count(False)
        assert [m.content for m in out] == [str(i) for i, flag in enumerate(pattern) if not flag]


def test_format_is_idempotent():
    msgs = [_msg(1, "system", "be nice"), _msg(2, "user", "hi")]
    assert format_messages_for_api(msgs) == format_messages_for_api(msgs)
