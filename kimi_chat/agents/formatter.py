"""把持久化的 MessageRecord 转成发给模型的协议层 turn。"""

from typing import List, Sequence

from kimi_chat.domain.conversation import MessageRecord
from kimi_chat.domain.models import ChatMessage


def format_messages_for_api(messages: Sequence[MessageRecord]) -> List[ChatMessage]:
    """过滤掉 thinking 占位消息，其余按原顺序只保留 role 与 content。

    id、metadata 等字段不会发给模型。
    """

    return [
        ChatMessage(role=m.role, content=m.content)
        for m in messages
        if not m.is_thinking
    ]
