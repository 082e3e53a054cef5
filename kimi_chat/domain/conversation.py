from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Literal, Protocol
from datetime import datetime


MessageRole = Literal["user", "assistant", "system"]

DEFAULT_CONVERSATION_TITLE = "New Conversation"


@dataclass
class Conversation:
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    user_id: Optional[str] = None


@dataclass
class MessageRecord:
    id: str
    conversation_id: str
    role: MessageRole
    content: str
    is_thinking: bool
    created_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)


class ConversationStore(Protocol):
    """会话持久化网关。

    编排器不直接调用它，只消费 list_messages 产出的 MessageRecord；
    ChatService 在编排前后通过它读写会话状态。
    """

    def list_conversations(self) -> List[Conversation]:
        ...

    def create_conversation(self, title: str) -> Conversation:
        ...

    def get_conversation(self, conversation_id: str) -> Conversation:
        ...

    def touch_conversation(self, conversation_id: str) -> None:
        ...

    def delete_conversation(self, conversation_id: str) -> None:
        ...

    def list_messages(self, conversation_id: str) -> List[MessageRecord]:
        ...

    def create_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        is_thinking: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> MessageRecord:
        ...

    def delete_message(self, message_id: str) -> None:
        ...


def normalize_title(title: Optional[str]) -> str:
    text = (title or "").strip()
    return text or DEFAULT_CONVERSATION_TITLE
