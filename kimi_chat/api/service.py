"""对外 API 服务模块。

ChatService 是编排器的调用方：负责在编排前后读写会话存储、
维护 thinking 占位消息，并把工具执行记录写入最终 assistant 消息的 metadata。
同时提供基于全局配置的默认实例与简化的函数接口。
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from kimi_chat.agents.formatter import format_messages_for_api
from kimi_chat.agents.orchestrator import (
    CancelToken,
    CompletionOrchestrator,
    CompletionResult,
    OrchestratorConfig,
    ToolExecutionCallback,
)
from kimi_chat.config.settings import settings
from kimi_chat.domain.conversation import (
    DEFAULT_CONVERSATION_TITLE,
    Conversation,
    ConversationStore,
    MessageRecord,
)
from kimi_chat.domain.exceptions import CompletionError, ValidationError
from kimi_chat.infrastructure.logging.logger import logger
from kimi_chat.infrastructure.storage.json_store import JsonConversationStore
from kimi_chat.infrastructure.storage.supabase_store import SupabaseConversationStore
from kimi_chat.providers import create_provider
from kimi_chat.tools.definitions import ToolExecution


THINKING_TEXT = "Thinking..."
ERROR_RESPONSE = (
    "I apologize, but I encountered an error while generating a response. "
    "Please check the Kimi API configuration and try again."
)
TITLE_MAX_LENGTH = 50


@dataclass
class ChatTurnOutcome:
    """一次 send_message 的结果。error 非空时 assistant_message 为道歉消息。"""

    conversation: Conversation
    user_message: MessageRecord
    assistant_message: MessageRecord
    tool_executions: List[ToolExecution] = field(default_factory=list)
    error: Optional[CompletionError] = None


class ChatService:
    def __init__(self, store: ConversationStore, orchestrator: CompletionOrchestrator):
        self._store = store
        self._orchestrator = orchestrator

    def start_conversation(self, title: str = DEFAULT_CONVERSATION_TITLE) -> Conversation:
        return self._store.create_conversation(title)

    def list_conversations(self) -> List[Conversation]:
        return self._store.list_conversations()

    def list_messages(self, conversation_id: str) -> List[MessageRecord]:
        return self._store.list_messages(conversation_id)

    def delete_conversation(self, conversation_id: str) -> None:
        self._store.delete_conversation(conversation_id)

    async def send_message(
        self,
        content: str,
        conversation_id: Optional[str] = None,
        on_tool_execution: Optional[ToolExecutionCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> ChatTurnOutcome:
        """发送一条用户消息并生成回答。

        1. 没有 conversation_id 时以消息前 50 个字符为标题新建会话。
        2. 写入用户消息并刷新会话的 updated_at。
        3. 写入 thinking 占位消息，随后读取历史交给编排器。
        4. 无论成功、失败还是取消，占位消息都会被删除。
        5. 成功时写入最终回答（metadata.tool_executions），
           CompletionError 时写入固定的道歉消息。

        Raises:
            ValidationError: 消息为空。
            CompletionCancelledError: 调用被取消（占位消息已清理）。
        """

        if not content or not content.strip():
            raise ValidationError(code="EMPTY_MESSAGE", message="Message content is empty")

        if conversation_id:
            conv = self._store.get_conversation(conversation_id)
        else:
            conv = self._store.create_conversation(content[:TITLE_MAX_LENGTH])
            self._log(logging.INFO, "Created new conversation", conversation_id=conv.id)

        user_rec = self._store.create_message(conv.id, "user", content)
        self._store.touch_conversation(conv.id)

        placeholder = self._store.create_message(conv.id, "assistant", THINKING_TEXT, is_thinking=True)
        result: Optional[CompletionResult] = None
        error: Optional[CompletionError] = None
        try:
            history = format_messages_for_api(self._store.list_messages(conv.id))
            result = await self._orchestrator.complete(
                history,
                on_tool_execution=on_tool_execution,
                cancel_token=cancel_token,
            )
        except CompletionError as e:
            error = e
            self._log(
                logging.ERROR,
                "Chat completion failed",
                conversation_id=conv.id,
                code=e.code,
                error=e.message,
            )
        finally:
            self._store.delete_message(placeholder.id)

        if error is not None:
            assistant_rec = self._store.create_message(
                conv.id,
                "assistant",
                ERROR_RESPONSE,
                metadata={"error": {"code": error.code, "message": error.message}},
            )
            executions: List[ToolExecution] = []
        else:
            executions = list(result.tool_executions)
            metadata: Dict[str, Any] = {"tool_executions": [e.to_dict() for e in executions]}
            if result.fallback:
                metadata["stop_reason"] = result.stop_reason
            assistant_rec = self._store.create_message(conv.id, "assistant", result.text, metadata=metadata)
        self._store.touch_conversation(conv.id)

        self._log(
            logging.INFO,
            "Stored assistant message",
            conversation_id=conv.id,
            message_id=assistant_rec.id,
            tool_executions=len(executions),
        )
        return ChatTurnOutcome(
            conversation=self._store.get_conversation(conv.id),
            user_message=user_rec,
            assistant_message=assistant_rec,
            tool_executions=executions,
            error=error,
        )

    @staticmethod
    def _log(level: int, message: str, **fields: Any) -> None:
        logger.log(level, message, extra={"extra": fields})


def create_store(cfg=None) -> ConversationStore:
    """根据 storage_backend 创建存储实例。"""
    cfg = cfg or settings
    if cfg.storage_backend == "supabase":
        return SupabaseConversationStore(cfg)
    return JsonConversationStore(root=cfg.storage_root)


_service: Optional[ChatService] = None


def get_default_service() -> ChatService:
    """获取基于全局配置的默认 ChatService 实例（单例）。"""
    global _service
    if _service is None:
        orchestrator = CompletionOrchestrator(
            provider_client=create_provider(),
            config=OrchestratorConfig.from_settings(settings),
        )
        _service = ChatService(store=create_store(), orchestrator=orchestrator)
    return _service


async def run_chat(content: str, conversation_id: Optional[str] = None) -> Dict[str, Any]:
    """发送一条消息并返回可直接序列化的结果字典。"""
    outcome = await get_default_service().send_message(content, conversation_id=conversation_id)
    return {
        "conversation_id": outcome.conversation.id,
        "user_message": _message_to_dict(outcome.user_message),
        "assistant_message": _message_to_dict(outcome.assistant_message),
        "tool_executions": [e.to_dict() for e in outcome.tool_executions],
        "error": outcome.error.code if outcome.error else None,
    }


def list_conversations() -> List[Dict[str, Any]]:
    """列出所有会话，最近更新的在前。"""
    return [
        {
            "id": c.id,
            "title": c.title,
            "created_at": c.created_at.isoformat(),
            "updated_at": c.updated_at.isoformat(),
            "user_id": c.user_id,
        }
        for c in get_default_service().list_conversations()
    ]


def get_conversation_messages(conversation_id: str) -> List[Dict[str, Any]]:
    """获取会话的所有消息（按创建时间升序）。"""
    return [_message_to_dict(m) for m in get_default_service().list_messages(conversation_id)]


def _message_to_dict(m: MessageRecord) -> Dict[str, Any]:
    return {
        "id": m.id,
        "conversation_id": m.conversation_id,
        "role": m.role,
        "content": m.content,
        "is_thinking": m.is_thinking,
        "created_at": m.created_at.isoformat(),
        "metadata": m.metadata,
    }
