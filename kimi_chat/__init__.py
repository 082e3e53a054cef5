"""Kimi Chat 顶层包。

该包提供聊天客户端的核心实现：配置加载、领域模型、Kimi Provider 适配、
工具注册与执行、多轮工具调用编排、会话持久化以及对外的 ChatService。
"""

from kimi_chat.agents.orchestrator import CancelToken, CompletionOrchestrator, CompletionResult
from kimi_chat.api.service import ChatService

__all__ = ["CancelToken", "ChatService", "CompletionOrchestrator", "CompletionResult"]
