"""统一的对话与结果数据模型。

本模块定义了编排器与 Provider 之间共享的标准数据结构：

- ChatMessage: 协议层的一条对话 turn（system/user/assistant/tool）。
- ChatRequest: 发给底层 LLM Provider 的完整请求。
- ChatResult: 从 Provider 解析后的统一响应结果。

Provider 适配器（如 KimiClient）只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass
from typing import Literal, Optional, Dict, List, TYPE_CHECKING

if TYPE_CHECKING:
    from kimi_chat.tools.definitions import ToolCall, ToolDef


# 协议层消息角色（与 OpenAI / Moonshot 的 role 字段对应）
Role = Literal["system", "user", "assistant", "tool"]

FINISH_TOOL_CALLS = "tool_calls"


@dataclass
class ChatMessage:
    """一条对话 turn，既可用于请求，也可用于响应。

    - role: 消息角色。
    - content: 纯文本内容。
    - tool_calls: role 为 "assistant" 且模型触发工具调用时的调用列表，
      原样回传给模型，使其在后续轮次能看到自己发起过的调用。
    - tool_call_id / name: role 为 "tool" 时，关联对应的调用与工具名。
    """

    role: Role
    content: str
    tool_calls: Optional[List["ToolCall"]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    编排器每一轮都会生成一个 ChatRequest，Provider 适配层负责把它
    转换成具体 API 的 JSON 请求体。
    """

    provider: str  # 逻辑 Provider 名，如 "kimi"
    model: str  # 逻辑模型名，如 "chat"（再由 registry 映射为真实模型名）
    messages: List[ChatMessage]
    temperature: float = 0.6
    max_tokens: Optional[int] = None
    tools: Optional[List["ToolDef"]] = None
    tool_choice: Literal["auto", "none", "required"] = "auto"


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: Optional["ChatUsage"]) -> None:
        if other is None:
            return
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class ChatChoice:
    """单个候选回答（目前只使用 index=0 的一条）。"""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次 Provider 调用的解析结果。

    - choices: 一个或多个候选回答，至少包含一条。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON，用于调试或日志记录。
    """

    provider: str
    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None
