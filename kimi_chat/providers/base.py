"""Provider 抽象接口。

编排器不直接依赖具体厂商的 HTTP SDK，而是依赖此协议：

- 每个厂商实现一个 ProviderClient（如 KimiClient）。
- 负责：将 ChatRequest 转成具体 API 请求，并把响应 JSON 解析为 ChatResult。

测试中可以用任意实现了 chat 的对象替换真实客户端。
"""

from typing import Protocol
from kimi_chat.domain.models import ChatRequest, ChatResult


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志/统计。
    - chat(req): 执行一次非流式对话调用，返回统一的 ChatResult。
      失败时抛出 domain.exceptions.TransportError 的子类。
    """

    name: str

    async def chat(self, req: ChatRequest) -> ChatResult:
        ...
