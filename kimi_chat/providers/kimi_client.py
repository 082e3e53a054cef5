"""Kimi Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 Moonshot/Kimi 的 chat/completions 请求格式。
3. 调用 HTTP 接口并把网络/API 异常映射为 TransportError 子类。
4. 将响应 JSON 解析为统一的 ChatResult / ChatMessage 结构（含工具调用）。

HTTP 客户端可以通过构造参数注入（例如测试中使用 httpx.MockTransport），
未注入时每次调用临时创建 httpx.AsyncClient。
"""

import httpx
from typing import Any, Dict, List, Optional

from kimi_chat.domain.models import (
    ChatRequest,
    ChatResult,
    ChatMessage,
    ChatChoice,
    ChatUsage,
)
from kimi_chat.domain.exceptions import (
    ApiError,
    MalformedResponseError,
    NetworkError,
    RateLimitError,
    ValidationError,
)
from kimi_chat.providers.registry import KIMI_CONFIG, ModelConfig
from kimi_chat.tools.definitions import ToolCall


class KimiClient:
    """Kimi 提供方客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - chat: 对外统一调用入口，返回 ChatResult。
    """

    name = "kimi"

    def __init__(self, settings, http_client: Optional[httpx.AsyncClient] = None):
        # Settings 里包含 base_url、api_key、超时等配置
        self._settings = settings
        self._http_client = http_client

    async def chat(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式对话调用。

        步骤：
        1. 读取模型配置（logical model -> provider model）。
        2. 构造 HTTP 请求 payload。
        3. 发送请求并捕获网络错误/限流/服务端错误。
        4. 使用统一的解析函数构造 ChatResult。
        """

        api_key = getattr(self._settings, "kimi_api_key", None)
        if not api_key:
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_API_KEY", message="KIMI_API_KEY not set")
        model_cfg = KIMI_CONFIG.resolve_model(req.model)
        payload = self._build_payload(req, model_cfg)
        base = getattr(self._settings, "kimi_base_url", None) or KIMI_CONFIG.base_url
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        try:
            if self._http_client is not None:
                resp = await self._http_client.post(f"{base}/chat/completions", json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                    resp = await client.post(f"{base}/chat/completions", json=payload, headers=headers)
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e)) from e
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="Kimi rate limit", http_status=429)
        if resp.status_code >= 400:
            # 其他 HTTP 错误统一包装为 ApiError
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponseError(code="MALFORMED_RESPONSE", message=f"Response is not JSON: {e}") from e
        return self._parse_response(data, req)

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig) -> dict:
        """将 ChatRequest 转成 Kimi 所需的请求 JSON。"""

        payload: Dict[str, Any] = {
            "model": model_cfg.provider_model,
            "messages": [self._message_to_payload(m) for m in req.messages],
            "temperature": req.temperature if req.temperature is not None else model_cfg.default_temperature,
        }
        max_tokens = req.max_tokens or model_cfg.max_tokens
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if req.tools:
            payload["tools"] = [tool.to_schema() for tool in req.tools]
            payload["tool_choice"] = req.tool_choice
        return payload

    def _parse_response(self, data: Any, req: ChatRequest) -> ChatResult:
        """将 Kimi 的原始响应 JSON 解析为统一的 ChatResult。"""

        if not isinstance(data, dict):
            raise MalformedResponseError(code="MALFORMED_RESPONSE", message="Response body is not an object")
        raw_choices = data.get("choices")
        if not isinstance(raw_choices, list) or not raw_choices:
            raise MalformedResponseError(code="MALFORMED_RESPONSE", message="Response has no choices")
        choices: List[ChatChoice] = []
        for i, ch in enumerate(raw_choices):
            if not isinstance(ch, dict):
                raise MalformedResponseError(code="MALFORMED_RESPONSE", message=f"Choice {i} is not an object")
            msg = ch.get("message") or {}
            if not isinstance(msg, dict):
                raise MalformedResponseError(code="MALFORMED_RESPONSE", message=f"Choice {i} message is not an object")
            cm = self._build_chat_message(msg)
            choices.append(ChatChoice(index=ch.get("index", i), message=cm, finish_reason=ch.get("finish_reason")))
        usage_raw = data.get("usage") or {}
        if not isinstance(usage_raw, dict):
            usage_raw = {}
        usage = ChatUsage(
            prompt_tokens=usage_raw.get("prompt_tokens", 0),
            completion_tokens=usage_raw.get("completion_tokens", 0),
            total_tokens=usage_raw.get("total_tokens", 0),
        )
        return ChatResult(provider=self.name, model=req.model, choices=choices, usage=usage, raw=data)

    def _build_chat_message(self, payload: Dict[str, Any]) -> ChatMessage:
        """将单条厂商 message 转换为 ChatMessage。

        tool_calls 中只保留 type 为 function 的调用，arguments 保持原始字符串，
        解析与校验由 ToolExecutor 在执行前完成。
        """

        raw_calls = payload.get("tool_calls") or []
        if not isinstance(raw_calls, list):
            raise MalformedResponseError(code="MALFORMED_RESPONSE", message="tool_calls is not a list")
        tool_calls: List[ToolCall] = []
        for idx, call in enumerate(raw_calls):
            if not isinstance(call, dict):
                raise MalformedResponseError(code="MALFORMED_RESPONSE", message=f"Tool call {idx} is not an object")
            if call.get("type", "function") != "function":
                continue
            func = call.get("function") or {}
            if not isinstance(func, dict):
                raise MalformedResponseError(code="MALFORMED_RESPONSE", message=f"Tool call {idx} function is not an object")
            arguments = func.get("arguments")
            tool_calls.append(
                ToolCall(
                    id=call.get("id") or f"tool_call_{idx}",
                    name=func.get("name") or "",
                    arguments=arguments if isinstance(arguments, str) else "",
                )
            )
        return ChatMessage(
            role=payload.get("role") or "assistant",
            content=payload.get("content") or "",
            tool_calls=tool_calls or None,
        )

    @staticmethod
    def _message_to_payload(message: ChatMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": message.role, "content": message.content or ""}
        if message.tool_calls:
            payload["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in message.tool_calls
            ]
        if message.tool_call_id:
            payload["tool_call_id"] = message.tool_call_id
        if message.name:
            payload["name"] = message.name
        return payload
