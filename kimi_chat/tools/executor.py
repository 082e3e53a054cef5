import inspect
import json
from typing import Any, Dict

from kimi_chat.domain.exceptions import (
    ArgumentParseError,
    ToolExecutionError,
    UnknownToolError,
)
from .definitions import ToolCall, ToolExecution
from .registry import ToolHandler, ToolRegistry


class ToolExecutor:
    """把模型发起的 ToolCall 解析、分发到注册表中的处理函数。"""

    def __init__(self, registry: ToolRegistry):
        self._registry = registry

    @staticmethod
    def parse_arguments(raw: Any) -> Dict[str, Any]:
        """解析工具调用的 arguments 字段。

        Moonshot/Kimi 会把 arguments 作为 JSON 字符串返回。空字符串视为无参数，
        非法 JSON 或非对象 JSON 抛出 ArgumentParseError。
        """

        if isinstance(raw, dict):
            return raw
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            return {}
        if not isinstance(raw, str):
            raise ArgumentParseError(code="INVALID_ARGUMENTS", message=f"Unsupported arguments type: {type(raw).__name__}")
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ArgumentParseError(code="INVALID_ARGUMENTS", message=f"Arguments are not valid JSON: {e}", raw=raw)
        if not isinstance(parsed, dict):
            raise ArgumentParseError(code="INVALID_ARGUMENTS", message="Arguments must be a JSON object", raw=raw)
        return parsed

    def resolve(self, call: ToolCall) -> ToolHandler:
        handler = self._registry.get_handler(call.name)
        if handler is None:
            raise UnknownToolError(code="UNKNOWN_TOOL", message=f"Tool not registered: {call.name}", tool_name=call.name)
        return handler

    async def execute(self, call: ToolCall) -> ToolExecution:
        arguments = self.parse_arguments(call.arguments)
        handler = self.resolve(call)
        try:
            result = handler(arguments)
            if inspect.isawaitable(result):
                result = await result
        except ToolExecutionError:
            raise
        except Exception as e:
            raise ToolExecutionError(
                code="TOOL_FAILED",
                message=f"{call.name} failed: {e}",
                tool_name=call.name,
            ) from e
        return ToolExecution(name=call.name, arguments=arguments, result=result, call_id=call.id)

    @staticmethod
    def serialize_result(value: Any) -> str:
        # 字符串结果同样按 JSON 编码（带引号）
        return json.dumps(value, ensure_ascii=False, default=str)
