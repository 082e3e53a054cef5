"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将可用工具列表暴露给 LLM（ToolDef / ToolParam）。
- 在编排器中保存和执行模型触发的工具调用（ToolCall / ToolExecution）。
"""

from dataclasses import dataclass
from typing import Any, Dict, List


@dataclass(frozen=True)
class ToolParam:
    """单个工具参数的定义。"""

    name: str
    description: str
    required: bool
    schema: Dict[str, Any]


@dataclass(frozen=True)
class ToolDef:
    """一个可供 LLM 调用的工具定义，进程启动时定义一次。"""

    name: str
    description: str
    params: Dict[str, ToolParam]

    @property
    def required(self) -> List[str]:
        return [name for name, param in self.params.items() if param.required]

    def to_schema(self) -> Dict[str, Any]:
        """转换为 function tool 描述（OpenAI / Moonshot 通用格式）。"""

        properties: Dict[str, Any] = {}
        for name, param in self.params.items():
            prop = dict(param.schema or {"type": "string"})
            if param.description:
                prop["description"] = param.description
            properties[name] = prop
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "required": self.required,
                    "properties": properties,
                },
            },
        }


@dataclass
class ToolCall:
    """模型发起的一次工具调用请求。

    arguments 保留模型返回的原始 JSON 字符串，解析交给 ToolExecutor，
    这样回传 assistant turn 时能做到逐字节原样。
    """

    id: str
    name: str
    arguments: str = ""


@dataclass
class ToolExecution:
    """一次成功的工具执行记录，用于进度回调与最终消息的 metadata。"""

    name: str
    arguments: Dict[str, Any]
    result: Any = None
    call_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "arguments": self.arguments,
            "result": self.result,
        }
