"""工具注册表：有序的 ToolDef 目录 + 工具名到处理函数的映射。"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from kimi_chat.domain.exceptions import ValidationError
from .definitions import ToolDef


# 处理函数可以是同步的，也可以返回 awaitable（异步工具）
ToolHandler = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]


class ToolRegistry:
    def __init__(self) -> None:
        self._defs: List[ToolDef] = []
        self._handlers: Dict[str, ToolHandler] = {}

    def register(self, tool_def: ToolDef, handler: ToolHandler) -> None:
        if tool_def.name in self._handlers:
            raise ValidationError(code="DUPLICATE_TOOL", message=f"Tool already registered: {tool_def.name}")
        self._defs.append(tool_def)
        self._handlers[tool_def.name] = handler

    def definitions(self) -> List[ToolDef]:
        """按注册顺序返回所有工具定义，每次请求都会发送给模型。"""

        return list(self._defs)

    def get_handler(self, name: str) -> Optional[ToolHandler]:
        """按名称查找处理函数；未注册时返回 None 而不是抛错。"""

        return self._handlers.get(name)

    def names(self) -> List[str]:
        return [d.name for d in self._defs]

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._defs)
