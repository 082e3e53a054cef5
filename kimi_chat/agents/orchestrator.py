"""Completion 编排器。

驱动与远端模型之间的多轮请求/响应循环：

1. 在历史消息前加上固定的 system turn。
2. 每一轮把完整 turn 序列和工具目录发给模型。
3. finish_reason 为 tool_calls 时，原样追加 assistant turn，按顺序执行每个工具调用，
   把结果以 tool turn 追加后进入下一轮；否则返回文本内容。
4. 轮数达到上限仍没有最终回答时返回固定的兜底文案。

单个工具调用的失败（参数解析失败、未知工具、执行出错）只影响该调用本身；
只有传输层失败会以 CompletionError 的形式终止整个调用。编排器不做任何持久化。
"""

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union
from uuid import uuid4

from kimi_chat.domain.exceptions import (
    BusinessError,
    CompletionCancelledError,
    CompletionError,
    ToolError,
)
from kimi_chat.domain.models import (
    FINISH_TOOL_CALLS,
    ChatMessage,
    ChatRequest,
    ChatResult,
    ChatUsage,
)
from kimi_chat.infrastructure.logging.logger import logger
from kimi_chat.prompts import load_system_prompt
from kimi_chat.providers.base import ProviderClient
from kimi_chat.tools.builtin import default_registry
from kimi_chat.tools.definitions import ToolCall, ToolExecution
from kimi_chat.tools.executor import ToolExecutor
from kimi_chat.tools.registry import ToolRegistry


FALLBACK_RESPONSE = "I apologize, but I was unable to generate a response."

ToolExecutionCallback = Callable[[ToolExecution], Union[None, Awaitable[None]]]


@dataclass
class OrchestratorConfig:
    provider: str = "kimi"
    model: str = "chat"
    temperature: float = 0.6
    max_rounds: int = 8
    parallel_tool_calls: bool = False
    report_tool_errors: bool = True

    def __post_init__(self) -> None:
        if self.max_rounds < 1:
            self.max_rounds = 1

    @classmethod
    def from_settings(cls, settings) -> "OrchestratorConfig":
        return cls(
            provider=getattr(settings, "default_provider", "kimi"),
            model=getattr(settings, "default_model", "chat"),
            temperature=getattr(settings, "temperature", 0.6),
            max_rounds=getattr(settings, "max_tool_rounds", 8),
            parallel_tool_calls=getattr(settings, "parallel_tool_calls", False),
            report_tool_errors=getattr(settings, "report_tool_errors", True),
        )


class CancelToken:
    """协作式取消标记。

    cancel() 之后不会再开始新的轮次，也不会再触发 on_tool_execution；
    已经发出的模型请求会等其返回后再停止。
    """

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class CompletionResult:
    """一次 complete 调用的完整结果。

    text 与 tool_executions 一起返回，调用方据此写入最终 assistant 消息的 metadata。

    stop_reason:
        - "stop": 模型给出了最终文本。
        - "empty_response": 模型结束但没有任何内容。
        - "round_limit": 达到轮数上限。
    """

    text: str
    tool_executions: List[ToolExecution] = field(default_factory=list)
    rounds: int = 0
    stop_reason: str = "stop"
    usage: ChatUsage = field(default_factory=ChatUsage)

    @property
    def fallback(self) -> bool:
        return self.stop_reason != "stop"


class CompletionOrchestrator:
    def __init__(
        self,
        provider_client: ProviderClient,
        registry: Optional[ToolRegistry] = None,
        config: Optional[OrchestratorConfig] = None,
        system_prompt: Optional[str] = None,
    ):
        self._provider_client = provider_client
        self._registry = registry if registry is not None else default_registry()
        self._executor = ToolExecutor(self._registry)
        self._config = config or OrchestratorConfig(provider=getattr(provider_client, "name", "kimi"))
        self._system_prompt = system_prompt

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    async def complete(
        self,
        history: Sequence[ChatMessage],
        on_tool_execution: Optional[ToolExecutionCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> CompletionResult:
        """执行一次完整的多轮对话，返回最终文本与全部工具执行记录。

        Args:
            history: 已格式化的协议层历史 turn，允许为空。
            on_tool_execution: 每个工具成功执行后的回调（可为 async）。
            cancel_token: 可选的取消标记。

        Raises:
            CompletionError: 与模型通信失败。
            CompletionCancelledError: 调用被取消。
        """

        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "provider": self._config.provider,
            "model": self._config.model,
        }
        system_prompt = self._system_prompt or load_system_prompt()
        turns: List[ChatMessage] = [ChatMessage(role="system", content=system_prompt)]
        turns.extend(history)
        executions: List[ToolExecution] = []
        usage = ChatUsage()
        max_rounds = self._config.max_rounds

        for round_num in range(1, max_rounds + 1):
            self._ensure_not_cancelled(cancel_token, log_ctx, round_num)
            self._log(logging.INFO, "Round start", log_ctx, round=round_num, max_rounds=max_rounds, turns=len(turns))

            result = await self._request(turns, log_ctx, round_num)
            usage.add(result.usage)
            choice = result.choices[0]
            message = choice.message

            if choice.finish_reason == FINISH_TOOL_CALLS and message.tool_calls:
                self._log(
                    logging.INFO,
                    "Executing tool calls",
                    log_ctx,
                    round=round_num,
                    call_count=len(message.tool_calls),
                )
                # 原样回传模型自己的调用，后续轮次才能对上 tool_call_id
                turns.append(message)
                round_executions = await self._dispatch(
                    message.tool_calls, turns, on_tool_execution, cancel_token, log_ctx
                )
                executions.extend(round_executions)
                continue

            if message.content:
                self._log(logging.INFO, "Final answer received", log_ctx, round=round_num, executions=len(executions))
                return CompletionResult(
                    text=message.content,
                    tool_executions=executions,
                    rounds=round_num,
                    usage=usage,
                )

            if choice.finish_reason is None or choice.finish_reason == FINISH_TOOL_CALLS:
                self._log(logging.WARNING, "Degenerate response, retrying", log_ctx, round=round_num,
                          finish_reason=choice.finish_reason)
                continue

            self._log(logging.WARNING, "Empty final response", log_ctx, round=round_num,
                      finish_reason=choice.finish_reason)
            return CompletionResult(
                text=FALLBACK_RESPONSE,
                tool_executions=executions,
                rounds=round_num,
                stop_reason="empty_response",
                usage=usage,
            )

        self._log(logging.WARNING, "Reached max rounds", log_ctx, max_rounds=max_rounds)
        return CompletionResult(
            text=FALLBACK_RESPONSE,
            tool_executions=executions,
            rounds=max_rounds,
            stop_reason="round_limit",
            usage=usage,
        )

    async def _request(self, turns: List[ChatMessage], log_ctx: Dict[str, Any], round_num: int) -> ChatResult:
        req = ChatRequest(
            provider=self._config.provider,
            model=self._config.model,
            messages=list(turns),
            temperature=self._config.temperature,
            tools=self._registry.definitions() or None,
            tool_choice="auto",
        )
        try:
            result = await self._provider_client.chat(req)
        except BusinessError as e:
            self._log(logging.ERROR, "Completion request failed", log_ctx, round=round_num, code=e.code, error=e.message)
            raise CompletionError(
                code=e.code,
                message=e.message,
                http_status=e.http_status,
                round=round_num,
                trace_id=log_ctx["trace_id"],
            ) from e
        if not result.choices:
            self._log(logging.ERROR, "Completion returned no choices", log_ctx, round=round_num)
            raise CompletionError(
                code="MALFORMED_RESPONSE",
                message="Completion returned no choices",
                http_status=502,
                round=round_num,
                trace_id=log_ctx["trace_id"],
            )
        return result

    async def _dispatch(
        self,
        calls: List[ToolCall],
        turns: List[ChatMessage],
        on_tool_execution: Optional[ToolExecutionCallback],
        cancel_token: Optional[CancelToken],
        log_ctx: Dict[str, Any],
    ) -> List[ToolExecution]:
        """执行本轮全部工具调用，并按调用顺序追加 tool turn。"""

        executions: List[ToolExecution] = []
        if self._config.parallel_tool_calls:
            outcomes = await asyncio.gather(*(self._run_call(call, log_ctx) for call in calls))
            for call, outcome in zip(calls, outcomes):
                await self._settle(call, outcome, turns, executions, on_tool_execution, cancel_token, log_ctx)
        else:
            for call in calls:
                outcome = await self._run_call(call, log_ctx)
                await self._settle(call, outcome, turns, executions, on_tool_execution, cancel_token, log_ctx)
        return executions

    async def _run_call(
        self, call: ToolCall, log_ctx: Dict[str, Any]
    ) -> Tuple[Optional[ToolExecution], Optional[ToolError]]:
        self._log(
            logging.INFO,
            "Tool call received",
            log_ctx,
            tool_name=call.name,
            tool_call_id=call.id,
            tool_args=call.arguments,
        )
        try:
            return await self._executor.execute(call), None
        except ToolError as e:
            self._log(
                logging.WARNING,
                "Tool call skipped",
                log_ctx,
                tool_name=call.name,
                tool_call_id=call.id,
                code=e.code,
                error=e.message,
            )
            return None, e

    async def _settle(
        self,
        call: ToolCall,
        outcome: Tuple[Optional[ToolExecution], Optional[ToolError]],
        turns: List[ChatMessage],
        executions: List[ToolExecution],
        on_tool_execution: Optional[ToolExecutionCallback],
        cancel_token: Optional[CancelToken],
        log_ctx: Dict[str, Any],
    ) -> None:
        execution, error = outcome
        if execution is None:
            if error is not None and self._config.report_tool_errors:
                turns.append(
                    ChatMessage(
                        role="tool",
                        content=json.dumps({"error": error.message, "code": error.code}, ensure_ascii=False),
                        tool_call_id=call.id,
                        name=call.name,
                    )
                )
            return

        self._ensure_not_cancelled(cancel_token, log_ctx)
        executions.append(execution)
        if on_tool_execution is not None:
            notified = on_tool_execution(execution)
            if inspect.isawaitable(notified):
                await notified
        content = self._executor.serialize_result(execution.result)
        self._log(
            logging.INFO,
            "Tool execution finished",
            log_ctx,
            tool_name=call.name,
            tool_call_id=call.id,
            result_preview=content[:200],
        )
        turns.append(ChatMessage(role="tool", content=content, tool_call_id=call.id, name=call.name))

    def _ensure_not_cancelled(
        self, cancel_token: Optional[CancelToken], log_ctx: Dict[str, Any], round_num: Optional[int] = None
    ) -> None:
        if cancel_token is not None and cancel_token.cancelled:
            self._log(logging.INFO, "Completion cancelled", log_ctx, round=round_num)
            raise CompletionCancelledError(code="CANCELLED", message="Completion cancelled", trace_id=log_ctx["trace_id"])

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
