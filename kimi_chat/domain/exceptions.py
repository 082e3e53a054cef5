"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError，
便于在 service 层统一捕获、记录日志并生成用户可读的提示。

层级大致为：

- TransportError 及其子类：与远端模型服务通信失败（网络、HTTP 状态、响应格式）。
- ToolError 及其子类：单次工具调用失败，只在当前轮次内消化，不会中断循环。
- CompletionError / CompletionCancelledError：编排器对调用方暴露的终止原因。
- StoreError：持久化层错误。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、tool_name 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class TransportError(BusinessError):
    """与远端 completion 接口通信失败的基类。"""


class NetworkError(TransportError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(TransportError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(TransportError):
    """Provider 限流错误。编排器本身不重试，交由上层决定。"""


class MalformedResponseError(TransportError):
    """响应体不是预期的 chat.completion 结构。"""


class ToolError(BusinessError):
    """单次工具调用失败的基类。"""


class ArgumentParseError(ToolError):
    """工具调用的 arguments 不是合法的 JSON 对象。"""


class UnknownToolError(ToolError):
    """模型请求了未注册的工具。"""


class ToolExecutionError(ToolError):
    """工具处理函数执行失败。"""


class CompletionError(BusinessError):
    """一次 complete 调用因传输失败而中止。

    调用方据此向用户展示道歉信息并清理 thinking 占位消息。
    原始异常通过 __cause__ 保留。
    """


class CompletionCancelledError(BusinessError):
    """调用方通过 CancelToken 取消了正在进行的 complete 调用。"""


class StoreError(BusinessError):
    """会话/消息存储读写失败。"""
