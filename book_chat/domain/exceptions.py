"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在编排层或 UI 层做统一捕获与用户提示。

注意：会话不存在（NotFound）与回答为空（EmptyExtraction）不是异常，
前者由 store 返回 False/None 表示，后者由占位文本表示。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_WRITE_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、model 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NotConfiguredError(BusinessError):
    """未配置 API 密钥，Provider 在发起网络请求前直接拒绝。"""


class NetworkError(BusinessError):
    """网络层错误，例如连接失败。"""


class BackendTimeoutError(NetworkError):
    """一次 backend 调用超过 request_timeout 仍未返回。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx 错误时抛出。"""


class AuthError(ApiError):
    """API 密钥无效或无权限。"""


class RateLimitError(BusinessError):
    """Provider 限流错误，不自动重试，由用户手动重发。"""


class ValidationError(BusinessError):
    """参数或前置条件校验失败。"""


class StorageError(BusinessError):
    """持久化读写失败，只在存储层内部使用。"""
