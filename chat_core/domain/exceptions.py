"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在编排层或 UI 层做统一捕获与用户提示。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、conversation_id 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class MissingCredentialError(ValidationError):
    """所选 Provider 没有配置 API Key，UI 应弹出凭证输入提示。"""

    def __init__(self, provider: str, message: str = ""):
        super().__init__(
            code="MISSING_API_KEY",
            message=message or f"API key for provider {provider!r} not set",
            provider=provider,
        )
        self.provider = provider


class ConversationBusyError(ValidationError):
    """会话仍有未结束的回复时再次发送。"""

    def __init__(self, conversation_id: str):
        super().__init__(
            code="CONVERSATION_BUSY",
            message=f"Conversation {conversation_id} is still streaming a reply",
            http_status=409,
            conversation_id=conversation_id,
        )
        self.conversation_id = conversation_id


class ProviderError(BusinessError):
    """Provider 调用失败，message 保留上游原始错误文本。"""


class ApiError(ProviderError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(ProviderError):
    """Provider 限流或额度错误（HTTP 429）。"""


class NetworkError(ProviderError):
    """网络层错误，例如连接失败、超时等。"""


class StorageError(BusinessError):
    """本地持久化读写失败。编排层只记录日志，不打断用户。"""
