"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。

Provider 侧是一个封闭集合：适配器只允许抛出
AuthenticationError / RateLimitError / InvalidRequestError 三种，
并带上来源 provider 名称；厂商 SDK/HTTP 的原生异常不得越过适配器边界。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "RATE_LIMIT"）。
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


class ProviderError(BusinessError):
    """Provider 适配层错误基类，携带来源 provider 名称。"""

    default_code = "PROVIDER_ERROR"
    default_status = 502

    def __init__(self, message: str, provider: str, **extra):
        self.provider = provider
        super().__init__(
            code=self.default_code,
            message=message,
            http_status=self.default_status,
            provider=provider,
            **extra,
        )


class AuthenticationError(ProviderError):
    """凭据缺失或无效（401/403），上层应检查配置而不是重试。"""

    default_code = "AUTHENTICATION_ERROR"
    default_status = 401


class RateLimitError(ProviderError):
    """Provider 限流或配额耗尽，由上层负责重试/退避策略。"""

    default_code = "RATE_LIMIT"
    default_status = 429


class InvalidRequestError(ProviderError):
    """请求格式错误、模型不支持、后端返回空结果、网络失败或超时。"""

    default_code = "INVALID_REQUEST"
    default_status = 400


class ProviderNotFoundError(BusinessError):
    """注册表中不存在该名称的 Provider。"""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            code="PROVIDER_NOT_FOUND",
            message=f'Provider "{name}" not found.',
            http_status=404,
            provider=name,
        )


class ConversationError(BusinessError):
    """会话子系统通用错误，例如导入数据解析失败。"""

    def __init__(self, message: str, code: str = "CONVERSATION_ERROR", http_status: int = 400, **extra):
        super().__init__(code=code, message=message, http_status=http_status, **extra)


class ConversationNotFoundError(ConversationError):
    """会话 id 在 store 中不存在。"""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(
            f"Conversation with id {conversation_id} not found",
            code="CONVERSATION_NOT_FOUND",
            http_status=404,
            conversation_id=conversation_id,
        )


class InvalidConversationOperationError(ConversationError):
    """操作违反前置条件，例如移除一个未激活的 provider。"""

    def __init__(self, message: str, **extra):
        super().__init__(message, code="INVALID_CONVERSATION_OPERATION", http_status=409, **extra)
