"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层统一转换为 ``{"success": false, "error": {...}}`` 响应，
或在流式阶段转换为终止帧。
"""

from enum import Enum
from typing import Any, Dict, Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "NOT_FOUND"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 field_errors、subject 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class InvalidRequestError(BusinessError):
    """请求体不是合法 JSON。"""

    def __init__(self, message: str = "Request body is not valid JSON"):
        super().__init__(code="INVALID_JSON", message=message, http_status=400)


class ValidationError(BusinessError):
    """参数校验失败。"""

    def __init__(
        self,
        message: str = "Request does not match the expected schema",
        field_errors: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            http_status=400,
            field_errors=field_errors or {},
        )


class InvalidIdFormatError(BusinessError):
    """文档 ID 不满足存储层约束（含 '/'、保留名等）。"""

    def __init__(self, doc_id: str):
        super().__init__(
            code="INVALID_ID_FORMAT",
            message="Identifier has an invalid format",
            http_status=400,
            doc_id=doc_id,
        )


class NotFoundError(BusinessError):
    """对话或空间不存在。"""

    def __init__(self, message: str = "The requested subject was not found", **extra):
        super().__init__(code="NOT_FOUND", message=message, http_status=404, **extra)


class DataIntegrityError(BusinessError):
    """文档存在但结构损坏，无法用于构建上下文。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="DATA_INTEGRITY", message=message, http_status=500, **extra)


class StoreError(BusinessError):
    """存储读写失败。"""


class ProviderErrorKind(str, Enum):
    PERMISSION_DENIED = "PERMISSION_DENIED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
    UNCONFIGURED = "UNCONFIGURED"
    UNKNOWN = "UNKNOWN"


class ProviderError(BusinessError):
    """经过分类的上游 LLM 错误，message 可直接展示给用户。"""

    def __init__(self, kind: ProviderErrorKind, message: str, http_status: int = 502, **extra):
        self.kind = kind
        super().__init__(code=f"PROVIDER_{kind.value}", message=message, http_status=http_status, **extra)


class ProviderUnconfiguredError(ProviderError):
    """Provider 缺少必要配置（API Key 等），在发起请求前检测。"""

    def __init__(self, message: str):
        super().__init__(ProviderErrorKind.UNCONFIGURED, message, http_status=503)
        self.code = "PROVIDER_UNCONFIGURED"


class TransportFailure(BusinessError):
    """客户端读取流失败或响应体缺失，仅在客户端出现。"""

    def __init__(self, message: str = "The response stream could not be read"):
        super().__init__(code="TRANSPORT_FAILURE", message=message, http_status=0)
