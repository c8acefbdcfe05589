"""上游错误分类。

根据 HTTP 状态码与响应体中的 status/message 子串，把 Provider 的失败归为：
PERMISSION_DENIED / QUOTA_EXCEEDED / MODEL_UNAVAILABLE / UNKNOWN。
原始响应只写日志，对外只暴露固定的用户可读信息。
"""

import logging
from typing import Any, Dict, Optional

import httpx

from resume_core.domain.exceptions import ProviderError, ProviderErrorKind
from resume_core.infrastructure.logging.logger import log_event

PROVIDER_MESSAGES = {
    ProviderErrorKind.PERMISSION_DENIED: (
        "Access to the language model API was denied. Check the service credentials and permissions."
    ),
    ProviderErrorKind.QUOTA_EXCEEDED: (
        "The language model API rate limit was reached. Please wait a moment and try again."
    ),
    ProviderErrorKind.MODEL_UNAVAILABLE: (
        "The language model API was not found. Check that the API is enabled and the model name is correct."
    ),
    ProviderErrorKind.UNKNOWN: "The language model API returned an error.",
}

_PERMISSION_MARKERS = ("PERMISSION_DENIED", "UNAUTHENTICATED", "INVALID_API_KEY", "API_KEY_INVALID")
_QUOTA_MARKERS = ("RESOURCE_EXHAUSTED", "RATE_LIMIT", "QUOTA")
_NOT_FOUND_MARKERS = ("NOT_FOUND", "MODEL_NOT_FOUND")


def classify_kind(status_code: Optional[int], text: str) -> ProviderErrorKind:
    upper = (text or "").upper()
    if any(m in upper for m in _PERMISSION_MARKERS) or status_code in (401, 403):
        return ProviderErrorKind.PERMISSION_DENIED
    if any(m in upper for m in _QUOTA_MARKERS) or status_code == 429:
        return ProviderErrorKind.QUOTA_EXCEEDED
    if any(m in upper for m in _NOT_FOUND_MARKERS) or status_code == 404:
        return ProviderErrorKind.MODEL_UNAVAILABLE
    return ProviderErrorKind.UNKNOWN


def classify_provider_error(
    provider: str,
    status_code: Optional[int],
    text: str,
    log_ctx: Optional[Dict[str, Any]] = None,
) -> ProviderError:
    kind = classify_kind(status_code, text)
    log_event(
        logging.WARNING,
        "Provider call failed",
        log_ctx or {},
        provider=provider,
        status_code=status_code,
        kind=kind.value,
        body=(text or "")[:500],
    )
    return ProviderError(kind, PROVIDER_MESSAGES[kind], provider=provider)


def classify_exception(provider: str, exc: Exception, log_ctx: Optional[Dict[str, Any]] = None) -> ProviderError:
    """把非 HTTP 状态类异常（网络错误等）转换为 ProviderError。"""

    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_provider_error(provider, exc.response.status_code, exc.response.text, log_ctx)
    if isinstance(exc, httpx.RequestError):
        # 网络错误只按类型名记录，不参与关键字匹配
        ctx = dict(log_ctx or {})
        ctx["network_error"] = type(exc).__name__
        return classify_provider_error(provider, None, "", ctx)
    return classify_provider_error(provider, None, str(exc) or type(exc).__name__, log_ctx)
