"""把后端原生错误归类为封闭的三种 ProviderError。

优先按 HTTP 状态码归类，其次按错误信息中的关键字；都不命中时一律视为
InvalidRequestError。网络错误与超时同样归为 InvalidRequestError。
"""

from typing import Optional

import httpx

from llm_core.domain.exceptions import (
    AuthenticationError,
    InvalidRequestError,
    ProviderError,
    RateLimitError,
)


_AUTH_MARKERS = ("api key", "api_key", "unauthorized", "authentication", "permission_denied")
_RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "quota", "resource_exhausted", "too many requests", "overloaded")


def classify_message(provider: str, message: str, status: Optional[int] = None) -> ProviderError:
    lowered = (message or "").lower()
    extra = {"status": status} if status is not None else {}
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return AuthenticationError(f"Authentication failed with {provider}: {message}", provider, **extra)
    if any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
        return RateLimitError(f"Rate limit exceeded for {provider}: {message}", provider, **extra)
    return InvalidRequestError(f"{provider} request failed: {message}", provider, **extra)


def classify_status(provider: str, status: int, detail: str = "") -> ProviderError:
    if status in (401, 403):
        return AuthenticationError(f"Authentication failed with {provider}", provider, status=status, detail=detail)
    if status == 429:
        return RateLimitError(f"Rate limit exceeded for {provider}", provider, status=status, detail=detail)
    return classify_message(provider, f"HTTP {status}: {detail}".strip(), status=status)


def classify_exception(provider: str, exc: BaseException) -> ProviderError:
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(provider, exc.response.status_code, exc.response.text)
    if isinstance(exc, httpx.TimeoutException):
        return InvalidRequestError(f"{provider} request deadline exceeded: {exc}", provider)
    if isinstance(exc, httpx.RequestError):
        return InvalidRequestError(f"{provider} network error: {exc}", provider)
    return classify_message(provider, str(exc))
