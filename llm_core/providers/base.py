"""Provider 抽象接口。

上层代码不直接依赖具体厂商的 HTTP API，而是依赖以下三组互相独立的能力协议：

- ChatProvider: generate_chat_completion / stream_chat_completion。
- EmbeddingProvider: generate_embedding。
- ModelListingProvider: list_models。

每个厂商实现一个类（如 OpenAIProvider），只需实现自己支持的能力。
BaseHttpProvider 收拢了各 HTTP 适配器共用的部分：凭据读取、httpx.Client 构造、
状态码检查与错误归类、SSE 行解析、结构化日志。
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol, Union

import httpx

from llm_core.config.settings import settings
from llm_core.domain.exceptions import AuthenticationError, InvalidRequestError, ProviderError
from llm_core.domain.models import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    ChatOptions,
    EmbeddingResponse,
    Model,
    StreamChunk,
)
from llm_core.infrastructure.logging.logger import log_event
from .catalog import ProviderConfig
from .errors import classify_exception, classify_status


class ChatProvider(Protocol):
    """对话能力。

    stream_chat_completion 返回惰性、有限、不可重启的迭代器：
    每次调用都是一次新的后端请求，提前停止迭代会释放底层连接。
    """

    name: str
    default_options: ChatOptions

    def generate_chat_completion(self, request: ChatCompletionRequest) -> ChatCompletionResponse:
        ...

    def stream_chat_completion(self, request: ChatCompletionRequest) -> Iterator[StreamChunk]:
        ...


class ModelListingProvider(Protocol):
    def list_models(self) -> List[Model]:
        ...


class LLMProvider(ChatProvider, ModelListingProvider, Protocol):
    """对话 + 模型列表，注册表中 get_llm_provider 返回的类型。"""


class EmbeddingProvider(Protocol):
    name: str

    def generate_embedding(
        self, content: Union[str, List[str]], model: Optional[str] = None
    ) -> EmbeddingResponse:
        ...


def with_system_message(messages: Iterable[ChatMessage], system_message: Optional[str]) -> List[ChatMessage]:
    """system_message 非空时在最前面插入一条 system 消息。"""

    messages = list(messages)
    if system_message:
        return [ChatMessage.text("system", system_message), *messages]
    return messages


def split_system_text(messages: Iterable[ChatMessage], system_message: Optional[str]) -> tuple:
    """给没有 system 角色的后端用：返回 (合并后的 system 文本, 其余消息)。"""

    parts: List[str] = [system_message] if system_message else []
    rest: List[ChatMessage] = []
    for message in messages:
        if message.role == "system":
            if message.text_content:
                parts.append(message.text_content)
        else:
            rest.append(message)
    return "\n\n".join(parts), rest


class BaseHttpProvider(ABC):
    """基于 httpx 的适配器基类。子类需要实现 _headers()。"""

    def __init__(self, cfg=settings, config: Optional[ProviderConfig] = None, api_key: Optional[str] = None):
        if config is None:
            raise ValueError("ProviderConfig is required")
        self._settings = cfg
        self._config = config
        self.name = config.name
        self._api_key = api_key or getattr(cfg, config.api_key_field, None)
        if not self._api_key:
            # 凭据缺失在构造阶段就失败
            raise AuthenticationError(f"{config.api_key_env} not set", config.name)
        self._base_url = (getattr(cfg, config.base_url_field, None) or config.base_url).rstrip("/")
        self.default_options = ChatOptions(model=config.default_model, max_tokens=config.default_max_tokens)

    # ---- 子类实现 ----

    @abstractmethod
    def _headers(self) -> Dict[str, str]:
        ...

    # ---- 公共辅助 ----

    def _resolve_model(self, options: ChatOptions) -> str:
        return options.model or self.default_options.model or self._config.default_model

    def _resolve_max_tokens(self, options: ChatOptions) -> int:
        return options.max_tokens or self.default_options.max_tokens or self._config.default_max_tokens

    def _client(self, timeout: Optional[float] = None) -> httpx.Client:
        return httpx.Client(
            timeout=timeout or getattr(self._settings, "http_timeout", 60.0),
            trust_env=False,
        )

    def _check_response(self, resp) -> None:
        if resp.status_code < 400:
            return
        # 流式响应需要先 read() 才能访问 text
        resp.read()
        raise classify_status(self.name, resp.status_code, resp.text)

    def _json(self, resp) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            raise InvalidRequestError(f"{self.name} returned invalid JSON: {exc}", self.name) from exc
        if not isinstance(data, dict):
            raise InvalidRequestError(f"{self.name} returned unexpected payload", self.name)
        return data

    def _request(self, method: str, path: str, *, timeout: Optional[float] = None, **kwargs) -> Dict[str, Any]:
        """发送一次非流式请求并返回 JSON；所有失败都已归类为 ProviderError。"""

        try:
            with self._client(timeout) as client:
                resp = client.request(method, f"{self._base_url}{path}", headers=self._headers(), **kwargs)
        except httpx.HTTPError as exc:
            raise classify_exception(self.name, exc) from exc
        self._check_response(resp)
        return self._json(resp)

    def _stream_events(self, path: str, payload: Dict[str, Any], timeout: Optional[float] = None) -> Iterator[Any]:
        """打开 SSE 流并逐条产出解析后的 data 字段。

        `[DONE]` 原样以字符串产出；无法解析的行被跳过。
        httpx.Client 与响应都在 with 块内，生成器被提前关闭时连接随之释放。
        """

        try:
            with self._client(timeout) as client:
                with client.stream(
                    "POST",
                    f"{self._base_url}{path}",
                    json=payload,
                    headers=self._headers(),
                ) as resp:
                    self._check_response(resp)
                    for line in resp.iter_lines():
                        if not line or not line.startswith("data:"):
                            continue
                        data_str = line[5:].strip()
                        if not data_str:
                            continue
                        if data_str == "[DONE]":
                            yield data_str
                            continue
                        try:
                            yield json.loads(data_str)
                        except json.JSONDecodeError:
                            continue
        except httpx.HTTPError as exc:
            raise classify_exception(self.name, exc) from exc

    def _static_models(self) -> List[Model]:
        return [
            Model(id=m.id, name=m.name, description=m.description or m.name)
            for m in self._config.models.values()
        ]

    def _log(self, level: int, message: str, **fields: Any) -> None:
        log_event(level, message, {"provider": self.name}, **fields)

    def _log_completion(self, started: float, model: str, response: ChatCompletionResponse) -> None:
        self._log(
            logging.INFO,
            "Chat completion finished",
            model=model,
            elapsed_ms=int((time.monotonic() - started) * 1000),
            finish_reason=response.finish_reason,
            prompt_tokens=response.usage.prompt_tokens,
            completion_tokens=response.usage.completion_tokens,
            tool_calls=len(response.tool_calls),
        )

    def _log_failure(self, operation: str, exc: ProviderError) -> None:
        self._log(logging.WARNING, f"{operation} failed", error_code=exc.code, error=exc.message)
