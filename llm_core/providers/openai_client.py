"""OpenAI 风格 Provider 适配器。

本模块负责：

1. 接收统一的 ChatCompletionRequest。
2. 将其转换为 OpenAI chat/completions 请求格式（system 消息作为首条消息注入）。
3. 调用 HTTP 接口，把状态码/网络异常归类为统一的 ProviderError。
4. 将响应 JSON 解析为 ChatCompletionResponse / StreamChunk（含工具调用）。

Kimi (Moonshot) 与 GLM (BigModel) 的接口与 OpenAI 兼容，
复用本类，只是传入不同的 ProviderConfig。
"""

import logging
import time
from contextlib import closing
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Union

from llm_core.config.settings import settings
from llm_core.domain.exceptions import AuthenticationError, InvalidRequestError, ProviderError
from llm_core.domain.models import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    EmbeddingResponse,
    Model,
    StreamChunk,
    Usage,
    extract_output_variables,
)
from llm_core.tools.definitions import ToolCall, ToolDef, make_tool_call
from .base import BaseHttpProvider, with_system_message
from .catalog import OPENAI_CONFIG, ProviderConfig


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _dicts(value: Any) -> List[Dict[str, Any]]:
    return [item for item in value if isinstance(item, dict)] if isinstance(value, list) else []


def _first_dict(value: Any) -> Dict[str, Any]:
    items = _dicts(value)
    return items[0] if items else {}


class OpenAIProvider(BaseHttpProvider):
    """OpenAI 兼容接口的客户端实现，支持对话、流式、向量与模型列表。"""

    def __init__(self, cfg=settings, config: ProviderConfig = OPENAI_CONFIG, api_key: Optional[str] = None):
        super().__init__(cfg, config=config, api_key=api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    # ---- 非流式 ----

    def generate_chat_completion(self, request: ChatCompletionRequest) -> ChatCompletionResponse:
        model = self._resolve_model(request.options)
        payload = self._build_payload(request, model, stream=False)
        started = time.monotonic()
        try:
            data = self._request("POST", "/chat/completions", json=payload, timeout=request.options.timeout)
        except ProviderError as exc:
            self._log_failure("Chat completion", exc)
            raise
        response = self._parse_response(data, model)
        self._log_completion(started, model, response)
        return response

    # ---- 流式 ----

    def stream_chat_completion(self, request: ChatCompletionRequest) -> Iterator[StreamChunk]:
        """逐步 yield StreamChunk，最后一个分片携带 finish_reason 与累积的工具调用。"""

        model = self._resolve_model(request.options)
        payload = self._build_payload(request, model, stream=True)
        events = self._stream_events("/chat/completions", payload, timeout=request.options.timeout)
        try:
            with closing(events):
                yield from self._parse_stream(events, model)
        except ProviderError as exc:
            self._log_failure("Chat stream", exc)
            raise

    def _parse_stream(self, events: Iterator[Any], model: str) -> Iterator[StreamChunk]:
        # index -> {"id", "name", "arguments"}，工具调用的参数会被拆成多段下发
        pending_calls: Dict[int, Dict[str, Any]] = {}
        resolved_model = model
        for event in events:
            if event == "[DONE]":
                # 部分兼容后端只发 [DONE] 不给 finish_reason
                yield StreamChunk(
                    model=resolved_model,
                    finish_reason="stop",
                    tool_calls=self._collect_calls(pending_calls),
                )
                return
            # 心跳等非 object 的 data 行直接跳过
            if not isinstance(event, dict):
                continue
            resolved_model = event.get("model") or resolved_model
            choice = _first_dict(event.get("choices"))
            if not choice:
                continue
            delta = _as_dict(choice.get("delta"))
            for call in _dicts(delta.get("tool_calls")):
                slot = pending_calls.setdefault(call.get("index", 0), {"id": None, "name": "", "arguments": ""})
                func = _as_dict(call.get("function"))
                slot["id"] = call.get("id") or slot["id"]
                slot["name"] += func.get("name") or ""
                slot["arguments"] += func.get("arguments") or ""
            text = delta.get("content") or None
            finish_reason = choice.get("finish_reason")
            if finish_reason:
                yield StreamChunk(
                    model=resolved_model,
                    text=text,
                    finish_reason=finish_reason,
                    tool_calls=self._collect_calls(pending_calls),
                )
                return
            if text is not None:
                yield StreamChunk(model=resolved_model, text=text)
        raise InvalidRequestError(f"{self.name} stream closed before completion", self.name)

    # ---- 向量 ----

    def generate_embedding(self, content: Union[str, List[str]], model: Optional[str] = None) -> EmbeddingResponse:
        model_id = model or self._config.default_embedding_model
        if not model_id:
            raise InvalidRequestError(f"{self.name} does not provide a default embedding model", self.name)
        try:
            data = self._request("POST", "/embeddings", json={"model": model_id, "input": content})
        except ProviderError as exc:
            self._log_failure("Embedding", exc)
            raise
        items = _dicts(data.get("data"))
        if not items:
            raise InvalidRequestError("No embedding generated", self.name)
        items = sorted(items, key=lambda item: item.get("index", 0))
        embeddings = [item.get("embedding") or [] for item in items]
        return EmbeddingResponse(embedding=embeddings[0], embeddings=embeddings)

    # ---- 模型列表 ----

    def list_models(self) -> List[Model]:
        """拉取 /models；除凭据错误外失败时回退到静态目录。"""

        try:
            data = self._request("GET", "/models")
        except AuthenticationError:
            raise
        except ProviderError as exc:
            self._log(logging.WARNING, "Failed to list models, using defaults", error=exc.message)
            return self._static_models()
        models: List[Model] = []
        for item in _dicts(data.get("data")):
            model_id = item.get("id")
            if not model_id:
                continue
            created = None
            if isinstance(item.get("created"), (int, float)):
                created = datetime.fromtimestamp(item["created"], tz=timezone.utc)
            description = f"{model_id} - {item.get('owned_by', 'unknown')}"
            if created:
                description += f" - created at {created.isoformat()}"
            models.append(Model(id=model_id, name=model_id, created=created, description=description))
        return models or self._static_models()

    # ---- 辅助方法 ----

    def _build_payload(self, req: ChatCompletionRequest, model: str, stream: bool) -> Dict[str, Any]:
        options = req.options
        messages = with_system_message(req.messages, options.system_message)
        payload: Dict[str, Any] = {
            "model": model,
            "messages": [self._message_to_payload(m) for m in messages],
            "max_tokens": self._resolve_max_tokens(options),
            "stream": stream,
        }
        if options.temperature is not None:
            payload["temperature"] = options.temperature
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.tools:
            payload["tools"] = [self._serialize_tool(tool) for tool in options.tools]
        return payload

    @staticmethod
    def _message_to_payload(message: ChatMessage) -> Dict[str, Any]:
        return {"role": message.role, "content": message.text_content}

    @staticmethod
    def _serialize_tool(tool: ToolDef) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters_schema(),
            },
        }

    def _parse_response(self, data: Dict[str, Any], model: str) -> ChatCompletionResponse:
        first = _first_dict(data.get("choices"))
        message = _as_dict(first.get("message"))
        text = message.get("content") or ""
        if not isinstance(text, str):
            text = ""
        usage_raw = _as_dict(data.get("usage"))
        return ChatCompletionResponse(
            model=data.get("model") or model,
            text=text,
            finish_reason=first.get("finish_reason"),
            usage=Usage(
                prompt_tokens=usage_raw.get("prompt_tokens") or 0,
                completion_tokens=usage_raw.get("completion_tokens") or 0,
                total_tokens=usage_raw.get("total_tokens") or 0,
            ),
            tool_calls=self._parse_tool_calls(message),
            output_variables=extract_output_variables(text) if text else None,
            refusal=message.get("refusal"),
        )

    @staticmethod
    def _parse_tool_calls(message: Dict[str, Any]) -> List[ToolCall]:
        calls: List[ToolCall] = []
        for call in _dicts(message.get("tool_calls")):
            func = _as_dict(call.get("function"))
            calls.append(make_tool_call(func.get("name") or call.get("name"), func.get("arguments"), call.get("id")))
        # 部分兼容后端仍会返回旧版 function_call 字段
        function_call = _as_dict(message.get("function_call"))
        if function_call:
            calls.append(
                make_tool_call(function_call.get("name"), function_call.get("arguments"), function_call.get("id"))
            )
        return calls

    @staticmethod
    def _collect_calls(pending: Dict[int, Dict[str, Any]]) -> List[ToolCall]:
        return [
            make_tool_call(slot["name"], slot["arguments"] or None, slot["id"])
            for _, slot in sorted(pending.items())
        ]
