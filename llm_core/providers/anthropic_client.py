"""Anthropic Messages API 适配器。

与 OpenAI 风格的主要差异：

- 没有 system 角色：system_message 与请求中的 system 消息合并进顶层 `system` 字段。
- max_tokens 必填。
- 输出是 content block 列表，`tool_use` block 转换为统一的 ToolCall。
- 流式事件按 type 区分（content_block_delta / message_delta / error ...）。
"""

import json
import logging
import time
from contextlib import closing
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from llm_core.config.settings import settings
from llm_core.domain.exceptions import AuthenticationError, InvalidRequestError, ProviderError
from llm_core.domain.models import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    Model,
    StreamChunk,
    Usage,
    extract_output_variables,
)
from llm_core.tools.definitions import ToolCall, ToolDef, make_tool_call
from .base import BaseHttpProvider, split_system_text
from .catalog import ANTHROPIC_CONFIG, ProviderConfig
from .errors import classify_message


class AnthropicProvider(BaseHttpProvider):
    """Anthropic 客户端实现，支持对话、流式与模型列表（不支持向量）。"""

    def __init__(self, cfg=settings, config: ProviderConfig = ANTHROPIC_CONFIG, api_key: Optional[str] = None):
        super().__init__(cfg, config=config, api_key=api_key)
        self._version = getattr(cfg, "anthropic_version", None) or "2023-06-01"

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self._api_key,
            "anthropic-version": self._version,
            "Content-Type": "application/json",
        }

    def generate_chat_completion(self, request: ChatCompletionRequest) -> ChatCompletionResponse:
        model = self._resolve_model(request.options)
        payload = self._build_payload(request, model, stream=False)
        started = time.monotonic()
        try:
            data = self._request("POST", "/messages", json=payload, timeout=request.options.timeout)
        except ProviderError as exc:
            self._log_failure("Chat completion", exc)
            raise
        response = self._parse_response(data, model)
        self._log_completion(started, model, response)
        return response

    def stream_chat_completion(self, request: ChatCompletionRequest) -> Iterator[StreamChunk]:
        model = self._resolve_model(request.options)
        payload = self._build_payload(request, model, stream=True)
        events = self._stream_events("/messages", payload, timeout=request.options.timeout)
        try:
            with closing(events):
                yield from self._parse_stream(events, model)
        except ProviderError as exc:
            self._log_failure("Chat stream", exc)
            raise

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
        for item in data.get("data") or []:
            if not item.get("id"):
                continue
            created = None
            if item.get("created_at"):
                try:
                    created = datetime.fromisoformat(str(item["created_at"]).replace("Z", "+00:00"))
                except ValueError:
                    created = None
            name = item.get("display_name") or item["id"]
            models.append(Model(id=item["id"], name=name, created=created, description=name))
        return models or self._static_models()

    # ---- 辅助方法 ----

    def _build_payload(self, req: ChatCompletionRequest, model: str, stream: bool) -> Dict[str, Any]:
        options = req.options
        system_text, messages = split_system_text(req.messages, options.system_message)
        payload: Dict[str, Any] = {
            "model": model,
            "max_tokens": self._resolve_max_tokens(options),
            "messages": [{"role": m.role, "content": m.text_content} for m in messages],
        }
        if system_text:
            payload["system"] = system_text
        if stream:
            payload["stream"] = True
        if options.temperature is not None:
            payload["temperature"] = options.temperature
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.top_k is not None:
            payload["top_k"] = options.top_k
        if options.tools:
            payload["tools"] = [self._serialize_tool(tool) for tool in options.tools]
        return payload

    @staticmethod
    def _serialize_tool(tool: ToolDef) -> Dict[str, Any]:
        return {
            "name": tool.name,
            "description": tool.description,
            "input_schema": tool.parameters_schema(),
        }

    def _parse_response(self, data: Dict[str, Any], model: str) -> ChatCompletionResponse:
        texts: List[str] = []
        tool_calls: List[ToolCall] = []
        for block in data.get("content") or []:
            kind = block.get("type")
            if kind == "text":
                texts.append(block.get("text") or "")
            elif kind == "tool_use":
                tool_calls.append(make_tool_call(block.get("name"), block.get("input"), block.get("id")))
        text = "".join(texts)
        usage_raw = data.get("usage") or {}
        prompt_tokens = usage_raw.get("input_tokens") or 0
        completion_tokens = usage_raw.get("output_tokens") or 0
        return ChatCompletionResponse(
            model=data.get("model") or model,
            text=text,
            finish_reason=data.get("stop_reason"),
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            tool_calls=tool_calls,
            output_variables=extract_output_variables(text) if text else None,
        )

    def _parse_stream(self, events: Iterator[Any], model: str) -> Iterator[StreamChunk]:
        resolved_model = model
        # content block index -> {"id", "name", "arguments"}
        tool_blocks: Dict[int, Dict[str, Any]] = {}
        for event in events:
            if not isinstance(event, dict):
                continue
            kind = event.get("type")
            if kind == "message_start":
                resolved_model = (event.get("message") or {}).get("model") or resolved_model
            elif kind == "content_block_start":
                block = event.get("content_block") or {}
                if block.get("type") == "tool_use":
                    tool_blocks[event.get("index", 0)] = {
                        "id": block.get("id"),
                        "name": block.get("name") or "",
                        "arguments": "",
                    }
            elif kind == "content_block_delta":
                delta = event.get("delta") or {}
                if delta.get("type") == "text_delta" and delta.get("text"):
                    yield StreamChunk(model=resolved_model, text=delta["text"])
                elif delta.get("type") == "input_json_delta":
                    slot = tool_blocks.setdefault(event.get("index", 0), {"id": None, "name": "", "arguments": ""})
                    slot["arguments"] += delta.get("partial_json") or ""
            elif kind == "message_delta":
                stop_reason = (event.get("delta") or {}).get("stop_reason")
                if stop_reason:
                    yield StreamChunk(
                        model=resolved_model,
                        finish_reason=stop_reason,
                        tool_calls=[
                            make_tool_call(slot["name"], slot["arguments"] or None, slot["id"])
                            for _, slot in sorted(tool_blocks.items())
                        ],
                    )
                    return
            elif kind == "message_stop":
                yield StreamChunk(model=resolved_model, finish_reason="end_turn")
                return
            elif kind == "error":
                error = event.get("error") or {}
                raise classify_message(self.name, f"{error.get('type', '')}: {error.get('message', json.dumps(error))}")
        raise InvalidRequestError(f"{self.name} stream closed before completion", self.name)
