"""Google Gemini (Generative Language API) 适配器。

特点：

- system 文本放进 `systemInstruction`，assistant 角色映射为 `model`。
- generateContent 不是增量接口，stream_chat_completion 通过“一次取回 + 按词切分”
  模拟流式输出，最后补一个带 finish_reason 的终止分片。
- 构造时在后台线程刷新可用模型列表，失败时保留静态目录；刷新永远不会阻塞
  或让构造函数抛异常。
- functionCall 没有 id，本地生成。
"""

import logging
import re
import threading
import time
from typing import Any, Dict, Iterator, List, Optional, Union

from llm_core.config.settings import settings
from llm_core.domain.exceptions import InvalidRequestError, ProviderError
from llm_core.domain.models import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    EmbeddingResponse,
    Model,
    StreamChunk,
    Usage,
    extract_output_variables,
)
from llm_core.tools.definitions import ToolCall, ToolDef, make_tool_call
from .base import BaseHttpProvider, split_system_text
from .catalog import GOOGLE_CONFIG, ModelConfig, ProviderConfig


_WORD_SPLIT = re.compile(r"(\s+)")


class GoogleProvider(BaseHttpProvider):
    """Gemini 客户端实现，支持对话、模拟流式、向量与模型列表。"""

    def __init__(
        self,
        cfg=settings,
        config: ProviderConfig = GOOGLE_CONFIG,
        api_key: Optional[str] = None,
        refresh_models: Optional[bool] = None,
    ):
        super().__init__(cfg, config=config, api_key=api_key)
        self._available_models: Dict[str, ModelConfig] = dict(config.models)
        self._stream_delay = float(getattr(cfg, "stream_emulation_delay", 0.01) or 0.0)
        if refresh_models is None:
            refresh_models = getattr(cfg, "google_refresh_models", True)
        self._refresh_thread: Optional[threading.Thread] = None
        if refresh_models:
            self._refresh_thread = threading.Thread(
                target=self._refresh_models,
                name="google-model-refresh",
                daemon=True,
            )
            self._refresh_thread.start()

    def _headers(self) -> Dict[str, str]:
        return {
            "x-goog-api-key": self._api_key,
            "Content-Type": "application/json",
        }

    # ---- 模型目录 ----

    def _refresh_models(self) -> None:
        """后台拉取模型列表；任何失败都只记录日志。"""

        try:
            data = self._request("GET", "/models", params={"pageSize": 1000})
        except ProviderError as exc:
            self._log(logging.WARNING, "Failed to refresh Google models, using defaults", error=exc.message)
            return
        fetched: Dict[str, ModelConfig] = {}
        for item in data.get("models") or []:
            methods = item.get("supportedGenerationMethods") or []
            if "generateContent" not in methods:
                continue
            model_id = str(item.get("name") or "").removeprefix("models/")
            if not model_id:
                continue
            fetched[model_id] = ModelConfig(
                id=model_id,
                name=item.get("displayName") or model_id,
                max_tokens=item.get("outputTokenLimit") or self._config.default_max_tokens,
                description=item.get("description"),
            )
        if fetched:
            # 整体替换，读者要么看到旧目录要么看到新目录；静态目录中的默认模型始终保留
            self._available_models = {**self._config.models, **fetched}
            self._log(logging.INFO, "Refreshed Google models", count=len(fetched))

    def list_models(self) -> List[Model]:
        return [
            Model(id=model_id, name=cfg.name, description=cfg.description or cfg.name)
            for model_id, cfg in self._available_models.items()
        ]

    def _ensure_supported(self, model: str) -> None:
        if model not in self._available_models:
            raise InvalidRequestError(f"Model {model} not supported by Google", self.name)

    # ---- 对话 ----

    def generate_chat_completion(self, request: ChatCompletionRequest) -> ChatCompletionResponse:
        model = self._resolve_model(request.options)
        started = time.monotonic()
        try:
            self._ensure_supported(model)
            payload = self._build_payload(request)
            data = self._request(
                "POST",
                f"/models/{model}:generateContent",
                json=payload,
                timeout=request.options.timeout,
            )
        except ProviderError as exc:
            self._log_failure("Chat completion", exc)
            raise
        response = self._parse_response(data, model)
        self._log_completion(started, model, response)
        return response

    def stream_chat_completion(self, request: ChatCompletionRequest) -> Iterator[StreamChunk]:
        """模拟流式：取回完整响应后按空白切分成词逐个产出。"""

        response = self.generate_chat_completion(request)
        pieces = [piece for piece in _WORD_SPLIT.split(response.text) if piece]
        for index, piece in enumerate(pieces):
            if index and self._stream_delay:
                time.sleep(self._stream_delay)
            yield StreamChunk(model=response.model, text=piece)
        yield StreamChunk(
            model=response.model,
            finish_reason=response.finish_reason or "stop",
            tool_calls=list(response.tool_calls),
        )

    # ---- 向量 ----

    def generate_embedding(self, content: Union[str, List[str]], model: Optional[str] = None) -> EmbeddingResponse:
        model_id = model or self._config.default_embedding_model
        texts = [content] if isinstance(content, str) else list(content)
        payload = {
            "requests": [
                {"model": f"models/{model_id}", "content": {"parts": [{"text": text}]}}
                for text in texts
            ]
        }
        try:
            data = self._request("POST", f"/models/{model_id}:batchEmbedContents", json=payload)
        except ProviderError as exc:
            self._log_failure("Embedding", exc)
            raise
        embeddings = [item.get("values") or [] for item in data.get("embeddings") or []]
        if not embeddings:
            raise InvalidRequestError("No embedding generated", self.name)
        return EmbeddingResponse(embedding=embeddings[0], embeddings=embeddings)

    # ---- 辅助方法 ----

    def _build_payload(self, req: ChatCompletionRequest) -> Dict[str, Any]:
        options = req.options
        system_text, messages = split_system_text(req.messages, options.system_message)
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.text_content}],
            }
            for m in messages
            if m.text_content.strip()
        ]
        generation_config: Dict[str, Any] = {"maxOutputTokens": self._resolve_max_tokens(options)}
        if options.temperature is not None:
            generation_config["temperature"] = options.temperature
        if options.top_p is not None:
            generation_config["topP"] = options.top_p
        if options.top_k is not None:
            generation_config["topK"] = options.top_k
        payload: Dict[str, Any] = {"contents": contents, "generationConfig": generation_config}
        if system_text:
            payload["systemInstruction"] = {"parts": [{"text": system_text}]}
        if options.tools:
            payload["tools"] = [{"functionDeclarations": [self._serialize_tool(t) for t in options.tools]}]
        return payload

    @staticmethod
    def _serialize_tool(tool: ToolDef) -> Dict[str, Any]:
        parameters = tool.parameters_schema()
        # Gemini 拒绝没有任何属性的 object schema
        if not parameters["properties"]:
            parameters["properties"] = {"input": {"type": "string", "description": "Input parameter"}}
            parameters["required"] = ["input"]
        return {"name": tool.name, "description": tool.description, "parameters": parameters}

    def _parse_response(self, data: Dict[str, Any], model: str) -> ChatCompletionResponse:
        candidates = data.get("candidates") or []
        first = candidates[0] if candidates else {}
        texts: List[str] = []
        tool_calls: List[ToolCall] = []
        for part in (first.get("content") or {}).get("parts") or []:
            if "text" in part:
                texts.append(part.get("text") or "")
            elif part.get("functionCall"):
                call = part["functionCall"]
                tool_calls.append(make_tool_call(call.get("name"), call.get("args") or {}, call.get("id")))
        text = "".join(texts)
        usage_raw = data.get("usageMetadata") or {}
        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        return ChatCompletionResponse(
            model=data.get("modelVersion") or model,
            text=text,
            finish_reason=first.get("finishReason") or block_reason,
            usage=Usage(
                prompt_tokens=usage_raw.get("promptTokenCount") or 0,
                completion_tokens=usage_raw.get("candidatesTokenCount") or 0,
                total_tokens=usage_raw.get("totalTokenCount") or 0,
            ),
            tool_calls=tool_calls,
            output_variables=extract_output_variables(text) if text else None,
            refusal=block_reason,
        )
