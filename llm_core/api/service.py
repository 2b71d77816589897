"""对外服务模块。

把 Provider 调用与会话 store 串起来：

1. 派发 ADD_MESSAGE 记录用户消息；
2. 用会话历史构造 ChatCompletionRequest 并调用 Provider；
3. 派发 ADD_MESSAGE 记录助手回复。

Provider 调用失败时用户消息已经写入，助手消息不会写入；是否重试由调用方决定。
"""

import logging
import time
from typing import Iterator, List, Optional
from uuid import uuid4

from llm_core.domain.conversation import ConversationMessage, ConversationStore
from llm_core.domain.models import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    ChatOptions,
    StreamChunk,
    TextContent,
)
from llm_core.infrastructure.logging.logger import log_event
from llm_core.providers.registry import ProviderRegistry


def history_to_messages(history: List[ConversationMessage]) -> List[ChatMessage]:
    return [
        ChatMessage(
            role=m.role,
            content=m.content,
            provider_id=m.provider_id or None,
            options=dict(m.options),
            timestamp=m.timestamp,
        )
        for m in history
    ]


class ConversationChat:
    """会话级对话入口。"""

    def __init__(self, registry: ProviderRegistry, store: ConversationStore):
        self._registry = registry
        self._store = store

    def send(
        self,
        conversation_id: str,
        provider_name: str,
        user_input: str,
        options: Optional[ChatOptions] = None,
    ) -> ChatCompletionResponse:
        """发送一条用户消息并返回完整回复；两条消息都会写入会话。"""

        provider = self._registry.get_llm_provider(provider_name)
        request = self._prepare(conversation_id, provider_name, user_input, options)
        log_ctx = {"trace_id": f"tr-{uuid4().hex}", "conversation_id": conversation_id}
        started = time.time()
        response = provider.generate_chat_completion(request)
        self._record_assistant(conversation_id, provider_name, response.text, response.model)
        log_event(
            logging.INFO,
            "Conversation turn completed",
            log_ctx,
            provider=provider_name,
            model=response.model,
            duration_ms=int((time.time() - started) * 1000),
        )
        return response

    def stream(
        self,
        conversation_id: str,
        provider_name: str,
        user_input: str,
        options: Optional[ChatOptions] = None,
    ) -> Iterator[StreamChunk]:
        """流式版本：收到终止分片后把拼接好的回复写入会话。

        调用方提前停止迭代时不会写入助手消息。
        """

        provider = self._registry.get_llm_provider(provider_name)
        request = self._prepare(conversation_id, provider_name, user_input, options)
        parts: List[str] = []
        for chunk in provider.stream_chat_completion(request):
            if chunk.text:
                parts.append(chunk.text)
            yield chunk
            if chunk.finish_reason is not None:
                self._record_assistant(conversation_id, provider_name, "".join(parts), chunk.model)
                return

    def _prepare(
        self,
        conversation_id: str,
        provider_name: str,
        user_input: str,
        options: Optional[ChatOptions],
    ) -> ChatCompletionRequest:
        self._store.add_message(
            conversation_id,
            {"role": "user", "content": TextContent(text=user_input), "provider_id": provider_name},
        )
        history = self._store.get_history(conversation_id)
        return ChatCompletionRequest(messages=history_to_messages(history), options=options or ChatOptions())

    def _record_assistant(self, conversation_id: str, provider_name: str, text: str, model: str) -> None:
        self._store.add_message(
            conversation_id,
            {
                "role": "assistant",
                "content": TextContent(text=text),
                "provider_id": provider_name,
                "options": {"model": model},
            },
        )
