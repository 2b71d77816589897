"""LLM Core 顶层包。

提供两部分能力：

- Provider 抽象层：以统一的请求/响应模型访问 OpenAI、Anthropic、Google 等
  互不兼容的后端，并把各家错误归类为统一的异常。
- 会话状态管理：基于 reducer 的不可变多轮对话存储，与具体后端无关。
"""

from llm_core.api.service import ConversationChat
from llm_core.conversation import InMemoryConversationStore, conversation_reducer
from llm_core.providers import ProviderRegistry, build_default_registry

__all__ = [
    "ConversationChat",
    "InMemoryConversationStore",
    "ProviderRegistry",
    "build_default_registry",
    "conversation_reducer",
]
