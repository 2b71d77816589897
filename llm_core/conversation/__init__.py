"""会话状态管理。

- reducer: 纯函数状态迁移，唯一允许产生新 Conversation 的路径。
- store: 串行化 dispatch 的内存存储，对外只暴露快照。
- serialization: JSON 导入/导出。
"""

from .reducer import conversation_reducer
from .serialization import export_conversation, parse_conversation
from .store import InMemoryConversationStore

__all__ = [
    "conversation_reducer",
    "export_conversation",
    "parse_conversation",
    "InMemoryConversationStore",
]
