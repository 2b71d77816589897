import logging
import threading
from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from llm_core.domain import conversation as actions
from llm_core.domain.conversation import Conversation, ConversationAction, ConversationMessage
from llm_core.domain.exceptions import ConversationNotFoundError
from llm_core.infrastructure.logging.logger import log_event
from .reducer import conversation_reducer
from .serialization import export_conversation


class InMemoryConversationStore:
    """基于 reducer 的内存会话存储。

    - 所有写操作都经由 dispatch：在锁内执行 reducer 并整体替换 mapping，
      因此任何读者看到的快照顺序与 action 的派发顺序一致。
    - 读操作返回不可变快照（MappingProxyType / frozen dataclass）。
    - reducer 抛异常时 mapping 不会被替换。
    """

    def __init__(self, initial: Optional[Mapping[str, Conversation]] = None):
        self._state: Mapping[str, Conversation] = dict(initial or {})
        self._lock = threading.Lock()

    # ---- 核心 ----

    def dispatch(self, action: ConversationAction) -> Mapping[str, Conversation]:
        _, new_state = self._apply(action)
        return new_state

    def _apply(self, action: ConversationAction) -> Tuple[Mapping[str, Conversation], Mapping[str, Conversation]]:
        """唯一的写入路径：在锁内执行 reducer，返回 (旧快照, 新快照)。"""

        with self._lock:
            old_state = self._state
            new_state = conversation_reducer(old_state, action)
            self._state = new_state
        log_event(
            logging.DEBUG,
            "Conversation action applied",
            {"action": getattr(action.type, "value", action.type)},
            conversations=len(new_state),
        )
        return MappingProxyType(old_state), MappingProxyType(new_state)

    def snapshot(self) -> Mapping[str, Conversation]:
        return MappingProxyType(self._state)

    # ---- 便捷方法 ----

    def create_conversation(
        self,
        metadata: Optional[Mapping[str, Any]] = None,
        provider_ids: Iterable[str] = (),
        initial_message: Optional[str] = None,
    ) -> Conversation:
        before, after = self._apply(actions.create_conversation(metadata, provider_ids, initial_message))
        (new_id,) = set(after) - set(before)
        created = after[new_id]
        log_event(logging.DEBUG, "Created conversation", {"conversation_id": new_id})
        return created

    def get_conversation(self, conversation_id: str) -> Conversation:
        conversation = self._state.get(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    def list_conversations(self) -> List[Conversation]:
        return sorted(self._state.values(), key=lambda c: c.metadata.created_at)

    def get_history(self, conversation_id: str) -> List[ConversationMessage]:
        return list(self.get_conversation(conversation_id).messages)

    def update_conversation(self, conversation_id: str, updates: Mapping[str, Any]) -> Conversation:
        return self.dispatch(actions.update_conversation(conversation_id, updates))[conversation_id]

    def delete_conversation(self, conversation_id: str) -> None:
        self.dispatch(actions.delete_conversation(conversation_id))

    def add_message(self, conversation_id: str, message: Mapping[str, Any]) -> ConversationMessage:
        state = self.dispatch(actions.add_message(conversation_id, message))
        return state[conversation_id].messages[-1]

    def set_metadata(self, conversation_id: str, metadata: Mapping[str, Any]) -> Conversation:
        return self.dispatch(actions.set_metadata(conversation_id, metadata))[conversation_id]

    def add_provider(self, conversation_id: str, provider_id: str) -> Conversation:
        return self.dispatch(actions.add_provider(conversation_id, provider_id))[conversation_id]

    def remove_provider(self, conversation_id: str, provider_id: str) -> Conversation:
        return self.dispatch(actions.remove_provider(conversation_id, provider_id))[conversation_id]

    def clear_history(self, conversation_id: str) -> Conversation:
        return self.dispatch(actions.clear_history(conversation_id))[conversation_id]

    def export_conversation(self, conversation_id: str) -> str:
        return export_conversation(self.get_conversation(conversation_id))

    def import_conversation(self, serialized: str) -> Conversation:
        before, after = self._apply(actions.import_conversation(serialized))
        (imported,) = [conv for cid, conv in after.items() if before.get(cid) is not conv]
        log_event(logging.DEBUG, "Imported conversation", {"conversation_id": imported.id})
        return imported
