"""会话聚合与 action 定义。

Conversation 及其内部结构全部是不可变的（frozen dataclass / tuple / frozenset），
新状态只能由 reducer 计算得到；store 对外返回的永远是快照。
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Tuple

from .models import MessageContent, Role


EMPTY_MAPPING: Mapping[str, Any] = MappingProxyType({})


@dataclass(frozen=True)
class ConversationMessage:
    id: str
    role: Role
    content: MessageContent
    timestamp: datetime
    provider_id: str
    options: Mapping[str, Any] = field(default_factory=lambda: EMPTY_MAPPING)


@dataclass(frozen=True)
class ConversationMetadata:
    """会话元数据。extra 保存调用方自定义的扩展字段。"""

    created_at: datetime
    updated_at: datetime
    title: str = ""
    description: str = ""
    extra: Mapping[str, Any] = field(default_factory=lambda: EMPTY_MAPPING)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        data.update(
            created_at=self.created_at,
            updated_at=self.updated_at,
            title=self.title,
            description=self.description,
        )
        return data


@dataclass(frozen=True)
class Conversation:
    id: str
    metadata: ConversationMetadata
    messages: Tuple[ConversationMessage, ...] = ()
    active_providers: FrozenSet[str] = frozenset()


class ActionType(str, Enum):
    CREATE_CONVERSATION = "CREATE_CONVERSATION"
    UPDATE_CONVERSATION = "UPDATE_CONVERSATION"
    DELETE_CONVERSATION = "DELETE_CONVERSATION"
    ADD_MESSAGE = "ADD_MESSAGE"
    SET_METADATA = "SET_METADATA"
    ADD_PROVIDER = "ADD_PROVIDER"
    REMOVE_PROVIDER = "REMOVE_PROVIDER"
    CLEAR_HISTORY = "CLEAR_HISTORY"
    IMPORT_CONVERSATION = "IMPORT_CONVERSATION"


@dataclass(frozen=True)
class ConversationAction:
    """一次状态变更请求。payload 的结构由 type 决定，见下方构造函数。"""

    type: ActionType
    payload: Any = None


def create_conversation(
    metadata: Optional[Mapping[str, Any]] = None,
    provider_ids: Iterable[str] = (),
    initial_message: Optional[str] = None,
) -> ConversationAction:
    return ConversationAction(
        ActionType.CREATE_CONVERSATION,
        {
            "metadata": dict(metadata or {}),
            "provider_ids": list(provider_ids),
            "initial_message": initial_message,
        },
    )


def update_conversation(conversation_id: str, updates: Mapping[str, Any]) -> ConversationAction:
    return ConversationAction(ActionType.UPDATE_CONVERSATION, {"id": conversation_id, "updates": dict(updates)})


def delete_conversation(conversation_id: str) -> ConversationAction:
    return ConversationAction(ActionType.DELETE_CONVERSATION, conversation_id)


def add_message(conversation_id: str, message: Mapping[str, Any]) -> ConversationAction:
    """message 需要 role / content / provider_id，可选 options；id 与时间戳由 reducer 分配。"""

    return ConversationAction(ActionType.ADD_MESSAGE, {"id": conversation_id, "message": dict(message)})


def set_metadata(conversation_id: str, metadata: Mapping[str, Any]) -> ConversationAction:
    return ConversationAction(ActionType.SET_METADATA, {"id": conversation_id, "metadata": dict(metadata)})


def add_provider(conversation_id: str, provider_id: str) -> ConversationAction:
    return ConversationAction(ActionType.ADD_PROVIDER, {"id": conversation_id, "provider_id": provider_id})


def remove_provider(conversation_id: str, provider_id: str) -> ConversationAction:
    return ConversationAction(ActionType.REMOVE_PROVIDER, {"id": conversation_id, "provider_id": provider_id})


def clear_history(conversation_id: str) -> ConversationAction:
    return ConversationAction(ActionType.CLEAR_HISTORY, conversation_id)


def import_conversation(serialized: str) -> ConversationAction:
    return ConversationAction(ActionType.IMPORT_CONVERSATION, serialized)


class ConversationStore(Protocol):
    def dispatch(self, action: ConversationAction) -> Mapping[str, Conversation]:
        ...

    def create_conversation(
        self,
        metadata: Optional[Mapping[str, Any]] = None,
        provider_ids: Iterable[str] = (),
        initial_message: Optional[str] = None,
    ) -> Conversation:
        ...

    def get_conversation(self, conversation_id: str) -> Conversation:
        ...

    def list_conversations(self) -> List[Conversation]:
        ...

    def get_history(self, conversation_id: str) -> List[ConversationMessage]:
        ...

    def add_message(self, conversation_id: str, message: Mapping[str, Any]) -> ConversationMessage:
        ...

    def delete_conversation(self, conversation_id: str) -> None:
        ...
