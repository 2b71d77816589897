"""会话状态 reducer。

`conversation_reducer(state, action)` 是纯函数：

- 不修改传入的 state，也不修改其中任何 Conversation；
- 返回一个新的 dict，未改动的会话与旧 state 共享同一个对象（结构共享）；
- 前置条件（会话存在、provider 已激活等）在计算新状态之前检查，失败时直接抛异常，
  旧 state 保持原样。

每种 ActionType 对应一个 `_handle_*` 函数，由 `_HANDLERS` 表分发。
"""

from dataclasses import replace
from datetime import datetime
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Iterable, Mapping, Tuple
from uuid import uuid4

from pydantic import ValidationError

from llm_core.domain.conversation import (
    ActionType,
    Conversation,
    ConversationAction,
    ConversationMessage,
    ConversationMetadata,
)
from llm_core.domain.exceptions import (
    ConversationError,
    ConversationNotFoundError,
    InvalidConversationOperationError,
)
from llm_core.domain.models import TextContent, coerce_content, utcnow
from .serialization import coerce_timestamp, parse_conversation


State = Mapping[str, Conversation]

_METADATA_FIELDS = ("created_at", "updated_at", "title", "description")
_ROLES = ("system", "user", "assistant")


def _require(state: State, conversation_id: str) -> Conversation:
    conversation = state.get(conversation_id)
    if conversation is None:
        raise ConversationNotFoundError(conversation_id)
    return conversation


def _with(state: State, conversation: Conversation) -> Dict[str, Conversation]:
    new_state = dict(state)
    new_state[conversation.id] = conversation
    return new_state


def _touch(metadata: ConversationMetadata, now: datetime) -> ConversationMetadata:
    # updated_at 永远不早于 created_at
    return replace(metadata, updated_at=max(now, metadata.created_at))


def _merge_metadata(metadata: ConversationMetadata, updates: Mapping[str, Any]) -> ConversationMetadata:
    known = {k: updates[k] for k in _METADATA_FIELDS if k in updates}
    for key in ("created_at", "updated_at"):
        if key in known:
            try:
                known[key] = coerce_timestamp(known[key])
            except ValidationError as exc:
                raise InvalidConversationOperationError(f"Invalid {key}: {known[key]!r}") from exc
    extra = {k: v for k, v in updates.items() if k not in _METADATA_FIELDS}
    merged = replace(metadata, **known)
    if extra:
        merged = replace(merged, extra=MappingProxyType({**merged.extra, **extra}))
    return merged


def _provider_set(conversation_id: str, providers: Any) -> FrozenSet[str]:
    if isinstance(providers, str) or not isinstance(providers, Iterable):
        raise InvalidConversationOperationError(
            f"active_providers of conversation {conversation_id} must be a collection of provider ids",
            conversation_id=conversation_id,
        )
    provider_set = frozenset(providers)
    if not all(isinstance(p, str) and p for p in provider_set):
        raise InvalidConversationOperationError(
            f"active_providers of conversation {conversation_id} must contain non-empty strings",
            conversation_id=conversation_id,
        )
    return provider_set


def _handle_create(state: State, payload: Mapping[str, Any]) -> Dict[str, Conversation]:
    conversation_id = str(uuid4())
    now = utcnow()
    seed = dict(payload.get("metadata") or {})
    provider_ids = list(payload.get("provider_ids") or [])
    metadata = _merge_metadata(
        ConversationMetadata(
            created_at=now,
            updated_at=now,
            title=f"Conversation {conversation_id}",
            description="",
        ),
        {k: v for k, v in seed.items() if v is not None and not (k == "title" and not v)},
    )
    metadata = replace(metadata, updated_at=max(metadata.updated_at, metadata.created_at))
    messages: Tuple[ConversationMessage, ...] = ()
    initial_message = payload.get("initial_message")
    if initial_message:
        messages = (
            ConversationMessage(
                id=str(uuid4()),
                role="user",
                content=TextContent(text=initial_message),
                timestamp=now,
                provider_id=provider_ids[0] if provider_ids else "",
            ),
        )
    conversation = Conversation(
        id=conversation_id,
        metadata=metadata,
        messages=messages,
        active_providers=frozenset(provider_ids),
    )
    return _with(state, conversation)


def _handle_update(state: State, payload: Mapping[str, Any]) -> Dict[str, Conversation]:
    conversation_id = payload["id"]
    conversation = _require(state, conversation_id)
    updates = dict(payload.get("updates") or {})
    if updates.get("id", conversation_id) != conversation_id:
        raise InvalidConversationOperationError(
            f"Cannot change id of conversation {conversation_id}",
            conversation_id=conversation_id,
        )
    # 消息只能经由 ADD_MESSAGE / CLEAR_HISTORY 变更，id 由 reducer 分配
    if "messages" in updates:
        raise InvalidConversationOperationError(
            f"Messages of conversation {conversation_id} cannot be replaced; use ADD_MESSAGE or CLEAR_HISTORY",
            conversation_id=conversation_id,
        )
    fields: Dict[str, Any] = {}
    if "active_providers" in updates:
        fields["active_providers"] = _provider_set(conversation_id, updates["active_providers"])
    metadata = _merge_metadata(conversation.metadata, updates.get("metadata") or {})
    fields["metadata"] = _touch(metadata, utcnow())
    return _with(state, replace(conversation, **fields))


def _handle_delete(state: State, conversation_id: str) -> Dict[str, Conversation]:
    new_state = dict(state)
    new_state.pop(conversation_id, None)
    return new_state


def _handle_add_message(state: State, payload: Mapping[str, Any]) -> Dict[str, Conversation]:
    conversation_id = payload["id"]
    conversation = _require(state, conversation_id)
    message = payload["message"]
    provider_id = message.get("provider_id") or ""
    now = utcnow()
    try:
        role = message["role"]
        if role not in _ROLES:
            raise ValueError(f"unknown role {role!r}")
        content = coerce_content(message["content"])
    except (KeyError, ValueError) as exc:
        raise InvalidConversationOperationError(
            f"Invalid message for conversation {conversation_id}: {exc}",
            conversation_id=conversation_id,
        ) from exc
    new_message = ConversationMessage(
        id=str(uuid4()),
        role=role,
        content=content,
        timestamp=now,
        provider_id=provider_id,
        options=MappingProxyType(dict(message.get("options") or {})),
    )
    active_providers = conversation.active_providers
    if provider_id:
        active_providers = active_providers | {provider_id}
    updated = replace(
        conversation,
        messages=conversation.messages + (new_message,),
        active_providers=active_providers,
        metadata=_touch(conversation.metadata, now),
    )
    return _with(state, updated)


def _handle_set_metadata(state: State, payload: Mapping[str, Any]) -> Dict[str, Conversation]:
    conversation = _require(state, payload["id"])
    metadata = _merge_metadata(conversation.metadata, payload.get("metadata") or {})
    return _with(state, replace(conversation, metadata=_touch(metadata, utcnow())))


def _handle_add_provider(state: State, payload: Mapping[str, Any]) -> Dict[str, Conversation]:
    conversation = _require(state, payload["id"])
    updated = replace(
        conversation,
        active_providers=conversation.active_providers | {payload["provider_id"]},
        metadata=_touch(conversation.metadata, utcnow()),
    )
    return _with(state, updated)


def _handle_remove_provider(state: State, payload: Mapping[str, Any]) -> Dict[str, Conversation]:
    conversation_id = payload["id"]
    provider_id = payload["provider_id"]
    conversation = _require(state, conversation_id)
    if provider_id not in conversation.active_providers:
        raise InvalidConversationOperationError(
            f"Provider {provider_id} is not active in conversation {conversation_id}",
            conversation_id=conversation_id,
            provider_id=provider_id,
        )
    updated = replace(
        conversation,
        active_providers=conversation.active_providers - {provider_id},
        metadata=_touch(conversation.metadata, utcnow()),
    )
    return _with(state, updated)


def _handle_clear_history(state: State, conversation_id: str) -> Dict[str, Conversation]:
    conversation = _require(state, conversation_id)
    updated = replace(conversation, messages=(), metadata=_touch(conversation.metadata, utcnow()))
    return _with(state, updated)


def _handle_import(state: State, serialized: str) -> Dict[str, Conversation]:
    try:
        conversation = parse_conversation(serialized)
    except (ValidationError, ValueError, TypeError) as exc:
        raise ConversationError(f"Failed to import conversation: {exc}") from exc
    return _with(state, conversation)


_HANDLERS: Dict[ActionType, Callable[[State, Any], Dict[str, Conversation]]] = {
    ActionType.CREATE_CONVERSATION: _handle_create,
    ActionType.UPDATE_CONVERSATION: _handle_update,
    ActionType.DELETE_CONVERSATION: _handle_delete,
    ActionType.ADD_MESSAGE: _handle_add_message,
    ActionType.SET_METADATA: _handle_set_metadata,
    ActionType.ADD_PROVIDER: _handle_add_provider,
    ActionType.REMOVE_PROVIDER: _handle_remove_provider,
    ActionType.CLEAR_HISTORY: _handle_clear_history,
    ActionType.IMPORT_CONVERSATION: _handle_import,
}


def conversation_reducer(state: State, action: ConversationAction) -> State:
    """根据 action 计算下一个状态；未知的 action 类型原样返回 state。"""

    try:
        handler = _HANDLERS[ActionType(action.type)]
    except (KeyError, ValueError):
        return state
    return handler(state, action.payload)
