"""会话的 JSON 导入/导出。

导出格式与 Conversation 结构一一对应，active_providers 以排序后的
JSON 数组保存，导入时还原为 frozenset（顺序无关、自动去重）。
结构校验使用 pydantic，任何解析或校验失败都由调用方包装为 ConversationError。
"""

from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, StrictStr, TypeAdapter, field_validator, model_validator

from llm_core.domain.conversation import Conversation, ConversationMessage, ConversationMetadata
from llm_core.domain.models import TextContent


_TIMESTAMP = TypeAdapter(datetime)


def as_utc(value: datetime) -> datetime:
    """没有时区信息的时间一律按 UTC 处理。"""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def coerce_timestamp(value: Any) -> datetime:
    """把 datetime 或 ISO-8601 字符串转换为带时区的 datetime；无法解析时抛 pydantic.ValidationError。"""

    return as_utc(_TIMESTAMP.validate_python(value))


class TextContentPayload(BaseModel):
    type: Literal["text"] = "text"
    text: str


class MessagePayload(BaseModel):
    id: StrictStr
    role: Literal["system", "user", "assistant"]
    content: TextContentPayload
    timestamp: datetime
    provider_id: str = ""
    options: Dict[str, Any] = {}

    @field_validator("timestamp")
    @classmethod
    def utc_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)


class MetadataPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    created_at: datetime
    updated_at: datetime
    title: str = ""
    description: str = ""

    @field_validator("created_at", "updated_at")
    @classmethod
    def utc_timestamps(cls, value: datetime) -> datetime:
        return as_utc(value)

    @model_validator(mode="after")
    def check_timestamps(self) -> "MetadataPayload":
        if self.updated_at < self.created_at:
            raise ValueError("updated_at must not be earlier than created_at")
        return self


class ConversationPayload(BaseModel):
    id: StrictStr
    messages: List[MessagePayload]
    metadata: MetadataPayload
    active_providers: List[StrictStr]

    @field_validator("messages")
    @classmethod
    def unique_message_ids(cls, messages: List[MessagePayload]) -> List[MessagePayload]:
        ids = [m.id for m in messages]
        if len(ids) != len(set(ids)):
            raise ValueError("message ids must be unique within a conversation")
        return messages

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "ConversationPayload":
        meta = conversation.metadata
        return cls(
            id=conversation.id,
            messages=[
                MessagePayload(
                    id=m.id,
                    role=m.role,
                    content=TextContentPayload(text=m.content.text),
                    timestamp=m.timestamp,
                    provider_id=m.provider_id,
                    options=dict(m.options),
                )
                for m in conversation.messages
            ],
            metadata=MetadataPayload(
                created_at=meta.created_at,
                updated_at=meta.updated_at,
                title=meta.title,
                description=meta.description,
                **dict(meta.extra),
            ),
            active_providers=sorted(conversation.active_providers),
        )

    def to_conversation(self) -> Conversation:
        extra = dict(self.metadata.model_extra or {})
        return Conversation(
            id=self.id,
            messages=tuple(
                ConversationMessage(
                    id=m.id,
                    role=m.role,
                    content=TextContent(text=m.content.text),
                    timestamp=m.timestamp,
                    provider_id=m.provider_id,
                    options=MappingProxyType(dict(m.options)),
                )
                for m in self.messages
            ),
            metadata=ConversationMetadata(
                created_at=self.metadata.created_at,
                updated_at=self.metadata.updated_at,
                title=self.metadata.title,
                description=self.metadata.description,
                extra=MappingProxyType(extra),
            ),
            active_providers=frozenset(self.active_providers),
        )


def export_conversation(conversation: Conversation) -> str:
    return ConversationPayload.from_conversation(conversation).model_dump_json()


def parse_conversation(serialized: str) -> Conversation:
    """解析导出的 JSON；失败时抛出 pydantic.ValidationError。"""

    return ConversationPayload.model_validate_json(serialized).to_conversation()
