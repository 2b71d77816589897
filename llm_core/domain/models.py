"""统一的对话与结果数据模型。

本模块定义了在不同 Provider 之间共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant），内容为带类型标签的 content。
- ChatOptions / ChatCompletionRequest: 发给底层 Provider 的完整请求。
- ChatCompletionResponse / StreamChunk: 从 Provider 解析后的统一响应结果。
- Model / EmbeddingResponse: 模型列表与向量结果。

所有 Provider 适配器都只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from llm_core.tools.definitions import ToolCall, ToolDef


# LLM 消息角色类型
Role = Literal["system", "user", "assistant"]

OUTPUT_VARIABLE_PATTERN = re.compile(r"<(\w+)>([\s\S]*?)</\1>")
FULL_RESPONSE_VARIABLE = "qllm_response"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TextContent:
    text: str
    type: Literal["text"] = "text"


# 目前只有文本；多模态内容以新的带 type 标签的 dataclass 加入这个 Union
MessageContent = Union[TextContent]


def coerce_content(raw: Any) -> MessageContent:
    """把 str / dict / TextContent 统一转换为 MessageContent。"""

    if isinstance(raw, TextContent):
        return raw
    if isinstance(raw, str):
        return TextContent(text=raw)
    if isinstance(raw, dict):
        kind = raw.get("type", "text")
        if kind == "text" and isinstance(raw.get("text"), str):
            return TextContent(text=raw["text"])
        raise ValueError(f"Unsupported message content type: {kind!r}")
    raise ValueError(f"Unsupported message content: {raw!r}")


@dataclass(frozen=True)
class ChatMessage:
    """一条对话消息，创建后不可变。

    - role: 消息角色。
    - content: 带类型标签的内容，目前只有 TextContent。
    - provider_id: 产生/消费该消息的 provider（可选）。
    - options: 单条消息的附加参数，不直接发给 Provider。
    """

    role: Role
    content: MessageContent
    provider_id: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def text(cls, role: Role, text: str, **kwargs: Any) -> "ChatMessage":
        return cls(role=role, content=TextContent(text=text), **kwargs)

    @property
    def text_content(self) -> str:
        return self.content.text if isinstance(self.content, TextContent) else ""


@dataclass(frozen=True)
class ChatOptions:
    """请求参数。未设置的字段由各 Provider 的 default_options 补齐。

    timeout 为单次请求的截止时间（秒），超时按 InvalidRequestError 处理。
    """

    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    system_message: Optional[str] = None
    tools: Optional[List[ToolDef]] = None
    timeout: Optional[float] = None


@dataclass(frozen=True)
class ChatCompletionRequest:
    """一次完整的聊天请求，messages 按时间从旧到新排列。"""

    messages: List[ChatMessage]
    options: ChatOptions = field(default_factory=ChatOptions)


@dataclass(frozen=True)
class Usage:
    """token 统计信息，后端未返回时全部为 0。"""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class ChatCompletionResponse:
    """一次对话调用的最终结果。

    - model: 实际使用的模型 id。
    - text: 输出文本，拒答时可能为空。
    - finish_reason: 后端返回的终止原因。
    - tool_calls: 统一格式的工具调用。
    - output_variables: 从 <tag>…</tag> 中提取的命名变量，供下游模板使用。
    """

    model: str
    text: str
    finish_reason: Optional[str] = None
    usage: Usage = field(default_factory=Usage)
    tool_calls: List[ToolCall] = field(default_factory=list)
    output_variables: Optional[Dict[str, str]] = None
    refusal: Optional[str] = None


@dataclass(frozen=True)
class StreamChunk:
    """流式响应中的一个分片。

    第一个 finish_reason 非空的分片即为最后一个分片；
    流式过程中累积的工具调用只挂在这个终止分片上。
    """

    model: str
    text: Optional[str] = None
    finish_reason: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)


@dataclass(frozen=True)
class Model:
    id: str
    name: str
    created: Optional[datetime] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class EmbeddingResponse:
    embedding: List[float]
    embeddings: List[List[float]]


def extract_output_variables(text: str) -> Dict[str, str]:
    """提取 `<name>value</name>` 形式的输出变量。

    同名变量以最后一次出现为准，值会去掉首尾空白；
    另外写入 qllm_response 保存完整的（去空白后的）响应文本。
    """

    variables: Dict[str, str] = {}
    for match in OUTPUT_VARIABLE_PATTERN.finditer(text):
        variables[match.group(1)] = match.group(2).strip()
    if text.strip():
        variables[FULL_RESPONSE_VARIABLE] = text.strip()
    return variables
