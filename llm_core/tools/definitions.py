"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将可用工具列表暴露给 LLM（ToolDef / ToolParam），由各 Provider 转成自己的格式。
- 统一表示模型发起的工具调用（ToolCall / FunctionCall），arguments 保持 JSON 字符串。
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4


@dataclass(frozen=True)
class ToolParam:
    """单个工具参数的定义。"""

    name: str
    description: str
    required: bool
    schema: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolDef:
    """一个可供 LLM 调用的工具定义。"""

    name: str
    description: str
    params: Dict[str, ToolParam] = field(default_factory=dict)

    def parameters_schema(self) -> Dict[str, Any]:
        """生成 JSON Schema 形式的参数描述（object 类型）。"""

        properties: Dict[str, Any] = {}
        required: List[str] = []
        for name, param in self.params.items():
            schema = dict(param.schema or {"type": "string"})
            if param.description:
                schema["description"] = param.description
            properties[name] = schema
            if param.required:
                required.append(name)
        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }


@dataclass(frozen=True)
class FunctionCall:
    name: str
    arguments: str  # JSON 字符串


@dataclass(frozen=True)
class ToolCall:
    """模型发起的一次工具调用请求（统一格式）。"""

    id: str
    function: FunctionCall
    type: Literal["function"] = "function"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.function.name, "arguments": self.function.arguments},
        }


def make_tool_call(name: str, arguments: Any, call_id: Optional[str] = None) -> ToolCall:
    """按厂商返回的字段构造统一的 ToolCall。

    arguments 可能是 JSON 字符串、dict 或缺失；统一序列化为 JSON 字符串。
    后端没有给出 id 时在本地生成一个。
    """

    if isinstance(arguments, str):
        serialized = arguments
    elif arguments is None:
        serialized = "{}"
    else:
        serialized = json.dumps(arguments, ensure_ascii=False)
    return ToolCall(
        id=call_id or f"call_{uuid4().hex}",
        function=FunctionCall(name=name or "", arguments=serialized),
    )
