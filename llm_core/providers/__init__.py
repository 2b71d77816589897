"""LLM Provider 集成层。

该包下的模块负责：
- 定义能力协议与 HTTP 适配器基类 (base)。
- 维护各后端的静态配置与模型目录 (catalog)。
- 把后端错误归类为统一异常 (errors)。
- 提供各厂商的具体实现 (openai_client、anthropic_client、google_client)。
- 按名称解析 Provider 实例 (registry)。
"""

from typing import Optional

from llm_core.config.settings import settings
from llm_core.providers.anthropic_client import AnthropicProvider
from llm_core.providers.base import ChatProvider, EmbeddingProvider, LLMProvider, ModelListingProvider
from llm_core.providers.google_client import GoogleProvider
from llm_core.providers.openai_client import OpenAIProvider
from llm_core.providers.registry import ProviderRegistry, build_default_registry


def create_provider(registry: ProviderRegistry, name: Optional[str] = None) -> LLMProvider:
    """根据名称从注册表获取 Provider，默认取配置中的 default_provider。"""

    return registry.get_llm_provider(name or getattr(settings, "default_provider", "openai"))


__all__ = [
    "AnthropicProvider",
    "ChatProvider",
    "EmbeddingProvider",
    "GoogleProvider",
    "LLMProvider",
    "ModelListingProvider",
    "OpenAIProvider",
    "ProviderRegistry",
    "build_default_registry",
    "create_provider",
]
