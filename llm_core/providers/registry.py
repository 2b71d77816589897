"""Provider 注册表。

把逻辑名（区分大小写，如 "openai"、"anthropic"、"google"）映射到工厂函数，
首次获取时才构造实例并缓存；同一个工厂同时注册为对话与向量能力时只构造一次。

注册表是显式构造、显式传递的对象，不依赖模块级全局状态；
测试中可以直接构造一个只注册假 Provider 的注册表。
"""

import threading
from typing import Any, Callable, Dict, List

from llm_core.config.settings import settings
from llm_core.domain.exceptions import ProviderNotFoundError
from .anthropic_client import AnthropicProvider
from .base import EmbeddingProvider, LLMProvider
from .catalog import GLM_CONFIG, KIMI_CONFIG
from .google_client import GoogleProvider
from .openai_client import OpenAIProvider


ProviderFactory = Callable[[], Any]


class ProviderRegistry:
    def __init__(self) -> None:
        self._llm_factories: Dict[str, ProviderFactory] = {}
        self._embedding_factories: Dict[str, ProviderFactory] = {}
        self._instances: Dict[ProviderFactory, Any] = {}
        self._lock = threading.Lock()

    def register_llm(self, name: str, factory: ProviderFactory) -> None:
        self._llm_factories[name] = factory

    def register_embedding(self, name: str, factory: ProviderFactory) -> None:
        self._embedding_factories[name] = factory

    def get_llm_provider(self, name: str) -> LLMProvider:
        return self._resolve(self._llm_factories, name)

    def get_embedding_provider(self, name: str) -> EmbeddingProvider:
        return self._resolve(self._embedding_factories, name)

    def llm_provider_names(self) -> List[str]:
        return sorted(self._llm_factories)

    def embedding_provider_names(self) -> List[str]:
        return sorted(self._embedding_factories)

    def clear(self) -> None:
        """丢弃已缓存的实例（进程退出或测试重置时使用）。"""

        with self._lock:
            self._instances.clear()

    def _resolve(self, factories: Dict[str, ProviderFactory], name: str) -> Any:
        factory = factories.get(name)
        if factory is None:
            raise ProviderNotFoundError(name)
        with self._lock:
            instance = self._instances.get(factory)
            if instance is None:
                # 构造失败（如缺少 API Key）不缓存，下次重新尝试
                instance = factory()
                self._instances[factory] = instance
            return instance


def build_default_registry(cfg=settings) -> ProviderRegistry:
    """注册内置的所有后端。实例在第一次 get 时才会构造（并读取凭据）。"""

    registry = ProviderRegistry()

    def openai_factory():
        return OpenAIProvider(cfg)

    def anthropic_factory():
        return AnthropicProvider(cfg)

    def google_factory():
        return GoogleProvider(cfg)

    def kimi_factory():
        return OpenAIProvider(cfg, config=KIMI_CONFIG)

    def glm_factory():
        return OpenAIProvider(cfg, config=GLM_CONFIG)

    registry.register_llm("openai", openai_factory)
    registry.register_llm("anthropic", anthropic_factory)
    registry.register_llm("google", google_factory)
    registry.register_llm("kimi", kimi_factory)
    registry.register_llm("glm", glm_factory)

    registry.register_embedding("openai", openai_factory)
    registry.register_embedding("google", google_factory)
    registry.register_embedding("glm", glm_factory)
    return registry
