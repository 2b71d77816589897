"""Provider 与模型的静态配置。

每个后端一个 ProviderConfig：base_url、凭据对应的 settings 字段/环境变量、
默认模型，以及一份静态模型目录。静态目录用于：

- list_models() 动态拉取失败时的兜底结果；
- GoogleProvider 在后台刷新完成之前校验模型是否受支持。
"""

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional


@dataclass(frozen=True)
class ModelConfig:
    """单个模型的静态配置。"""

    id: str
    name: str
    max_tokens: int = 4096
    description: Optional[str] = None


@dataclass(frozen=True)
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    api_key_field: str  # settings 上的属性名
    api_key_env: str  # 文档中声明的环境变量名，用于报错信息
    base_url_field: str
    default_model: str
    default_max_tokens: int = 4096
    default_embedding_model: Optional[str] = None
    models: Dict[str, ModelConfig] = field(default_factory=dict)


def _models(*items: ModelConfig) -> Dict[str, ModelConfig]:
    return {m.id: m for m in items}


OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    api_key_field="openai_api_key",
    api_key_env="OPENAI_API_KEY",
    base_url_field="openai_base_url",
    default_model="gpt-4o-mini",
    default_embedding_model="text-embedding-3-small",
    models=_models(
        ModelConfig(id="gpt-4o-mini", name="GPT-4o mini", max_tokens=16384),
        ModelConfig(id="gpt-4o", name="GPT-4o", max_tokens=16384),
        ModelConfig(id="gpt-4.1", name="GPT-4.1", max_tokens=32768),
    ),
)

# Kimi / Moonshot，OpenAI 兼容接口
KIMI_CONFIG = ProviderConfig(
    name="kimi",
    base_url="https://api.moonshot.cn/v1",
    api_key_field="kimi_api_key",
    api_key_env="KIMI_API_KEY",
    base_url_field="kimi_base_url",
    default_model="kimi-k2-turbo-preview",
    default_max_tokens=8192,
    models=_models(
        ModelConfig(id="kimi-k2-turbo-preview", name="Kimi K2 Turbo", max_tokens=8192),
    ),
)

# GLM / BigModel，OpenAI 兼容接口
GLM_CONFIG = ProviderConfig(
    name="glm",
    base_url="https://open.bigmodel.cn/api/paas/v4",
    api_key_field="glm_api_key",
    api_key_env="GLM_API_KEY",
    base_url_field="glm_base_url",
    default_model="glm-4.6",
    default_max_tokens=8192,
    default_embedding_model="embedding-3",
    models=_models(
        ModelConfig(id="glm-4.6", name="GLM-4.6", max_tokens=8192),
    ),
)

ANTHROPIC_CONFIG = ProviderConfig(
    name="anthropic",
    base_url="https://api.anthropic.com/v1",
    api_key_field="anthropic_api_key",
    api_key_env="ANTHROPIC_API_KEY",
    base_url_field="anthropic_base_url",
    default_model="claude-3-5-haiku-latest",
    default_max_tokens=1024,
    models=_models(
        ModelConfig(id="claude-3-5-haiku-latest", name="Claude 3.5 Haiku", max_tokens=8192),
        ModelConfig(id="claude-3-5-sonnet-latest", name="Claude 3.5 Sonnet", max_tokens=8192),
        ModelConfig(id="claude-3-opus-latest", name="Claude 3 Opus", max_tokens=4096),
    ),
)

GOOGLE_CONFIG = ProviderConfig(
    name="google",
    base_url="https://generativelanguage.googleapis.com/v1beta",
    api_key_field="google_api_key",
    api_key_env="GOOGLE_API_KEY",
    base_url_field="google_base_url",
    default_model="gemini-1.5-flash",
    default_embedding_model="text-embedding-004",
    models=_models(
        ModelConfig(id="gemini-1.5-flash", name="Gemini 1.5 Flash", max_tokens=8192),
        ModelConfig(id="gemini-1.5-pro", name="Gemini 1.5 Pro", max_tokens=8192),
        ModelConfig(id="gemini-2.0-flash", name="Gemini 2.0 Flash", max_tokens=8192),
    ),
)


PROVIDER_CONFIGS: Mapping[str, ProviderConfig] = {
    cfg.name: cfg for cfg in (OPENAI_CONFIG, KIMI_CONFIG, GLM_CONFIG, ANTHROPIC_CONFIG, GOOGLE_CONFIG)
}
