"""Provider 与模型配置。

设置界面只提供 {api_key, 模型 ID}；这里集中维护各 Provider 的默认地址、
默认模型以及已知模型的输出上限。未登记的模型 ID 原样透传，使用默认参数。"""

from dataclasses import dataclass
from typing import Dict, Mapping


@dataclass
class ModelConfig:
    """单个模型的配置。"""

    name: str
    max_tokens: int
    default_temperature: float


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    default_model: str
    models: Dict[str, ModelConfig]

    def model_config(self, model: str) -> ModelConfig:
        return self.models.get(model) or ModelConfig(
            name=model,
            max_tokens=DEFAULT_MAX_TOKENS,
            default_temperature=DEFAULT_TEMPERATURE,
        )


DEFAULT_MAX_TOKENS = 8192
DEFAULT_TEMPERATURE = 0.7


# Gemini 配置
GEMINI_CONFIG = ProviderConfig(
    name="gemini",
    base_url="https://generativelanguage.googleapis.com/v1beta",
    default_model="gemini-2.5-flash",
    models={
        "gemini-2.5-flash": ModelConfig(name="gemini-2.5-flash", max_tokens=8192, default_temperature=0.7),
        "gemini-2.5-pro": ModelConfig(name="gemini-2.5-pro", max_tokens=8192, default_temperature=0.7),
        "gemini-2.0-flash-001": ModelConfig(name="gemini-2.0-flash-001", max_tokens=8192, default_temperature=0.7),
    },
)

# OpenAI 兼容接口配置
OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    default_model="gpt-4o-mini",
    models={
        "gpt-4o-mini": ModelConfig(name="gpt-4o-mini", max_tokens=4096, default_temperature=0.7),
        "gpt-4o": ModelConfig(name="gpt-4o", max_tokens=4096, default_temperature=0.7),
    },
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "gemini": GEMINI_CONFIG,
    "openai": OPENAI_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
