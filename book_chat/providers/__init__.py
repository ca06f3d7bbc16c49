"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供各厂商的具体实现 (gemini_client、openai_client)。
"""

from typing import Optional

from book_chat.config.settings import settings
from book_chat.providers.base import ProviderClient
from book_chat.providers.gemini_client import GeminiClient
from book_chat.providers.openai_client import OpenAIClient


def create_provider(name: Optional[str] = None, cfg=None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    cfg = cfg or settings
    provider_name = (name or getattr(cfg, "default_provider", "gemini")).lower()
    if provider_name == "openai":
        return OpenAIClient(cfg)
    return GeminiClient(cfg)
