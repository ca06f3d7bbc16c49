"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
优先级：显式参数 > 环境变量 > .env > config.yaml。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("BOOK_CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """读书对话助手的配置项。"""

    # ---- Provider 相关配置 ----
    default_provider: str = Field(
        default="gemini",
        description="默认使用的 Provider 名称，例如 gemini、openai",
    )

    # Gemini
    gemini_api_key: Optional[str] = Field(default=None, description="Gemini API 密钥")
    gemini_model: str = Field(default="gemini-2.5-flash", description="Gemini 模型 ID")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Gemini API 基础URL",
    )
    # OpenAI 兼容接口
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI 兼容接口的 API 密钥")
    openai_model: str = Field(default="gpt-4o-mini", description="OpenAI 兼容接口的模型 ID")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI 兼容接口基础URL",
    )

    http_timeout: float = Field(default=30.0, ge=1.0, description="单次 HTTP 读写超时（秒）")
    request_timeout: float = Field(
        default=60.0,
        ge=1.0,
        description="一次 backend 调用的总超时（秒），超时按 backend 错误处理",
    )
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="生成温度")
    max_output_tokens: Optional[int] = Field(default=None, ge=1, description="单次回答最大 token 数")

    # ---- 存储 / 日志 ----
    storage_root: str = Field(default=".storage", description="存储根目录")
    storage_record: str = Field(default="book-chat-storage", description="持久化记录名")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")
    retention_days: int = Field(default=30, ge=1, description="历史会话保留天数")
    prompt_locale: str = Field(default="en", description="系统提示词语言目录")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("gemini_api_key", "openai_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
