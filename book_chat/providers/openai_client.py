"""OpenAI 兼容接口的 Provider 适配器。

适用于所有提供 chat/completions 端点的服务：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>

系统提示作为首条 system 消息发送，其余轮次角色名保持 user/assistant。
"""

from typing import Any, Dict, List

import httpx

from book_chat.config.settings import settings
from book_chat.domain.exceptions import (
    ApiError,
    AuthError,
    NetworkError,
    NotConfiguredError,
    RateLimitError,
)
from book_chat.domain.models import ChatChoice, ChatMessage, ChatRequest, ChatResult, ChatUsage
from book_chat.providers.base import with_timeout
from book_chat.providers.registry import OPENAI_CONFIG


class OpenAIClient:
    """OpenAI 兼容 Provider 客户端实现。"""

    name = "openai"

    def __init__(self, cfg=settings):
        self._settings = cfg

    @property
    def model(self) -> str:
        return getattr(self._settings, "openai_model", None) or OPENAI_CONFIG.default_model

    def is_configured(self) -> bool:
        return bool(getattr(self._settings, "openai_api_key", None))

    async def chat(self, req: ChatRequest) -> ChatResult:
        if not self.is_configured():
            raise NotConfiguredError(code="API_NOT_CONFIGURED", message="OPENAI_API_KEY not set")
        timeout = getattr(self._settings, "request_timeout", 60.0)
        data = await with_timeout(self._post(req), timeout, self.name)
        return self._parse_response(data, req)

    # ---- 辅助方法 ----

    async def _post(self, req: ChatRequest) -> Dict[str, Any]:
        payload = self._build_payload(req)
        base = getattr(self._settings, "openai_base_url", None) or OPENAI_CONFIG.base_url
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(
                    f"{base}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self._settings.openai_api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="OpenAI rate limit", http_status=429)
        if resp.status_code in (401, 403):
            raise AuthError(code="API_KEY_INVALID", message=resp.text, http_status=resp.status_code)
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        return resp.json()

    def _build_payload(self, req: ChatRequest) -> dict:
        model_cfg = OPENAI_CONFIG.model_config(req.model)
        msgs: List[Dict[str, Any]] = []
        if req.system:
            msgs.append({"role": "system", "content": req.system})
        msgs.extend({"role": m.role, "content": m.content} for m in req.messages)
        return {
            "model": req.model,
            "messages": msgs,
            "temperature": req.temperature if req.temperature is not None else model_cfg.default_temperature,
            "max_tokens": req.max_tokens or model_cfg.max_tokens,
            "stream": False,
        }

    def _parse_response(self, data: dict, req: ChatRequest) -> ChatResult:
        choices: list[ChatChoice] = []
        for i, ch in enumerate(data.get("choices", [])):
            msg = ch.get("message") or {}
            choices.append(
                ChatChoice(
                    index=ch.get("index", i),
                    message=ChatMessage(role="assistant", content=msg.get("content") or ""),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        usage = None
        usage_raw = data.get("usage") or {}
        if usage_raw:
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )
        plain = data.get("output_text")
        return ChatResult(
            provider=self.name,
            model=req.model,
            choices=choices,
            text=plain if isinstance(plain, str) else None,
            usage=usage,
            raw=data,
        )
