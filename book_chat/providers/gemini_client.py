"""Gemini Provider 适配器。

使用 REST 接口 generateContent：
- URL: {base_url}/models/{model}:generateContent
- 认证: x-goog-api-key: <api_key>

角色映射：user → user，assistant → model；系统提示放在 systemInstruction 中。
本实现只依赖公共字段：contents/systemInstruction/generationConfig/candidates/usageMetadata。
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
from book_chat.providers.registry import GEMINI_CONFIG


_ROLE_MAP = {"user": "user", "assistant": "model"}


class GeminiClient:
    """Gemini Provider 客户端实现。"""

    name = "gemini"

    def __init__(self, cfg=settings):
        self._settings = cfg

    @property
    def model(self) -> str:
        return getattr(self._settings, "gemini_model", None) or GEMINI_CONFIG.default_model

    def is_configured(self) -> bool:
        return bool(getattr(self._settings, "gemini_api_key", None))

    async def chat(self, req: ChatRequest) -> ChatResult:
        if not self.is_configured():
            raise NotConfiguredError(code="API_NOT_CONFIGURED", message="GEMINI_API_KEY not set")
        timeout = getattr(self._settings, "request_timeout", 60.0)
        data = await with_timeout(self._post(req), timeout, self.name)
        return self._parse_response(data, req)

    # ---- 辅助方法 ----

    async def _post(self, req: ChatRequest) -> Dict[str, Any]:
        payload = self._build_payload(req)
        base = getattr(self._settings, "gemini_base_url", None) or GEMINI_CONFIG.base_url
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(
                    f"{base}/models/{req.model}:generateContent",
                    json=payload,
                    headers={
                        "x-goog-api-key": self._settings.gemini_api_key,
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)
        self._raise_for_status(resp)
        return resp.json()

    def _raise_for_status(self, resp) -> None:
        if resp.status_code < 400:
            return
        body = resp.text or ""
        if resp.status_code == 429 or "RATE_LIMIT_EXCEEDED" in body or "RESOURCE_EXHAUSTED" in body:
            raise RateLimitError(code="RATE_LIMIT", message="Gemini rate limit", http_status=429)
        if resp.status_code in (401, 403) or "API_KEY_INVALID" in body:
            raise AuthError(code="API_KEY_INVALID", message=body, http_status=resp.status_code)
        raise ApiError(code="API_ERROR", message=body, http_status=resp.status_code)

    def _build_payload(self, req: ChatRequest) -> dict:
        model_cfg = GEMINI_CONFIG.model_config(req.model)
        contents = [
            {"role": _ROLE_MAP[m.role], "parts": [{"text": m.content}]}
            for m in req.messages
        ]
        generation_config: Dict[str, Any] = {
            "temperature": req.temperature if req.temperature is not None else model_cfg.default_temperature,
            "maxOutputTokens": req.max_tokens or model_cfg.max_tokens,
        }
        payload: Dict[str, Any] = {"contents": contents, "generationConfig": generation_config}
        if req.system:
            payload["systemInstruction"] = {"parts": [{"text": req.system}]}
        return payload

    def _parse_response(self, data: dict, req: ChatRequest) -> ChatResult:
        choices: List[ChatChoice] = []
        for i, cand in enumerate(data.get("candidates") or []):
            content = cand.get("content") or {}
            parts = content.get("parts") or []
            text = "".join(p.get("text") or "" for p in parts if isinstance(p, dict))
            choices.append(
                ChatChoice(
                    index=cand.get("index", i),
                    message=ChatMessage(role="assistant", content=text),
                    finish_reason=cand.get("finishReason"),
                )
            )
        usage = None
        usage_raw = data.get("usageMetadata") or {}
        if usage_raw:
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("promptTokenCount", 0),
                completion_tokens=usage_raw.get("candidatesTokenCount", 0),
                total_tokens=usage_raw.get("totalTokenCount", 0),
            )
        plain = data.get("text")
        return ChatResult(
            provider=self.name,
            model=req.model,
            choices=choices,
            text=plain if isinstance(plain, str) else None,
            usage=usage,
            raw=data,
        )
