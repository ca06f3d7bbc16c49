"""Provider 抽象接口。

编排层不直接依赖具体厂商的 HTTP API，而是依赖此协议：

- 每个厂商实现一个 ProviderClient（如 GeminiClient）。
- 负责：将 ChatRequest 转成具体 API 请求，并把响应 JSON 解析为 ChatResult。
- 未配置 API 密钥时，chat() 必须在发起任何网络请求前抛出 NotConfiguredError。
- 超时在适配层边界统一处理，转换为 BackendTimeoutError。

这样可以在不改编排代码的前提下接入更多厂商。
"""

import asyncio
from typing import Awaitable, Protocol, TypeVar

from book_chat.domain.exceptions import BackendTimeoutError
from book_chat.domain.models import ChatRequest, ChatResult


T = TypeVar("T")


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志/统计。
    - model: 当前配置的模型 ID，编排层用它构造 ChatRequest。
    - is_configured(): 是否具备调用所需的凭据。
    - chat(req): 执行一次非流式对话调用，返回统一的 ChatResult。
    """

    name: str
    model: str

    def is_configured(self) -> bool:
        ...

    async def chat(self, req: ChatRequest) -> ChatResult:
        ...


async def with_timeout(call: Awaitable[T], timeout: float, provider: str) -> T:
    """给一次 backend 调用加上总超时，超时按 backend 错误抛出。"""

    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError:
        raise BackendTimeoutError(
            code="TIMEOUT",
            message=f"{provider} did not respond within {timeout:g}s",
            provider=provider,
        )
