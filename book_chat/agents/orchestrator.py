"""对话编排核心模块。

把一条待发送的用户消息、会话历史以及可选的选区/书籍信息组装成
多轮 ChatRequest，调用 Provider，并把结果（或失败）规范化为一条 assistant 消息。

约定：
- 每条提交的用户消息最终都会在会话里得到一条 assistant 回复，
  backend 报错时回复为道歉文案，异常不会传到调用方。
- 发给 Provider 的历史顺序与追加顺序完全一致，不重排、不去重、不截断。
- 同一会话的发送由调用层串行化（见 api.service 的 busy 标记），这里不加锁。
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from book_chat.agents.extraction import DEFAULT_STRATEGIES, Strategy, extract_text
from book_chat.domain.conversation import BookInfo, Message, PendingSelection
from book_chat.domain.exceptions import (
    AuthError,
    BackendTimeoutError,
    BusinessError,
    NotConfiguredError,
    RateLimitError,
    ValidationError,
)
from book_chat.domain.models import ChatMessage, ChatRequest, ChatResult
from book_chat.infrastructure.logging.logger import logger
from book_chat.infrastructure.storage.conversation_store import Clock, ConversationStore, utc_now
from book_chat.prompts import (
    APOLOGY_GENERIC,
    APOLOGY_INVALID_KEY,
    APOLOGY_NOT_CONFIGURED,
    APOLOGY_RATE_LIMIT,
    APOLOGY_TIMEOUT,
    CONTEXT_ACK,
    build_context_block,
    build_system_preamble,
)
from book_chat.providers.base import ProviderClient


BookResolver = Callable[[str], Optional[BookInfo]]


@dataclass
class OrchestratorConfig:
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    locale: str = "en"


def apology_for(error: BaseException) -> str:
    """把 backend 错误映射为展示给读者的道歉文案。"""
    if isinstance(error, NotConfiguredError):
        return APOLOGY_NOT_CONFIGURED
    if isinstance(error, AuthError):
        return APOLOGY_INVALID_KEY
    if isinstance(error, RateLimitError):
        return APOLOGY_RATE_LIMIT
    if isinstance(error, BackendTimeoutError):
        return APOLOGY_TIMEOUT
    return APOLOGY_GENERIC


class PromptOrchestrator:
    def __init__(
        self,
        store: ConversationStore,
        provider_client: ProviderClient,
        pending_selection: Optional[PendingSelection] = None,
        book_resolver: Optional[BookResolver] = None,
        config: Optional[OrchestratorConfig] = None,
        strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
        clock: Optional[Clock] = None,
    ):
        self._store = store
        self._provider_client = provider_client
        self._pending = pending_selection or PendingSelection()
        self._book_resolver = book_resolver
        self._config = config or OrchestratorConfig()
        self._strategies = list(strategies)
        self._clock = clock or utc_now

    @property
    def pending_selection(self) -> PendingSelection:
        return self._pending

    async def send(self, conversation_id: str, user_text: str) -> Optional[Message]:
        """发送一条用户消息并等待回复。

        Args:
            conversation_id: 目标会话 ID
            user_text: 用户输入，去掉首尾空白后不能为空

        Returns:
            追加到会话中的 assistant 消息；会话不存在或在等待期间被删除时返回 None。

        Raises:
            ValidationError: user_text 为空。
        """
        text = (user_text or "").strip()
        if not text:
            raise ValidationError(code="EMPTY_MESSAGE", message="Message text is empty")

        start_time = time.time()
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "conversation_id": conversation_id,
        }

        conv = self._store.get(conversation_id)
        if conv is None:
            self._log(logging.WARNING, "Send to unknown conversation ignored", log_ctx)
            return None

        # 1. 必须在追加用户消息之前判断
        is_first_message = len(conv.messages) == 0
        history = list(conv.messages)
        selection = self._pending.current if is_first_message else None
        selected_text = self._pending.text if is_first_message else None

        # 2. 追加用户消息
        user_msg = Message(
            id=f"m-{uuid4().hex}",
            role="user",
            content=text,
            timestamp=self._clock(),
            selected_text=selected_text,
            cfi=selection.location if (selected_text and selection) else None,
        )
        self._store.append(conversation_id, user_msg)
        self._log(
            logging.INFO,
            "Stored user message",
            log_ctx,
            message_id=user_msg.id,
            is_first_message=is_first_message,
            has_selection=selected_text is not None,
        )

        # 3. 组装请求
        book = self._resolve_book(conv.book_key)
        req = self.build_request(history, text, book, selected_text, is_first_message)

        # 4-5. 调用 backend 并提取文本
        reply_text = await self._call_backend(req, log_ctx)

        # 6. 追加 assistant 消息
        assistant_msg = Message(
            id=f"m-{uuid4().hex}",
            role="assistant",
            content=reply_text,
            timestamp=self._clock(),
        )
        stored = self._store.append(conversation_id, assistant_msg)

        # 7. 首条消息之后不再携带选区
        if is_first_message:
            self._pending.clear()

        elapsed = time.time() - start_time
        if not stored:
            self._log(
                logging.WARNING,
                "Conversation removed while awaiting reply",
                log_ctx,
                elapsed_seconds=round(elapsed, 2),
            )
            return None
        self._log(
            logging.INFO,
            "Completed chat turn",
            log_ctx,
            elapsed_seconds=round(elapsed, 2),
            user_message_id=user_msg.id,
            assistant_message_id=assistant_msg.id,
        )
        return assistant_msg

    def build_request(
        self,
        history: Sequence[Message],
        user_text: str,
        book: Optional[BookInfo],
        selected_text: Optional[str],
        is_first_message: bool,
    ) -> ChatRequest:
        """构造多轮请求：系统提示 + 一次性上下文 + 历史 + 本轮用户消息。"""
        chat_messages: List[ChatMessage] = []
        if is_first_message:
            block = build_context_block(selected_text, book)
            if block:
                chat_messages.append(ChatMessage(role="user", content=block))
                chat_messages.append(ChatMessage(role="assistant", content=CONTEXT_ACK))
        for m in history:
            chat_messages.append(ChatMessage(role=m.role, content=m.content))
        chat_messages.append(ChatMessage(role="user", content=user_text))

        return ChatRequest(
            provider=self._provider_client.name,
            model=self._provider_client.model,
            system=build_system_preamble(book, self._config.locale),
            messages=chat_messages,
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
        )

    async def _call_backend(self, req: ChatRequest, log_ctx: Dict[str, Any]) -> str:
        self._log(
            logging.INFO,
            "Calling provider",
            log_ctx,
            provider=req.provider,
            model=req.model,
            message_count=len(req.messages),
        )
        try:
            result: ChatResult = await self._provider_client.chat(req)
        except BusinessError as e:
            self._log(logging.ERROR, "Provider call failed", log_ctx, code=e.code, error=e.message)
            return apology_for(e)
        except Exception as e:
            logger.exception("Unexpected provider failure", extra={"extra": dict(log_ctx, error=str(e))})
            return apology_for(e)

        if result.usage:
            self._log(
                logging.INFO,
                "Token usage",
                log_ctx,
                prompt_tokens=result.usage.prompt_tokens,
                completion_tokens=result.usage.completion_tokens,
                total_tokens=result.usage.total_tokens,
            )
        extraction = extract_text(result, self._strategies)
        if extraction.is_placeholder:
            self._log(logging.WARNING, "Provider returned no extractable text", log_ctx)
        return extraction.text

    def _resolve_book(self, book_key: str) -> Optional[BookInfo]:
        if self._book_resolver is None:
            return None
        return self._book_resolver(book_key)

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
