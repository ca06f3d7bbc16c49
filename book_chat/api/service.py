"""对外 API 服务模块。

BookChatService 是展示层唯一需要调用的入口：它持有当前书籍、面板可见性、
待定选区、每个会话的 busy 标记以及“继续 / 新建”提示状态，
把会话仓库、选区策略和对话编排串起来。
"""

import logging
from typing import Dict, List, Optional, Set

from book_chat.agents.orchestrator import BookResolver, OrchestratorConfig, PromptOrchestrator
from book_chat.agents.selection_policy import Decision, SelectionBindingPolicy
from book_chat.config.settings import settings
from book_chat.domain.conversation import Conversation, Message, PendingSelection, SelectionSnapshot
from book_chat.domain.exceptions import ValidationError
from book_chat.infrastructure.logging.logger import log_event
from book_chat.infrastructure.storage.conversation_store import ConversationStore
from book_chat.infrastructure.storage.json_store import JsonChatStorage
from book_chat.providers import create_provider
from book_chat.providers.base import ProviderClient


MIN_CHAT_WIDTH = 0.25
MAX_CHAT_WIDTH = 0.45


def format_chat_width(fraction: float) -> str:
    """把宽度比例夹到 [0.25, 0.45] 并格式化为百分比字符串，如 "38.5%"。"""
    clamped = max(MIN_CHAT_WIDTH, min(MAX_CHAT_WIDTH, fraction))
    return f"{round(clamped * 10000) / 100:g}%"


class BookChatService:
    def __init__(
        self,
        store: ConversationStore,
        provider_client: ProviderClient,
        book_resolver: Optional[BookResolver] = None,
        config: Optional[OrchestratorConfig] = None,
        retention_days: Optional[int] = None,
    ):
        self._store = store
        self._retention_days = retention_days or settings.retention_days
        self._pending = PendingSelection()
        self._policy = SelectionBindingPolicy(store, self._pending)
        self._orchestrator = PromptOrchestrator(
            store,
            provider_client,
            pending_selection=self._pending,
            book_resolver=book_resolver,
            config=config,
        )
        self._provider_client = provider_client
        self._book_key: Optional[str] = None
        self._visible = False
        self._busy: Set[str] = set()
        self.choice_offered = False

    # ---- 属性 ----

    @property
    def store(self) -> ConversationStore:
        return self._store

    @property
    def book_key(self) -> Optional[str]:
        return self._book_key

    @property
    def is_visible(self) -> bool:
        return self._visible

    @property
    def pending_selection(self) -> Optional[SelectionSnapshot]:
        return self._pending.current

    @property
    def active_conversation(self) -> Optional[Conversation]:
        if self._book_key is None:
            return None
        return self._policy.active_for_book(self._book_key)

    def is_configured(self) -> bool:
        return self._provider_client.is_configured()

    def is_busy(self, conversation_id: str) -> bool:
        return conversation_id in self._busy

    # ---- 面板生命周期 ----

    def open(self, book_key: str) -> Decision:
        """面板对某本书可见：评估隐藏期间的新选区，或自动选中最近的会话 / 新建会话。"""
        if book_key != self._book_key:
            self.choice_offered = False
        self._book_key = book_key
        self._visible = True
        decision = self._policy.on_visible(book_key)
        if decision.kind == "offer_choice":
            self.choice_offered = True
        return decision

    def close(self) -> None:
        self._visible = False

    def update_selection(self, snapshot: Optional[SelectionSnapshot]) -> Optional[Decision]:
        """阅读界面选区变化；面板不可见时只记录，不做评估。"""
        self._pending.set(snapshot)
        if not self._visible or self._book_key is None or snapshot is None:
            return None
        decision = self._policy.on_selection_changed(self._book_key)
        if decision.kind == "offer_choice":
            self.choice_offered = True
        return decision

    def continue_current(self) -> Decision:
        self.choice_offered = False
        return self._policy.continue_current(self._require_book())

    def start_new_conversation(self) -> Decision:
        self.choice_offered = False
        return self._policy.start_new(self._require_book())

    def select_conversation(self, conversation_id: str) -> bool:
        self.choice_offered = False
        return self._store.set_active(conversation_id)

    # ---- 对话 ----

    async def send(self, text: str) -> Optional[Message]:
        """向当前 active 会话发送消息，同一会话同时只允许一次发送。"""
        conv = self.active_conversation
        if conv is None:
            raise ValidationError(code="NO_ACTIVE_CONVERSATION", message="No active conversation")
        if not (text or "").strip():
            raise ValidationError(code="EMPTY_MESSAGE", message="Message text is empty")
        if conv.id in self._busy:
            raise ValidationError(code="CONVERSATION_BUSY", message="A reply is already pending", conversation_id=conv.id)
        self._busy.add(conv.id)
        try:
            return await self._orchestrator.send(conv.id, text)
        finally:
            self._busy.discard(conv.id)

    # ---- 历史管理 ----

    def conversations_for_book(self, book_key: Optional[str] = None) -> List[Conversation]:
        key = book_key or self._book_key
        if key is None:
            return []
        return self._store.list_for_book(key)

    def history(self) -> Dict[str, List[Conversation]]:
        return self._store.grouped_by_book()

    def rename_conversation(self, conversation_id: str, title: Optional[str]) -> bool:
        return self._store.set_title(conversation_id, title)

    def delete_conversation(self, conversation_id: str) -> bool:
        """删除会话；删除的是 active 会话时选中同一本书最近的剩余会话。"""
        conv = self._store.get(conversation_id)
        if conv is None:
            return False
        was_active = self._store.active_conversation_id == conversation_id
        self._store.remove(conversation_id)
        if was_active:
            remaining = self._store.list_for_book(conv.book_key)
            if remaining:
                self._store.set_active(remaining[0].id)
        return True

    def prune(self, days: Optional[int] = None) -> List[str]:
        age = days if days is not None else self._retention_days
        return self._store.prune_older_than(age)

    # ---- 界面偏好 ----

    def set_chat_width(self, fraction: float) -> str:
        width = format_chat_width(fraction)
        self._store.set_chat_width(width)
        return width

    def toggle_pin(self) -> bool:
        pinned = not self._store.preferences.is_chat_pinned
        self._store.set_chat_pinned(pinned)
        return pinned

    def _require_book(self) -> str:
        if self._book_key is None:
            raise ValidationError(code="NO_BOOK", message="No book is open in the chat panel")
        return self._book_key


def build_default_service(book_resolver: Optional[BookResolver] = None, cfg=None) -> BookChatService:
    """根据全局配置组装默认服务：JSON 持久化 + 配置中的 Provider。"""
    cfg = cfg or settings
    store = ConversationStore(storage=JsonChatStorage(root=cfg.storage_root, record_name=cfg.storage_record))
    provider = create_provider(cfg=cfg)
    service = BookChatService(
        store=store,
        provider_client=provider,
        book_resolver=book_resolver,
        config=OrchestratorConfig(
            temperature=cfg.temperature,
            max_tokens=cfg.max_output_tokens,
            locale=cfg.prompt_locale,
        ),
        retention_days=cfg.retention_days,
    )
    log_event(logging.INFO, "Book chat service ready", provider=provider.name, model=provider.model,
              configured=provider.is_configured())
    return service
