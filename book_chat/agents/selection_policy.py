"""选区与会话绑定策略。

每当阅读界面的选区变化时决定：静默沿用当前会话、让用户选择、还是新建会话。
策略只返回 Decision，由展示层决定如何呈现（例如弹出“继续 / 新建”提示），
自身不涉及任何 UI。

状态只有两种：该书没有 active 会话 / 该书有 active 会话。
同一段选区文本只评估一次；空白选区等同于没有选区，不会再次触发提示。
"""

import logging
from dataclasses import dataclass
from typing import Literal, Optional
from uuid import uuid4

from book_chat.domain.conversation import Conversation, Message, PendingSelection
from book_chat.infrastructure.logging.logger import log_event
from book_chat.infrastructure.storage.conversation_store import Clock, ConversationStore, utc_now
from book_chat.prompts import GREETING_SEED, selection_seed


DecisionKind = Literal["continue", "offer_choice", "created", "selected"]


@dataclass(frozen=True)
class Decision:
    """策略输出。

    kind:
        - "continue": 沿用当前会话，不需要任何 UI 动作。
        - "offer_choice": 当前已有会话且选区变化，展示层应让用户选择继续或新建。
        - "created": 已新建会话，conversation_id 为新会话。
        - "selected": 已自动选中该书最近更新的会话。
    """

    kind: DecisionKind
    conversation_id: Optional[str] = None

    @classmethod
    def keep(cls, conversation_id: Optional[str] = None) -> "Decision":
        return cls(kind="continue", conversation_id=conversation_id)


class SelectionBindingPolicy:
    def __init__(
        self,
        store: ConversationStore,
        pending_selection: Optional[PendingSelection] = None,
        clock: Optional[Clock] = None,
    ):
        self._store = store
        self._pending = pending_selection or PendingSelection()
        self._clock = clock or utc_now
        self._last_seen_text: Optional[str] = None

    @property
    def pending_selection(self) -> PendingSelection:
        return self._pending

    def active_for_book(self, book_key: str) -> Optional[Conversation]:
        conv = self._store.active_conversation
        if conv is not None and conv.book_key == book_key:
            return conv
        return None

    def on_selection_changed(self, book_key: str) -> Decision:
        """读取当前待定选区并做一次评估。"""
        text = self._pending.text
        active = self.active_for_book(book_key)

        if text is None:
            if active is not None:
                return Decision.keep(active.id)
            return self._create(book_key)

        if text == self._last_seen_text:
            return Decision.keep(active.id if active else None)
        self._last_seen_text = text

        if active is not None:
            log_event(logging.INFO, "New selection while conversation active",
                      book_key=book_key, conversation_id=active.id)
            return Decision(kind="offer_choice", conversation_id=active.id)
        return self._create(book_key)

    def on_visible(self, book_key: str) -> Decision:
        """面板首次对某本书可见时调用。

        面板隐藏期间产生的新选区先按选区变化评估一次（有 active 会话时提示选择，
        没有时新建）；否则沿用 active 会话，或选中该书最近更新的会话，
        都没有时新建问候会话。
        """
        text = self._pending.text
        if text is not None and text != self._last_seen_text:
            return self.on_selection_changed(book_key)

        active = self.active_for_book(book_key)
        if active is not None:
            return Decision.keep(active.id)

        existing = self._store.list_for_book(book_key)
        if existing:
            self._store.set_active(existing[0].id)
            log_event(logging.INFO, "Auto-selected conversation", book_key=book_key,
                      conversation_id=existing[0].id)
            return Decision(kind="selected", conversation_id=existing[0].id)
        return self._create(book_key)

    def continue_current(self, book_key: str) -> Decision:
        """用户选择继续当前会话：丢弃本次选区。"""
        self._pending.clear()
        active = self.active_for_book(book_key)
        return Decision.keep(active.id if active else None)

    def start_new(self, book_key: str) -> Decision:
        """用户选择新建会话（或显式点击“新会话”），替换当前 active 会话。"""
        text = self._pending.text
        if text is not None:
            self._last_seen_text = text
        return self._create(book_key)

    def seed_message(self) -> Message:
        snapshot = self._pending.current
        text = self._pending.text
        if text is not None:
            return Message(
                id=f"m-{uuid4().hex}",
                role="assistant",
                content=selection_seed(text),
                timestamp=self._clock(),
                selected_text=text,
                cfi=snapshot.location if snapshot else None,
            )
        return Message(
            id=f"m-{uuid4().hex}",
            role="assistant",
            content=GREETING_SEED,
            timestamp=self._clock(),
        )

    def _create(self, book_key: str) -> Decision:
        cid = self._store.create(book_key, self.seed_message())
        return Decision(kind="created", conversation_id=cid)
