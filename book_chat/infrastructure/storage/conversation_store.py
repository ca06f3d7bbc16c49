"""进程内会话仓库。

ConversationStore 独占所有 Conversation / Message 对象，UI 层只持有只读引用
和 active 指针。每次变更先在内存中生效，然后把完整快照交给 ChatStorage
保存；保存失败只记日志，不回滚、不向调用方抛出。

对未知会话 ID 的 append / remove / set_active / set_title 都是 no-op，
返回 False，因为调用方经常会让一次删除与一次未完成的 append 相互竞争。
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from book_chat.domain.conversation import (
    ChatPreferences,
    ChatStorage,
    Conversation,
    Message,
    StoreSnapshot,
)
from book_chat.domain.exceptions import StorageError
from book_chat.infrastructure.logging.logger import log_event


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStore:
    def __init__(self, storage: Optional[ChatStorage] = None, clock: Optional[Clock] = None):
        self._storage = storage
        self._clock = clock or utc_now
        self._conversations: Dict[str, Conversation] = {}
        self._active_id: Optional[str] = None
        self._preferences = ChatPreferences()
        if storage is not None:
            self._restore()

    # ---- 读 ----

    @property
    def active_conversation_id(self) -> Optional[str]:
        return self._active_id

    @property
    def active_conversation(self) -> Optional[Conversation]:
        if self._active_id is None:
            return None
        return self._conversations.get(self._active_id)

    @property
    def preferences(self) -> ChatPreferences:
        return self._preferences

    def get(self, conversation_id: str) -> Optional[Conversation]:
        return self._conversations.get(conversation_id)

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._conversations

    def __len__(self) -> int:
        return len(self._conversations)

    def __bool__(self) -> bool:
        # 空仓库也是有效对象，不能因 __len__ 为 0 被当成假值
        return True

    def list_for_book(self, book_key: str) -> List[Conversation]:
        """按 updated_at 倒序返回某本书的会话；sorted 稳定，时间相同保持插入顺序。"""
        items = [c for c in self._conversations.values() if c.book_key == book_key]
        return sorted(items, key=lambda c: c.updated_at, reverse=True)

    def all_conversations(self) -> List[Conversation]:
        return sorted(self._conversations.values(), key=lambda c: c.updated_at, reverse=True)

    def grouped_by_book(self) -> Dict[str, List[Conversation]]:
        groups: Dict[str, List[Conversation]] = {}
        for conv in self.all_conversations():
            groups.setdefault(conv.book_key, []).append(conv)
        return groups

    # ---- 写 ----

    def create(self, book_key: str, seed_message: Optional[Message] = None) -> str:
        """创建会话并设为 active，返回新会话 ID。"""
        cid = self._new_id()
        now = self._clock()
        conv = Conversation(
            id=cid,
            book_key=book_key,
            messages=[seed_message] if seed_message is not None else [],
            created_at=now,
            updated_at=now,
        )
        self._conversations[cid] = conv
        self._active_id = cid
        log_event(logging.INFO, "Created conversation", conversation_id=cid, book_key=book_key,
                  seeded=seed_message is not None)
        self._persist()
        return cid

    def append(self, conversation_id: str, message: Message) -> bool:
        conv = self._conversations.get(conversation_id)
        if conv is None:
            log_event(logging.WARNING, "Append to unknown conversation ignored",
                      conversation_id=conversation_id, message_id=message.id)
            return False
        conv.messages.append(message)
        conv.updated_at = max(self._clock(), conv.updated_at)
        self._persist()
        return True

    def set_active(self, conversation_id: Optional[str]) -> bool:
        if conversation_id is not None and conversation_id not in self._conversations:
            log_event(logging.WARNING, "Activate unknown conversation ignored", conversation_id=conversation_id)
            return False
        self._active_id = conversation_id
        self._persist()
        return True

    def set_title(self, conversation_id: str, title: Optional[str]) -> bool:
        conv = self._conversations.get(conversation_id)
        if conv is None:
            return False
        conv.title = (title or "").strip() or None
        self._persist()
        return True

    def remove(self, conversation_id: str) -> bool:
        """删除会话；若它是 active，只清空指针，不自动选择替代者。"""
        if self._conversations.pop(conversation_id, None) is None:
            log_event(logging.WARNING, "Remove unknown conversation ignored", conversation_id=conversation_id)
            return False
        if self._active_id == conversation_id:
            self._active_id = None
        log_event(logging.INFO, "Removed conversation", conversation_id=conversation_id)
        self._persist()
        return True

    def prune_older_than(self, age_in_days: float) -> List[str]:
        """删除 updated_at 早于 now - age 的会话，返回被删除的 ID。"""
        cutoff = self._clock() - timedelta(days=age_in_days)
        expired = [cid for cid, c in self._conversations.items() if c.updated_at < cutoff]
        if not expired:
            return []
        for cid in expired:
            del self._conversations[cid]
        if self._active_id in expired:
            self._active_id = None
        log_event(logging.INFO, "Pruned conversations", removed=len(expired), age_in_days=age_in_days)
        self._persist()
        return expired

    def set_chat_width(self, width: str) -> None:
        self._preferences.chat_width = width
        self._persist()

    def set_chat_pinned(self, pinned: bool) -> None:
        self._preferences.is_chat_pinned = pinned
        self._persist()

    # ---- 内部 ----

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            conversations=dict(self._conversations),
            active_conversation_id=self._active_id,
            preferences=ChatPreferences(
                chat_width=self._preferences.chat_width,
                is_chat_pinned=self._preferences.is_chat_pinned,
            ),
        )

    def _new_id(self) -> str:
        while True:
            cid = f"conv-{uuid4().hex}"
            if cid not in self._conversations:
                return cid

    def _restore(self) -> None:
        try:
            snap = self._storage.load()
        except StorageError as e:
            log_event(logging.ERROR, "Failed to load chat storage, starting empty", code=e.code, error=e.message)
            return
        self._conversations = dict(snap.conversations)
        self._active_id = snap.active_conversation_id
        self._preferences = snap.preferences
        log_event(logging.INFO, "Loaded chat storage", conversations=len(self._conversations))

    def _persist(self) -> None:
        if self._storage is None:
            return
        try:
            self._storage.save(self.snapshot())
        except StorageError as e:
            log_event(logging.ERROR, "Failed to persist chat storage", code=e.code, error=e.message)
