from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from .models import Role


DEFAULT_CHAT_WIDTH = "35%"


@dataclass(frozen=True)
class Message:
    """会话中的一条消息，创建后不再修改。"""

    id: str
    role: Role
    content: str
    timestamp: datetime
    selected_text: Optional[str] = None
    cfi: Optional[str] = None


@dataclass
class Conversation:
    id: str
    book_key: str
    messages: List[Message]
    created_at: datetime
    updated_at: datetime
    title: Optional[str] = None

    @property
    def display_title(self) -> str:
        if self.title:
            return self.title
        return f"Conversation {self.created_at.astimezone().strftime('%Y-%m-%d %H:%M')}"


@dataclass(frozen=True)
class SelectionSnapshot:
    """阅读界面当前高亮的段落，只读、不持久化。"""

    text: str
    location: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


@dataclass(frozen=True)
class BookInfo:
    title: Optional[str] = None
    author: Optional[str] = None


@dataclass
class ChatPreferences:
    """对话面板的界面偏好，与会话一起持久化。"""

    chat_width: str = DEFAULT_CHAT_WIDTH
    is_chat_pinned: bool = False


@dataclass
class StoreSnapshot:
    """持久化记录的完整内容。"""

    conversations: Dict[str, Conversation] = field(default_factory=dict)
    active_conversation_id: Optional[str] = None
    preferences: ChatPreferences = field(default_factory=ChatPreferences)


class PendingSelection:
    """等待进入下一次对话的选区。

    阅读界面通过 set() 写入最新快照；选区策略与编排层只读取，
    编排层在会话首条用户消息发出后调用 clear()。
    """

    def __init__(self, snapshot: Optional[SelectionSnapshot] = None):
        self._snapshot = snapshot

    @property
    def current(self) -> Optional[SelectionSnapshot]:
        return self._snapshot

    @property
    def text(self) -> Optional[str]:
        """非空选区文本；空白选区视为没有选区。"""
        if self._snapshot is None or self._snapshot.is_empty:
            return None
        return self._snapshot.text

    def set(self, snapshot: Optional[SelectionSnapshot]) -> None:
        self._snapshot = snapshot

    def clear(self) -> None:
        self._snapshot = None


class ChatStorage(Protocol):
    def load(self) -> StoreSnapshot:
        ...

    def save(self, snapshot: StoreSnapshot) -> None:
        ...
