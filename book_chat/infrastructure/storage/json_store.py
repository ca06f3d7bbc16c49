import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

from book_chat.config.settings import settings
from book_chat.domain.conversation import (
    DEFAULT_CHAT_WIDTH,
    ChatPreferences,
    Conversation,
    Message,
    StoreSnapshot,
)
from book_chat.domain.exceptions import StorageError


class JsonChatStorage:
    """把整个会话仓库保存为单个 JSON 记录。

    文件位置为 <root>/<record_name>.json，写入时先写临时文件再 os.replace，
    保证读者不会看到写了一半的记录。
    """

    def __init__(self, root: str | Path | None = None, record_name: Optional[str] = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._path = self._root / f"{record_name or settings.storage_record}.json"

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> StoreSnapshot:
        if not self._path.exists():
            return StoreSnapshot()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StorageError(code="STORE_READ_ERROR", message=str(e), path=str(self._path))
        if not isinstance(data, dict):
            raise StorageError(code="STORE_READ_ERROR", message="record is not a mapping", path=str(self._path))

        conversations: Dict[str, Conversation] = {}
        for cid, raw in (data.get("conversations") or {}).items():
            try:
                conversations[cid] = self._to_conversation(raw)
            except (KeyError, TypeError, ValueError) as e:
                raise StorageError(code="STORE_READ_ERROR", message=f"bad conversation {cid!r}: {e}")
        active = data.get("active_conversation_id")
        if active not in conversations:
            active = None
        return StoreSnapshot(
            conversations=conversations,
            active_conversation_id=active,
            preferences=ChatPreferences(
                chat_width=data.get("chat_width") or DEFAULT_CHAT_WIDTH,
                is_chat_pinned=bool(data.get("is_chat_pinned", False)),
            ),
        )

    def save(self, snapshot: StoreSnapshot) -> None:
        obj = {
            "conversations": {cid: self._from_conversation(c) for cid, c in snapshot.conversations.items()},
            "active_conversation_id": snapshot.active_conversation_id,
            "chat_width": snapshot.preferences.chat_width,
            "is_chat_pinned": snapshot.preferences.is_chat_pinned,
        }
        tmp_path = self._root / f"{self._path.stem}.{uuid4().hex}.json.tmp"
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(code="STORE_WRITE_ERROR", message=str(e), path=str(self._path))

    def _from_conversation(self, conv: Conversation) -> Dict[str, Any]:
        return {
            "id": conv.id,
            "book_key": conv.book_key,
            "title": conv.title,
            "created_at": _dump_dt(conv.created_at),
            "updated_at": _dump_dt(conv.updated_at),
            "messages": [
                {
                    "id": m.id,
                    "role": m.role,
                    "content": m.content,
                    "timestamp": _dump_dt(m.timestamp),
                    "selected_text": m.selected_text,
                    "cfi": m.cfi,
                }
                for m in conv.messages
            ],
        }

    def _to_conversation(self, data: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=data["id"],
            book_key=data["book_key"],
            title=data.get("title"),
            created_at=_load_dt(data["created_at"]),
            updated_at=_load_dt(data["updated_at"]),
            messages=[
                Message(
                    id=m["id"],
                    role=m["role"],
                    content=m.get("content") or "",
                    timestamp=_load_dt(m["timestamp"]),
                    selected_text=m.get("selected_text"),
                    cfi=m.get("cfi"),
                )
                for m in data.get("messages") or []
            ],
        )


def _dump_dt(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _load_dt(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
