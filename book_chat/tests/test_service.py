"""测试 BookChatService：面板生命周期、busy 标记与历史管理。"""

import asyncio
import tempfile
from pathlib import Path

import pytest

from book_chat.api.service import BookChatService, format_chat_width
from book_chat.domain.conversation import BookInfo, SelectionSnapshot
from book_chat.domain.exceptions import ValidationError
from book_chat.domain.models import ChatChoice, ChatMessage, ChatResult
from book_chat.infrastructure.storage.conversation_store import ConversationStore
from book_chat.infrastructure.storage.json_store import JsonChatStorage
from book_chat.prompts import GREETING_SEED


class FakeProvider:
    name = "fake"
    model = "fake-model"

    def __init__(self):
        self.requests = []
        self.gate = None

    def is_configured(self):
        return True

    async def chat(self, req):
        self.requests.append(req)
        if self.gate is not None:
            await self.gate.wait()
        return ChatResult(
            provider="fake",
            model=req.model,
            choices=[ChatChoice(index=0, message=ChatMessage(role="assistant", content="reply"))],
        )


def _service(store=None):
    provider = FakeProvider()
    service = BookChatService(
        store=store if store is not None else ConversationStore(),
        provider_client=provider,
        book_resolver=lambda key: BookInfo(title="Moby-Dick", author="Herman Melville"),
    )
    return service, provider


def test_open_without_history_creates_greeting_conversation():
    service, _ = _service()
    decision = service.open("B1")
    assert decision.kind == "created"
    assert service.active_conversation.messages[0].content == GREETING_SEED


def test_selection_before_open_creates_selection_conversation():
    service, _ = _service()
    assert service.update_selection(SelectionSnapshot(text="the whale breached")) is None
    decision = service.open("B1")
    assert decision.kind == "created"
    assert '"the whale breached"' in service.active_conversation.messages[0].content


def test_new_selection_offers_choice_and_start_new():
    service, _ = _service()
    service.open("B1")
    first = service.active_conversation.id

    decision = service.update_selection(SelectionSnapshot(text="a new passage"))
    assert decision.kind == "offer_choice"
    assert service.choice_offered is True

    created = service.start_new_conversation()
    assert created.kind == "created"
    assert service.choice_offered is False
    assert service.active_conversation.id != first
    assert len(service.conversations_for_book()) == 2


def test_continue_current_keeps_conversation():
    service, _ = _service()
    service.open("B1")
    first = service.active_conversation.id
    service.update_selection(SelectionSnapshot(text="a new passage"))
    decision = service.continue_current()
    assert decision.conversation_id == first
    assert service.pending_selection is None
    assert service.choice_offered is False


def test_selection_made_while_closed_offers_choice_on_reopen():
    service, _ = _service()
    service.update_selection(SelectionSnapshot(text="first passage"))
    first = service.open("B1")
    assert first.kind == "created"
    service.close()

    assert service.update_selection(SelectionSnapshot(text="second passage")) is None
    decision = service.open("B1")
    assert decision.kind == "offer_choice"
    assert decision.conversation_id == first.conversation_id
    assert service.choice_offered is True
    assert len(service.conversations_for_book()) == 1

    # 同一段选区再次打开面板不会重复提示
    service.continue_current()
    service.close()
    assert service.open("B1").kind == "continue"
    assert service.choice_offered is False


def test_send_rejects_concurrent_send_on_same_conversation():
    service, provider = _service()
    service.open("B1")
    cid = service.active_conversation.id

    async def scenario():
        provider.gate = asyncio.Event()
        first = asyncio.create_task(service.send("first question"))
        await asyncio.sleep(0)
        assert service.is_busy(cid) is True
        with pytest.raises(ValidationError) as exc:
            await service.send("second question")
        assert exc.value.code == "CONVERSATION_BUSY"
        provider.gate.set()
        return await first

    reply = asyncio.run(scenario())
    assert reply.content == "reply"
    assert service.is_busy(cid) is False
    assert [m.role for m in service.active_conversation.messages] == ["assistant", "user", "assistant"]


def test_send_requires_active_conversation_and_text():
    service, _ = _service()
    with pytest.raises(ValidationError):
        asyncio.run(service.send("hello"))
    service.open("B1")
    with pytest.raises(ValidationError):
        asyncio.run(service.send("  "))


def test_delete_active_selects_next_remaining():
    service, _ = _service()
    service.open("B1")
    older = service.active_conversation.id
    newer = service.start_new_conversation().conversation_id

    assert service.delete_conversation(newer) is True
    assert service.active_conversation.id == older
    assert service.delete_conversation(newer) is False
    assert service.delete_conversation(older) is True
    assert service.active_conversation is None


def test_reopen_auto_selects_most_recent_conversation():
    with tempfile.TemporaryDirectory() as d:
        storage = JsonChatStorage(root=Path(d), record_name="chat")
        store = ConversationStore(storage=storage)
        service, _ = _service(store)
        assert service.store is store
        service.open("B1")
        cid = service.active_conversation.id
        asyncio.run(service.send("remember me"))
        service.store.set_active(None)
        assert storage.path.exists()

        again, _ = _service(ConversationStore(storage=JsonChatStorage(root=Path(d), record_name="chat")))
        decision = again.open("B1")
        assert decision.kind == "selected"
        assert decision.conversation_id == cid
        assert len(again.active_conversation.messages) == 3


def test_history_groups_by_book_and_rename():
    service, _ = _service()
    service.open("B1")
    b1 = service.active_conversation.id
    service.open("B2")
    assert set(service.history()) == {"B1", "B2"}
    assert service.rename_conversation(b1, "Chapter 1") is True
    assert service.store.get(b1).display_title == "Chapter 1"


def test_prune_uses_given_days():
    service, _ = _service()
    service.open("B1")
    assert service.prune(30) == []
    assert len(service.store) == 1


def test_chat_width_and_pin_preferences():
    service, _ = _service()
    assert service.set_chat_width(0.385) == "38.5%"
    assert service.set_chat_width(0.9) == "45%"
    assert service.set_chat_width(0.1) == "25%"
    assert service.store.preferences.chat_width == "25%"
    assert format_chat_width(0.35) == "35%"
    assert service.toggle_pin() is True
    assert service.toggle_pin() is False
