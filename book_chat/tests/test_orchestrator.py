"""测试对话编排：请求组装、错误转道歉消息、文本提取回退。"""

import asyncio
from datetime import datetime, timezone

import pytest

from book_chat.agents.extraction import extract_text
from book_chat.agents.orchestrator import PromptOrchestrator
from book_chat.domain.conversation import BookInfo, Message, PendingSelection, SelectionSnapshot
from book_chat.domain.exceptions import ApiError, AuthError, BackendTimeoutError, NotConfiguredError, RateLimitError, ValidationError
from book_chat.domain.models import ChatChoice, ChatMessage, ChatResult
from book_chat.infrastructure.storage.conversation_store import ConversationStore
from book_chat.prompts import (
    APOLOGY_GENERIC,
    APOLOGY_INVALID_KEY,
    APOLOGY_NOT_CONFIGURED,
    APOLOGY_RATE_LIMIT,
    APOLOGY_TIMEOUT,
    CONTEXT_ACK,
    NO_RESPONSE_PLACEHOLDER,
)


NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


class FakeProvider:
    """记录请求并返回固定回答的 Provider。"""

    name = "fake"
    model = "fake-model"

    def __init__(self, reply="这是测试回复", error=None, result=None):
        self.reply = reply
        self.error = error
        self.result = result
        self.requests = []

    def is_configured(self):
        return True

    async def chat(self, req):
        self.requests.append(req)
        if self.error is not None:
            raise self.error
        if self.result is not None:
            return self.result
        return ChatResult(
            provider="fake",
            model=req.model,
            choices=[ChatChoice(index=0, message=ChatMessage(role="assistant", content=self.reply))],
        )


def _msg(mid, role, content):
    return Message(id=mid, role=role, content=content, timestamp=NOW)


def _setup(provider, selection=None, book=None):
    store = ConversationStore()
    pending = PendingSelection(selection)
    orch = PromptOrchestrator(
        store,
        provider,
        pending_selection=pending,
        book_resolver=(lambda key: book) if book else None,
    )
    return store, pending, orch


def test_follow_up_turn_appends_user_and_assistant_without_context_block():
    provider = FakeProvider(reply="It symbolizes obsession.")
    store, pending, orch = _setup(
        provider,
        selection=SelectionSnapshot(text="the whale breached"),
        book=BookInfo(title="Moby-Dick", author="Herman Melville"),
    )
    cid = store.create("B1", _msg("m1", "assistant", "seed"))
    store.append(cid, _msg("m2", "user", "hello"))

    reply = asyncio.run(orch.send(cid, "what does this symbolize?"))

    conv = store.get(cid)
    assert len(conv.messages) == 4
    assert [m.role for m in conv.messages] == ["assistant", "user", "user", "assistant"]
    assert conv.messages[2].content == "what does this symbolize?"
    assert conv.messages[2].selected_text is None
    assert reply == conv.messages[3]
    assert reply.content == "It symbolizes obsession."

    req = provider.requests[0]
    assert [(m.role, m.content) for m in req.messages] == [
        ("assistant", "seed"),
        ("user", "hello"),
        ("user", "what does this symbolize?"),
    ]
    assert all("Context for this conversation" not in m.content for m in req.messages)
    assert req.model == "fake-model"
    # 非首条消息不清空选区
    assert pending.current is not None


def test_first_message_sends_context_block_once_and_clears_selection():
    provider = FakeProvider()
    store, pending, orch = _setup(
        provider,
        selection=SelectionSnapshot(text="Call me Ishmael.", location="epubcfi(/6/2)"),
        book=BookInfo(title="Moby-Dick", author="Herman Melville"),
    )
    cid = store.create("B1")

    asyncio.run(orch.send(cid, "Who is speaking?"))

    req = provider.requests[0]
    assert len(req.messages) == 3
    context, ack, question = req.messages
    assert context.role == "user"
    assert '"Call me Ishmael."' in context.content
    assert "Book context: Moby-Dick by Herman Melville" in context.content
    assert (ack.role, ack.content) == ("assistant", CONTEXT_ACK)
    assert (question.role, question.content) == ("user", "Who is speaking?")
    assert '"Moby-Dick" by Herman Melville' in req.system

    user_msg = store.get(cid).messages[0]
    assert user_msg.selected_text == "Call me Ishmael."
    assert user_msg.cfi == "epubcfi(/6/2)"
    assert pending.current is None

    # 第二轮不再重复上下文
    pending.set(SelectionSnapshot(text="Call me Ishmael."))
    asyncio.run(orch.send(cid, "And then?"))
    second = provider.requests[1]
    assert all("Context for this conversation" not in m.content for m in second.messages)
    assert [m.role for m in second.messages] == ["user", "assistant", "user"]


def test_first_message_without_selection_or_book_has_no_context_block():
    provider = FakeProvider()
    store, pending, orch = _setup(provider)
    cid = store.create("B1")
    asyncio.run(orch.send(cid, "hi"))
    req = provider.requests[0]
    assert [(m.role, m.content) for m in req.messages] == [("user", "hi")]
    assert "You are helping discuss a book the user is currently reading." in req.system


def test_history_order_matches_append_order():
    provider = FakeProvider()
    store, pending, orch = _setup(provider)
    cid = store.create("B1", _msg("s", "assistant", "seed"))
    for i in range(6):
        store.append(cid, _msg(f"m{i}", "user" if i % 2 == 0 else "assistant", f"turn {i}"))
    asyncio.run(orch.send(cid, "last"))
    contents = [m.content for m in provider.requests[0].messages]
    assert contents == ["seed"] + [f"turn {i}" for i in range(6)] + ["last"]


@pytest.mark.parametrize(
    "error, expected",
    [
        (RateLimitError(code="RATE_LIMIT", message="slow down"), APOLOGY_RATE_LIMIT),
        (NotConfiguredError(code="API_NOT_CONFIGURED", message="no key"), APOLOGY_NOT_CONFIGURED),
        (AuthError(code="API_KEY_INVALID", message="bad key"), APOLOGY_INVALID_KEY),
        (BackendTimeoutError(code="TIMEOUT", message="late"), APOLOGY_TIMEOUT),
        (ApiError(code="API_ERROR", message="boom", http_status=500), APOLOGY_GENERIC),
        (RuntimeError("unexpected"), APOLOGY_GENERIC),
    ],
)
def test_backend_errors_become_one_apology_message(error, expected):
    provider = FakeProvider(error=error)
    store, pending, orch = _setup(provider)
    cid = store.create("B1", _msg("s", "assistant", "seed"))

    reply = asyncio.run(orch.send(cid, "question"))

    conv = store.get(cid)
    assert len(conv.messages) == 3
    assert conv.messages[-1].role == "assistant"
    assert conv.messages[-1].content == expected
    assert reply.content == expected


def test_empty_extraction_uses_placeholder():
    result = ChatResult(provider="fake", model="m", choices=[])
    provider = FakeProvider(result=result)
    store, pending, orch = _setup(provider)
    cid = store.create("B1")
    reply = asyncio.run(orch.send(cid, "question"))
    assert reply.content == NO_RESPONSE_PLACEHOLDER


def test_extraction_falls_back_to_plain_text():
    result = ChatResult(
        provider="fake",
        model="m",
        choices=[ChatChoice(index=0, message=ChatMessage(role="assistant", content=""))],
        text="plain answer",
    )
    extraction = extract_text(result)
    assert extraction.text == "plain answer"
    assert extraction.source == "from_plain_text"
    assert extract_text(None).is_placeholder


def test_empty_user_text_is_rejected():
    provider = FakeProvider()
    store, pending, orch = _setup(provider)
    cid = store.create("B1")
    with pytest.raises(ValidationError):
        asyncio.run(orch.send(cid, "   "))
    assert store.get(cid).messages == []
    assert provider.requests == []


def test_unknown_conversation_is_soft_failure():
    provider = FakeProvider()
    store, pending, orch = _setup(provider)
    assert asyncio.run(orch.send("missing", "hello")) is None
    assert provider.requests == []


def test_conversation_removed_while_awaiting_reply():
    store = ConversationStore()

    class RemovingProvider(FakeProvider):
        async def chat(self, req):
            store.remove(cid)
            return await super().chat(req)

    provider = RemovingProvider()
    orch = PromptOrchestrator(store, provider)
    cid = store.create("B1")
    assert asyncio.run(orch.send(cid, "hello")) is None
    assert store.get(cid) is None


def test_sends_to_different_conversations_run_concurrently():
    class SlowProvider(FakeProvider):
        async def chat(self, req):
            await asyncio.sleep(0.01)
            return await super().chat(req)

    provider = SlowProvider()
    store, pending, orch = _setup(provider)
    a = store.create("B1")
    b = store.create("B1")

    async def both():
        return await asyncio.gather(orch.send(a, "to a"), orch.send(b, "to b"))

    ra, rb = asyncio.run(both())
    assert ra is not None and rb is not None
    assert [m.content for m in store.get(a).messages][0] == "to a"
    assert [m.content for m in store.get(b).messages][0] == "to b"
    assert len(store.get(a).messages) == len(store.get(b).messages) == 2
