"""Minimal demonstration of a book conversation."""

import asyncio

from book_chat import build_default_service
from book_chat.domain.conversation import BookInfo, SelectionSnapshot


async def main() -> None:
    service = build_default_service(book_resolver=lambda key: BookInfo(title="Moby-Dick", author="Herman Melville"))
    service.update_selection(SelectionSnapshot(text="Call me Ishmael.", location="epubcfi(/6/4!/4/2/1:0)"))
    service.open("moby-dick")
    print("Assistant:", service.active_conversation.messages[0].content)
    question = "Why does the narrator introduce himself this way?"
    reply = await service.send(question)
    print("User:", question)
    print("Assistant:", reply.content if reply else "(conversation removed)")


if __name__ == "__main__":
    asyncio.run(main())
