"""提示词与固定文案。

系统提示词按语言(locale) 从 prompts/<locale> 目录读取；
种子消息、上下文块与道歉文案在这里集中定义，编排层与选区策略只引用常量。
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from book_chat.domain.conversation import BookInfo


PROMPTS_DIR = Path(__file__).resolve().parent

GREETING_SEED = (
    "Hello! I'm here to help you discuss this book. You can select any text passage to discuss it "
    "specifically, or ask me general questions about the book, its themes, characters, or any other "
    "literary topics."
)

CONTEXT_ACK = "I understand the context. I'm ready to help you discuss this book."

NO_RESPONSE_PLACEHOLDER = "No response generated"

APOLOGY_NOT_CONFIGURED = "Please configure your API key in settings to use the chat feature."
APOLOGY_INVALID_KEY = "Invalid API key. Please check your API key in settings."
APOLOGY_RATE_LIMIT = "Rate limit exceeded. Please try again later."
APOLOGY_TIMEOUT = "The assistant took too long to respond. Please try again."
APOLOGY_GENERIC = "Sorry, I encountered an error. Please try again."


@lru_cache(maxsize=None)
def load_system_prompt(locale: str = "en") -> str:
    """加载读书对话的系统提示词文本，找不到对应语言时回退到 en。"""

    fname = PROMPTS_DIR / locale / "book_chat_system.md"
    if not fname.exists():
        fname = PROMPTS_DIR / "en" / "book_chat_system.md"
    return fname.read_text(encoding="utf-8").strip()


def build_system_preamble(book: Optional[BookInfo], locale: str = "en") -> str:
    base = load_system_prompt(locale)
    if book and book.title and book.author:
        line = f'The current book being discussed is "{book.title}" by {book.author}.'
    else:
        line = "You are helping discuss a book the user is currently reading."
    return f"{base}\n\n{line}"


def selection_seed(selected_text: str) -> str:
    return (
        "I'll help you discuss this passage from the book. You've selected:\n\n"
        f'"{selected_text}"\n\n'
        "What would you like to know or discuss about this text?"
    )


def build_context_block(selected_text: Optional[str], book: Optional[BookInfo]) -> Optional[str]:
    """首条消息的一次性上下文；既没有选区也没有书名/作者时返回 None。"""

    parts = []
    if selected_text:
        parts.append(f'I\'m reading a book and would like to discuss this passage:\n\n"{selected_text}"')
    if book and (book.title or book.author):
        line = f"Book context: {book.title or 'Unknown Title'}"
        if book.author:
            line += f" by {book.author}"
        parts.append(line)
    if not parts:
        return None
    return "Context for this conversation:\n" + "\n\n".join(parts)
