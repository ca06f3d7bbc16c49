"""从 Provider 响应中提取纯文本回答。

提取策略按顺序尝试，每个策略都不会抛异常，拿不到文本时返回 None；
全部失败时使用占位文本，这种情况按成功处理，不作为错误提示给用户。
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from book_chat.domain.models import ChatResult
from book_chat.prompts import NO_RESPONSE_PLACEHOLDER


Strategy = Callable[[ChatResult], Optional[str]]


@dataclass(frozen=True)
class Extraction:
    text: str
    source: str  # 命中的策略名，全部落空时为 "placeholder"

    @property
    def is_placeholder(self) -> bool:
        return self.source == "placeholder"


def from_choices(result: ChatResult) -> Optional[str]:
    """结构化字段：第一个候选回答的内容。"""
    for choice in result.choices or []:
        message = getattr(choice, "message", None)
        content = getattr(message, "content", None)
        if isinstance(content, str) and content.strip():
            return content
    return None


def from_plain_text(result: ChatResult) -> Optional[str]:
    """Provider 额外提供的纯文本字段。"""
    text = getattr(result, "text", None)
    if isinstance(text, str) and text.strip():
        return text
    return None


DEFAULT_STRATEGIES: List[Strategy] = [from_choices, from_plain_text]


def extract_text(result: Optional[ChatResult], strategies: Sequence[Strategy] = DEFAULT_STRATEGIES) -> Extraction:
    if result is not None:
        for strategy in strategies:
            text = strategy(result)
            if text is not None:
                return Extraction(text=text, source=strategy.__name__)
    return Extraction(text=NO_RESPONSE_PLACEHOLDER, source="placeholder")
