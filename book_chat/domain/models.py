"""Provider 侧的统一数据模型。

本模块定义了编排层与不同 Provider 之间共享的标准数据结构：

- ChatMessage: 发给模型的一条对话轮次（user/assistant）。
- ChatRequest: 发给底层 LLM Provider 的完整请求（系统提示 + 有序轮次 + 模型 ID）。
- ChatResult: 从 Provider 解析后的统一响应结果。

所有 Provider 适配器（如 GeminiClient）都必须只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换，
包括角色名映射（例如 Gemini 把 assistant 叫作 model）。
"""

from dataclasses import dataclass
from typing import List, Literal, Optional


# 会话中的消息角色；system 提示单独放在 ChatRequest.system 中
Role = Literal["user", "assistant"]


@dataclass
class ChatMessage:
    """一条对话轮次。

    - role: user 或 assistant。
    - content: 纯文本内容。
    """

    role: Role
    content: str


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    messages 的顺序就是发送顺序，适配层不得重排、去重或截断。
    """

    provider: str  # Provider 名，如 "gemini"
    model: str  # 具体模型 ID，如 "gemini-2.5-flash"
    system: str
    messages: List[ChatMessage]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（目前只用 index=0 的一条）。"""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次对话调用的最终结果。

    - choices: 结构化的候选回答，可能为空（例如被安全策略拦截）。
    - text: Provider 额外提供的纯文本字段（若有），作为提取回答时的后备。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON，用于调试或日志记录。
    """

    provider: str
    model: str
    choices: List[ChatChoice]
    text: Optional[str] = None
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None
