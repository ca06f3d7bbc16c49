"""Book Chat 顶层包。

该包提供电子书阅读器中“围绕一本书对话”的核心实现，
包括配置加载、会话仓库与持久化、选区绑定策略、
Provider 适配以及多轮提示词编排。
"""

from book_chat.api.service import BookChatService, build_default_service

__all__ = ["BookChatService", "build_default_service"]
