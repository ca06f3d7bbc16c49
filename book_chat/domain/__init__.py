"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatRequest / ChatResult 模型。
- conversation: 会话、消息、选区快照等存储模型及 ChatStorage 协议。
- exceptions: 业务异常类型定义。
"""
