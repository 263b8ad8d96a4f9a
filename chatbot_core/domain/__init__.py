"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatRequest / ChatResult 与流式事件模型。
- conversation: 单次会话内的消息缓冲区 ConversationBuffer。
- exceptions: 业务异常类型定义。
"""
