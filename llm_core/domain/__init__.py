"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatCompletionRequest / ChatCompletionResponse 等模型。
- conversation: 会话聚合、action 定义及 ConversationStore 协议。
- exceptions: 业务异常类型定义。
"""
