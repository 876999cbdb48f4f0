"""Chat Core 顶层包。

该包提供多 Provider 流式聊天客户端的核心实现，
包括配置加载、消息模型、Provider 适配（Gemini 会话式 SDK 与 OpenAI SSE 接口）、
流式增量累加、对话编排、会话句柄重建与本地持久化等能力。
"""

from chat_core.engine import ConversationOrchestrator, TurnState

__all__ = ["ConversationOrchestrator", "TurnState"]
