"""对话编排层：ConversationOrchestrator 与会话句柄缓存。"""

from chat_core.engine.orchestrator import ConversationOrchestrator, TurnState
from chat_core.engine.sessions import SessionRegistry

__all__ = ["ConversationOrchestrator", "SessionRegistry", "TurnState"]
