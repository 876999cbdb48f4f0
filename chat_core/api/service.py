"""对外 API 服务模块。

提供简化的函数接口供上层 UI 调用，返回值均为可直接渲染的字典。
"""

from pathlib import Path
from typing import Any, Dict, Optional

from chat_core.config.settings import settings
from chat_core.domain.conversation import Conversation
from chat_core.domain.exceptions import ValidationError
from chat_core.domain.models import InlineBinaryPart, Message, make_user_turn
from chat_core.engine.orchestrator import ConversationOrchestrator
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.json_store import JsonKeyValueStore
from chat_core.infrastructure.storage.state_store import ChatStateStore, message_to_dict


_orchestrator: Optional[ConversationOrchestrator] = None


def get_default_orchestrator() -> ConversationOrchestrator:
    """获取默认的编排器实例（单例），首次调用时完成加载。"""
    global _orchestrator
    if _orchestrator is None:
        kv = JsonKeyValueStore(Path(settings.storage_root) / settings.state_file)
        _orchestrator = ConversationOrchestrator(ChatStateStore(kv), cfg=settings)
        _orchestrator.load()
    return _orchestrator


async def send_chat(
    text: str,
    attachment: Optional[InlineBinaryPart] = None,
    provider: Optional[str] = None,
) -> Dict[str, Any]:
    """发送一条用户消息，等待流式回复结束后返回会话摘要。

    Args:
        text: 输入框文本
        attachment: 可选的内联附件（图片等）
        provider: Provider 名称（可选，默认取当前所选）

    Returns:
        包含会话ID、标题与全部消息的字典

    Raises:
        MissingCredentialError: 所选 Provider 未配置凭证
        ConversationBusyError: 当前会话仍在回复中
    """
    turn = make_user_turn(text, attachment)
    if turn is None:
        raise ValidationError(code="EMPTY_MESSAGE", message="Nothing to send")
    orchestrator = get_default_orchestrator()
    try:
        conv = await orchestrator.send_message(turn, provider)
    except Exception as e:
        logger.error(f"Chat failed: {e}", extra={"extra": {
            "conversation_id": orchestrator.state.active_conversation_id,
            "error": str(e),
        }})
        raise
    return conversation_summary(conv, with_messages=True)


def list_conversations() -> list[Dict[str, Any]]:
    """列出所有会话（最新创建的在前）。

    Returns:
        会话列表，每项包含 id, title, message_count, active
    """
    orchestrator = get_default_orchestrator()
    active = orchestrator.state.active_conversation_id
    return [
        {**conversation_summary(c), "active": c.id == active}
        for c in orchestrator.list_conversations()
    ]


def get_conversation_messages(conversation_id: str) -> list[Dict[str, Any]]:
    """获取会话的所有消息。

    Args:
        conversation_id: 会话ID

    Returns:
        消息列表
    """
    orchestrator = get_default_orchestrator()
    conv = orchestrator.state.conversations.get(conversation_id)
    if conv is None:
        raise ValidationError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
    return [_message_view(m) for m in conv.messages]


def conversation_summary(conv: Conversation, with_messages: bool = False) -> Dict[str, Any]:
    summary: Dict[str, Any] = {
        "id": conv.id,
        "title": conv.title,
        "message_count": len(conv.messages),
    }
    if with_messages:
        summary["messages"] = [_message_view(m) for m in conv.messages]
    return summary


def _message_view(message: Message) -> Dict[str, Any]:
    view = message_to_dict(message)
    view["text"] = message.text
    view["is_error"] = message.is_error
    return view
