"""流式增量累加器。

纯函数 reducer：把 Provider 产出的增量事件折叠进会话的消息列表。

- Delta: 累加文本，并用“完整累计文本”替换占位消息唯一的 TextPart。
  同一状态重复渲染是幂等的。
- Complete: 不修改会话，只把流标记为已结束。
- Fail: 用错误消息替换占位消息（按 ID 匹配）；占位消息已不存在时追加在末尾。

已结束（settled）的流不再接受任何事件；占位消息不在末尾时的 Delta 直接丢弃，
防止过期的流覆盖新状态。本模块不做 I/O，也从不抛异常。
"""

from dataclasses import dataclass, replace
from typing import Union

from .conversation import Conversation
from .models import Message, TextPart, text_message
from chat_core.infrastructure.logging.logger import logger


@dataclass(frozen=True)
class Delta:
    text: str


@dataclass(frozen=True)
class Complete:
    pass


@dataclass(frozen=True)
class Fail:
    """text 为已格式化好的用户可读错误，message_id 为错误消息的 ID。"""

    text: str
    message_id: str


StreamEvent = Union[Delta, Complete, Fail]


@dataclass(frozen=True)
class StreamState:
    conversation: Conversation
    placeholder_id: str
    text: str = ""
    settled: bool = False


def _trailing_placeholder(state: StreamState) -> bool:
    last = state.conversation.last_message
    return last is not None and last.role == "model" and last.id == state.placeholder_id


def apply(state: StreamState, event: StreamEvent) -> StreamState:
    if state.settled:
        logger.debug("Ignored %s on settled stream %s", type(event).__name__, state.placeholder_id)
        return state

    if isinstance(event, Delta):
        if not _trailing_placeholder(state):
            logger.debug("Dropped stale delta for %s", state.placeholder_id)
            return state
        text = state.text + event.text
        msgs = list(state.conversation.messages)
        msgs[-1] = Message(id=state.placeholder_id, role="model", parts=(TextPart(text),))
        return replace(state, conversation=state.conversation.with_messages(msgs), text=text)

    if isinstance(event, Complete):
        return replace(state, settled=True)

    if isinstance(event, Fail):
        error_msg = text_message(event.message_id, "model", event.text)
        msgs = list(state.conversation.messages)
        for idx, msg in enumerate(msgs):
            if msg.id == state.placeholder_id:
                msgs[idx] = error_msg
                break
        else:
            msgs.append(error_msg)
        return replace(state, conversation=state.conversation.with_messages(msgs), settled=True)

    logger.debug("Ignored unknown stream event %r", event)
    return state
