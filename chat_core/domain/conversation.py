from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from .models import Message, TextPart


@dataclass(frozen=True)
class Conversation:
    id: str
    title: str
    messages: Tuple[Message, ...] = ()

    def with_messages(self, messages) -> "Conversation":
        return replace(self, messages=tuple(messages))

    def append(self, message: Message) -> "Conversation":
        return replace(self, messages=self.messages + (message,))

    @property
    def last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None


@dataclass(frozen=True)
class ChatState:
    """某一时刻的完整对话状态快照，每次提交整体替换。"""

    conversations: Mapping[str, Conversation] = field(default_factory=dict)
    active_conversation_id: Optional[str] = None
    provider: str = "gemini"

    @property
    def active_conversation(self) -> Optional[Conversation]:
        if self.active_conversation_id is None:
            return None
        return self.conversations.get(self.active_conversation_id)

    def put(self, conversation: Conversation) -> "ChatState":
        convs: Dict[str, Conversation] = dict(self.conversations)
        convs[conversation.id] = conversation
        return replace(self, conversations=convs)

    def update(self, conversation_id: str, fn: Callable[[Conversation], Conversation]) -> "ChatState":
        conv = self.conversations.get(conversation_id)
        if conv is None:
            return self
        return self.put(fn(conv))

    def remove(self, conversation_id: str) -> "ChatState":
        convs = {k: v for k, v in self.conversations.items() if k != conversation_id}
        active = None if self.active_conversation_id == conversation_id else self.active_conversation_id
        return replace(self, conversations=convs, active_conversation_id=active)


def title_from_turn(turn: Message, max_chars: int, default: str) -> str:
    """取首个文本片段的前 max_chars 个字符作为标题。"""

    for part in turn.parts:
        if isinstance(part, TextPart):
            title = part.content[:max_chars].strip()
            return title or default
    return default


def _id_order(conversation_id: str) -> int:
    try:
        return int(conversation_id.split("-")[1])
    except (IndexError, ValueError):
        return 0


def sorted_conversations(conversations: Mapping[str, Conversation]) -> List[Conversation]:
    """按 ID 中的时间戳倒序排列（最新创建的在前），仅用于展示。"""

    return sorted(conversations.values(), key=lambda c: _id_order(c.id), reverse=True)
