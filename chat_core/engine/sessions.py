"""Provider 会话句柄缓存。

会话句柄是不可序列化的 Provider 内部对象，这里按会话 ID 缓存，
不进入持久化状态；缺失时随时可以由消息历史重建。
"""

from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Sequence

from chat_core.domain.conversation import Conversation
from chat_core.domain.models import Message

SessionFactory = Callable[[Sequence[Message]], Any]


class SessionRegistry:
    def __init__(self):
        self._handles: Dict[str, Any] = {}

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    def get(self, conversation_id: str) -> Optional[Any]:
        return self._handles.get(conversation_id)

    def set(self, conversation_id: str, handle: Any) -> None:
        self._handles[conversation_id] = handle

    def discard(self, conversation_id: str) -> None:
        self._handles.pop(conversation_id, None)

    def retain(self, conversation_ids: Iterable[str]) -> None:
        """丢弃不在给定 ID 集合中的句柄。"""

        keep = set(conversation_ids)
        for cid in [c for c in self._handles if c not in keep]:
            del self._handles[cid]

    def resolve(self, conversation_id: str, history: Sequence[Message], factory: SessionFactory) -> Any:
        """返回已有句柄；没有时用 history 创建并登记。"""

        handle = self._handles.get(conversation_id)
        if handle is None:
            handle = factory(history)
            self._handles[conversation_id] = handle
        return handle

    def rehydrate(self, conversations: Mapping[str, Conversation], factory: SessionFactory) -> int:
        """为所有“有消息但没有句柄”的会话重建句柄，返回新建数量。

        只以句柄是否存在为判断条件，重复执行不会重建已有句柄，也不会修改消息。
        """

        created = 0
        for cid, conv in conversations.items():
            if cid in self._handles or not conv.messages:
                continue
            handle = factory(conv.messages)
            if handle is None:
                continue
            self._handles[cid] = handle
            created += 1
        return created
