"""对话状态的持久化契约。

在键值存储之上约定了键名与会话 JSON 格式：

- 两个 Provider 的凭证、当前会话 ID、所选 Provider 各占一个键。
- 所有会话序列化为一个 JSON 对象（会话 ID -> 会话），其中不包含会话句柄。

读取时对缺失或损坏的数据保持宽容：整体损坏视为空映射，单个会话损坏则跳过。
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from chat_core.domain.conversation import Conversation
from chat_core.domain.exceptions import StorageError
from chat_core.domain.models import InlineBinaryPart, Message, MessagePart, TextPart
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.json_store import KeyValueStore
from chat_core.providers.registry import PROVIDER_REGISTRY

ACTIVE_CONVERSATION_KEY = "activeConversationId"
SELECTED_PROVIDER_KEY = "selectedModel"
CONVERSATIONS_KEY = "chatbotConversations"


@dataclass
class StoredState:
    """从存储中读到的原始状态，缺失的字段为 None / 空。"""

    credentials: Dict[str, str] = field(default_factory=dict)
    active_conversation_id: Optional[str] = None
    provider: Optional[str] = None
    conversations: Dict[str, Conversation] = field(default_factory=dict)


class ChatStateStore:
    def __init__(self, kv: KeyValueStore):
        self._kv = kv

    # ---- 读取 ----

    def load(self) -> StoredState:
        state = StoredState()
        for name, cfg in PROVIDER_REGISTRY.items():
            value = self._safe_get(cfg.credential_key)
            if value:
                state.credentials[name] = value
        state.active_conversation_id = self._safe_get(ACTIVE_CONVERSATION_KEY) or None
        state.provider = self._safe_get(SELECTED_PROVIDER_KEY) or None
        state.conversations = self._load_conversations()
        return state

    def _safe_get(self, key: str) -> Optional[str]:
        try:
            return self._kv.get(key)
        except StorageError as e:
            logger.error(f"Failed to read {key} from storage: {e.message}")
            return None

    def _load_conversations(self) -> Dict[str, Conversation]:
        raw = self._safe_get(CONVERSATIONS_KEY)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to load conversations from storage: {e}")
            return {}
        if not isinstance(data, dict):
            logger.error("Stored conversations are not a mapping, ignored")
            return {}
        convs: Dict[str, Conversation] = {}
        for key, value in data.items():
            try:
                conv = conversation_from_dict(value)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipped malformed stored conversation {key!r}: {e}")
                continue
            convs[conv.id] = conv
        return convs

    # ---- 写入 ----

    def save_conversations(self, conversations: Mapping[str, Conversation]) -> None:
        blob = {cid: conversation_to_dict(conv) for cid, conv in conversations.items()}
        self._kv.set(CONVERSATIONS_KEY, json.dumps(blob, ensure_ascii=False))

    def save_active_conversation_id(self, conversation_id: Optional[str]) -> None:
        if conversation_id:
            self._kv.set(ACTIVE_CONVERSATION_KEY, conversation_id)
        else:
            self._kv.remove(ACTIVE_CONVERSATION_KEY)

    def save_provider(self, provider: str) -> None:
        self._kv.set(SELECTED_PROVIDER_KEY, provider)

    def save_credential(self, provider: str, api_key: str) -> None:
        cfg = PROVIDER_REGISTRY[provider]
        self._kv.set(cfg.credential_key, api_key)


# ---- JSON 编解码 ----


def part_to_dict(part: MessagePart) -> Dict[str, Any]:
    if isinstance(part, InlineBinaryPart):
        return {"inlineData": {"mimeType": part.mime_type, "data": part.data}}
    return {"text": part.content}


def part_from_dict(data: Dict[str, Any]) -> MessagePart:
    if "inlineData" in data:
        inline = data["inlineData"]
        return InlineBinaryPart(mime_type=str(inline["mimeType"]), data=str(inline["data"]))
    if "text" in data:
        return TextPart(str(data["text"]))
    raise ValueError(f"unknown message part: {sorted(data)}")


def message_to_dict(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "role": message.role,
        "parts": [part_to_dict(p) for p in message.parts],
    }


def message_from_dict(data: Dict[str, Any]) -> Message:
    role = data["role"]
    if role not in ("user", "model"):
        raise ValueError(f"unknown role: {role!r}")
    return Message(
        id=str(data["id"]),
        role=role,
        parts=tuple(part_from_dict(p) for p in data.get("parts") or []),
    )


def conversation_to_dict(conv: Conversation) -> Dict[str, Any]:
    return {
        "id": conv.id,
        "title": conv.title,
        "messages": [message_to_dict(m) for m in conv.messages],
    }


def conversation_from_dict(data: Dict[str, Any]) -> Conversation:
    return Conversation(
        id=str(data["id"]),
        title=str(data.get("title") or ""),
        messages=tuple(message_from_dict(m) for m in data.get("messages") or []),
    )
