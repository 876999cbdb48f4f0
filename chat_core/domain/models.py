"""统一的消息数据模型。

本模块定义了不同 Provider 之间共享的标准数据结构：

- TextPart / InlineBinaryPart: 消息片段（纯文本或内联二进制，如图片）。
- Message: 一条对话消息，角色只有 user / model 两种。

所有 Provider 适配器都只依赖这些模型，并负责在各自的 API 格式与这些模型之间做转换。
模型均为不可变对象，状态更新通过整体替换完成。
"""

import threading
import time
from dataclasses import dataclass
from typing import Literal, Optional, Tuple, Union


# 消息角色（与 Gemini 的 role 字段对应，OpenAI 侧由适配器映射为 assistant）
Role = Literal["user", "model"]

PLACEHOLDER_SUFFIX = "model"
ERROR_SUFFIX = "error"


@dataclass(frozen=True)
class TextPart:
    """纯文本片段。"""

    content: str = ""


@dataclass(frozen=True)
class InlineBinaryPart:
    """内联二进制片段，data 为 base64 字符串。"""

    mime_type: str
    data: str


MessagePart = Union[TextPart, InlineBinaryPart]


@dataclass(frozen=True)
class Message:
    """一条对话消息。

    - id: 会话内唯一的消息 ID。
    - role: "user" 或 "model"。
    - parts: 有序的消息片段。
    """

    id: str
    role: Role
    parts: Tuple[MessagePart, ...] = ()

    @property
    def text(self) -> str:
        """所有文本片段按换行拼接后的内容。"""

        return "\n".join(p.content for p in self.parts if isinstance(p, TextPart))

    @property
    def has_binary(self) -> bool:
        return any(isinstance(p, InlineBinaryPart) for p in self.parts)

    @property
    def has_content(self) -> bool:
        """是否至少包含一个非空片段。"""

        for part in self.parts:
            if isinstance(part, TextPart) and part.content.strip():
                return True
            if isinstance(part, InlineBinaryPart):
                return True
        return False

    @property
    def is_placeholder(self) -> bool:
        return self.role == "model" and self.id.endswith(f"-{PLACEHOLDER_SUFFIX}")

    @property
    def is_error(self) -> bool:
        return self.role == "model" and self.id.endswith(f"-{ERROR_SUFFIX}")


_id_lock = threading.Lock()
_last_ms = 0


def new_id(prefix: str, suffix: Optional[str] = None) -> str:
    """生成 `<prefix>-<毫秒时间戳>[-suffix]` 形式的 ID。

    同一进程内时间戳严格递增，同一毫秒内生成的多个 ID 不会重复。
    """

    global _last_ms
    with _id_lock:
        now = time.time_ns() // 1_000_000
        if now <= _last_ms:
            now = _last_ms + 1
        _last_ms = now
    return f"{prefix}-{now}-{suffix}" if suffix else f"{prefix}-{now}"


def text_message(message_id: str, role: Role, text: str) -> Message:
    return Message(id=message_id, role=role, parts=(TextPart(text),))


def make_user_turn(text: str, attachment: Optional[InlineBinaryPart] = None) -> Optional[Message]:
    """根据输入框内容构造一条用户消息。

    附件片段在前，去除首尾空白后的文本在后；两者都为空时返回 None。
    """

    parts: list[MessagePart] = []
    if attachment is not None:
        parts.append(attachment)
    stripped = (text or "").strip()
    if stripped:
        parts.append(TextPart(stripped))
    if not parts:
        return None
    return Message(id=new_id("msg"), role="user", parts=tuple(parts))
