"""Gemini 会话式 Provider 适配器。

与 SSE 适配器不同，Gemini SDK 以“会话”对象维护多轮上下文：

- create_session(history): 用历史消息作为种子上下文在本地创建会话，不发网络请求。
- stream(...): 只把新消息的 parts 发给会话，返回的分片文本原样作为增量产出。

会话对象不可序列化，由编排层的 SessionRegistry 按会话 ID 缓存，重启后从消息历史重建。
"""

import base64
import binascii
from typing import Any, AsyncIterator, List, Optional, Sequence

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from chat_core.config.settings import settings
from chat_core.domain.exceptions import MissingCredentialError, NetworkError, ProviderError
from chat_core.domain.models import InlineBinaryPart, Message, MessagePart, TextPart
from chat_core.providers.registry import GEMINI_CONFIG, model_name


def seed_history(messages: Sequence[Message]) -> List[Message]:
    """筛选可作为会话种子上下文的消息：仅 user/model 且至少有一个非空片段，保持原顺序。"""

    return [m for m in messages if m.role in ("user", "model") and m.has_content]


def to_part(part: MessagePart) -> types.Part:
    if isinstance(part, InlineBinaryPart):
        try:
            raw = base64.b64decode(part.data)
        except (binascii.Error, ValueError) as e:
            raise ProviderError(code="INVALID_ATTACHMENT", message=f"Invalid base64 attachment: {e}")
        return types.Part.from_bytes(data=raw, mime_type=part.mime_type)
    return types.Part(text=part.content)


def to_content(message: Message) -> types.Content:
    return types.Content(role=message.role, parts=[to_part(p) for p in message.parts])


class SessionStreamAdapter:
    """Gemini 会话式流式客户端。"""

    name = GEMINI_CONFIG.name
    requires_session = True

    def __init__(self, cfg=settings, api_key: Optional[str] = None, client: Optional[Any] = None):
        self._settings = cfg
        self._api_key = api_key if api_key is not None else getattr(cfg, "gemini_api_key", None)
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise MissingCredentialError(self.name)
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    def create_session(self, history: Sequence[Message]) -> Any:
        """用历史消息构造会话句柄（纯本地操作）。"""

        contents = [to_content(m) for m in seed_history(history)]
        return self._get_client().aio.chats.create(
            model=model_name(self.name, self._settings),
            history=contents,
        )

    async def stream(
        self,
        history: Sequence[Message],
        turn: Message,
        session: Optional[Any] = None,
    ) -> AsyncIterator[str]:
        """发送 turn.parts，逐个 yield 返回的文本分片。"""

        if not self._api_key:
            raise MissingCredentialError(self.name)
        chat = session if session is not None else self.create_session(history)
        message = [to_part(p) for p in turn.parts]
        try:
            response = await chat.send_message_stream(message)
            async for chunk in response:
                text = chunk.text
                if text:
                    yield text
        except genai_errors.APIError as e:
            raise ProviderError(
                code="PROVIDER_ERROR",
                message=e.message or str(e),
                http_status=e.code or 502,
            )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
