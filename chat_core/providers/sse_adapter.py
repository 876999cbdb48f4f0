"""OpenAI 兼容的 SSE 流式适配器。

本模块负责：

1. 接收统一的会话历史与新的用户消息。
2. 将其转换为 chat/completions 的请求格式（纯文本消息用字符串 content，
   含图片的消息用分段 content 数组）。
3. 发起流式 POST，逐行读取 `data: ...` 帧，解析出文本增量。
4. 处理网络/API 异常，统一包装为 ProviderError 子类，保留上游原始错误文本。

额度/账单类错误的本地化替换由编排层完成，这里只上抛原始信息。
"""

import json
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import (
    ApiError,
    MissingCredentialError,
    NetworkError,
    ProviderError,
    RateLimitError,
)
from chat_core.domain.models import InlineBinaryPart, Message, TextPart
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.registry import OPENAI_CONFIG, model_name

DONE_MARKER = "[DONE]"
FRAME_PREFIX = "data: "


class SSEStreamAdapter:
    """OpenAI chat/completions 流式客户端。"""

    name = OPENAI_CONFIG.name
    requires_session = False

    def __init__(self, cfg=settings, api_key: Optional[str] = None):
        self._settings = cfg
        self._api_key = api_key if api_key is not None else getattr(cfg, "openai_api_key", None)

    def create_session(self, history: Sequence[Message]) -> None:
        return None

    async def stream(
        self,
        history: Sequence[Message],
        turn: Message,
        session: Optional[Any] = None,
    ) -> AsyncIterator[str]:
        """执行一次流式对话调用，逐个 yield 文本增量。"""

        if not self._api_key:
            raise MissingCredentialError(self.name)
        payload = self._build_payload(list(history) + [turn])
        base = getattr(self._settings, "openai_base_url", None) or "https://api.openai.com/v1"
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                async with client.stream(
                    "POST",
                    f"{base}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                ) as resp:
                    if not resp.is_success:
                        body = await resp.aread()
                        raise self._error_from_response(resp.status_code, body)
                    async for line in resp.aiter_lines():
                        frame = line.strip()
                        if not frame.startswith(FRAME_PREFIX):
                            continue
                        data_str = frame[len(FRAME_PREFIX):].strip()
                        if data_str == DONE_MARKER:
                            return
                        delta = self._parse_frame(data_str)
                        if delta:
                            yield delta
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)

    # ---- 辅助方法 ----

    def _build_payload(self, messages: Sequence[Message]) -> dict:
        """将消息列表转成 chat/completions 所需的请求 JSON。"""

        return {
            "model": model_name(self.name, self._settings),
            "messages": [self._message_to_payload(m) for m in messages if m.has_content],
            "stream": True,
        }

    @staticmethod
    def _message_to_payload(message: Message) -> Dict[str, Any]:
        role = "assistant" if message.role == "model" else "user"
        if not message.has_binary:
            return {"role": role, "content": message.text}
        content: List[Dict[str, Any]] = []
        for part in message.parts:
            if isinstance(part, TextPart) and part.content:
                content.append({"type": "text", "text": part.content})
            elif isinstance(part, InlineBinaryPart):
                content.append(
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{part.mime_type};base64,{part.data}"},
                    }
                )
        return {"role": role, "content": content}

    @staticmethod
    def _parse_frame(data_str: str) -> Optional[str]:
        """解析单个 data 帧，返回其中的文本增量；无法解析的帧记录日志后跳过。"""

        try:
            chunk = json.loads(data_str)
        except json.JSONDecodeError as e:
            logger.warning(f"Error parsing stream chunk: {e}", extra={"extra": {"frame": data_str[:200]}})
            return None
        try:
            content = chunk["choices"][0]["delta"].get("content")
        except (KeyError, IndexError, TypeError, AttributeError):
            return None
        if content is not None and not isinstance(content, str):
            logger.warning("Skipped non-text stream delta", extra={"extra": {"frame": data_str[:200]}})
            return None
        return content

    @staticmethod
    def _error_from_response(status_code: int, body: bytes) -> ProviderError:
        message = ""
        try:
            data = json.loads(body.decode("utf-8", errors="replace"))
            error = data.get("error") if isinstance(data, dict) else None
            if isinstance(error, dict):
                message = error.get("message") or ""
            elif isinstance(error, str):
                message = error
        except (json.JSONDecodeError, AttributeError):
            pass
        message = message or f"HTTP error! status: {status_code}"
        if status_code == 429:
            return RateLimitError(code="RATE_LIMIT", message=message, http_status=status_code)
        return ApiError(code="API_ERROR", message=message, http_status=status_code)
