"""LLM Provider 集成层。

该包下的模块负责：
- 定义流式适配器协议 (base)。
- 维护 Provider 静态配置 (registry)。
- 提供两种具体实现：会话式 SDK (session_adapter) 与 SSE REST (sse_adapter)。
"""

from typing import Optional

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ValidationError
from chat_core.providers.base import StreamAdapter
from chat_core.providers.registry import ProviderName
from chat_core.providers.session_adapter import SessionStreamAdapter
from chat_core.providers.sse_adapter import SSEStreamAdapter


def create_adapter(name: Optional[str] = None, api_key: Optional[str] = None, cfg=None) -> StreamAdapter:
    """根据名称创建适配器实例，默认取配置中的 provider。"""

    cfg = cfg or settings
    provider_name = (name or getattr(cfg, "default_provider", "gemini")).lower()
    if provider_name == "gemini":
        return SessionStreamAdapter(cfg, api_key=api_key)
    if provider_name == "openai":
        return SSEStreamAdapter(cfg, api_key=api_key)
    raise ValidationError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {name!r}")


__all__ = ["ProviderName", "SSEStreamAdapter", "SessionStreamAdapter", "StreamAdapter", "create_adapter"]
