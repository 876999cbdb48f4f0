"""Provider 抽象接口。

编排层不直接依赖具体厂商的 SDK / HTTP 接口，而是依赖此协议：

- 每个厂商实现一个 StreamAdapter（SessionStreamAdapter、SSEStreamAdapter）。
- 负责：把会话历史 + 新的用户消息转成具体调用，并把返回的流转为文本增量序列。

这样可以在不改编排代码的前提下切换或接入更多 Provider。
"""

from typing import Any, AsyncIterator, Optional, Protocol, Sequence

from chat_core.domain.models import Message


class StreamAdapter(Protocol):
    """流式 Provider 适配器协议。

    实现者需要提供：
    - name: Provider 名称，用于日志与错误文案判断。
    - requires_session: 是否需要会话句柄。
    - create_session(history): 用历史消息在本地构造会话句柄（不发网络请求）；
      非会话式 Provider 返回 None。
    - stream(history, turn, session): 返回惰性的文本增量异步序列。序列按到达顺序产出，
      不可重启；失败时抛出 ProviderError 子类。
    """

    name: str
    requires_session: bool

    def create_session(self, history: Sequence[Message]) -> Optional[Any]:
        ...

    def stream(
        self,
        history: Sequence[Message],
        turn: Message,
        session: Optional[Any] = None,
    ) -> AsyncIterator[str]:
        ...
