"""对话编排核心模块。

ConversationOrchestrator 持有全部会话状态，负责：

- 按所选 Provider 分发用户消息，驱动适配器的流式输出；
- 把每个增量交给 accumulator 折叠，并在每次可见变化时整体提交新状态；
- 将流中途的任何失败转换为一条错误消息，保证调用方永远拿到已结束的会话；
- 初次加载完成后，在每次提交时写回持久化存储；
- 重启后从消息历史重建会话式 Provider 的会话句柄。

所有提交都是 ChatState 的整体替换，并发的多个会话任务不会看到写了一半的对象。
"""

import logging
import re
import time
from dataclasses import replace
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain import accumulator
from chat_core.domain.accumulator import Complete, Delta, Fail, StreamEvent, StreamState
from chat_core.domain.conversation import ChatState, Conversation, sorted_conversations, title_from_turn
from chat_core.domain.exceptions import (
    BusinessError,
    ConversationBusyError,
    MissingCredentialError,
    StorageError,
    ValidationError,
)
from chat_core.domain.models import (
    ERROR_SUFFIX,
    PLACEHOLDER_SUFFIX,
    Message,
    TextPart,
    new_id,
    text_message,
)
from chat_core.engine.sessions import SessionRegistry
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.state_store import ChatStateStore
from chat_core.providers import create_adapter
from chat_core.providers.base import StreamAdapter
from chat_core.providers.registry import (
    OPENAI_CONFIG,
    PROVIDER_REGISTRY,
    default_api_key,
    get_provider_config,
)


class TurnState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETE = "complete"
    FAILED = "failed"


BUSY_STATES = frozenset({TurnState.SENDING, TurnState.STREAMING})

StateListener = Callable[[ChatState], None]
AdapterFactory = Callable[[str, Optional[str]], StreamAdapter]


class ConversationOrchestrator:
    def __init__(
        self,
        store: ChatStateStore,
        cfg=None,
        adapter_factory: Optional[AdapterFactory] = None,
        sessions: Optional[SessionRegistry] = None,
    ):
        self._store = store
        self._settings = cfg or settings
        self._adapter_factory = adapter_factory or self._default_adapter_factory
        self._sessions = sessions or SessionRegistry()
        self._state = ChatState(provider=getattr(self._settings, "default_provider", "gemini"))
        self._credentials: Dict[str, str] = {
            name: default_api_key(name, self._settings) or "" for name in PROVIDER_REGISTRY
        }
        self._adapters: Dict[str, StreamAdapter] = {}
        self._turns: Dict[str, TurnState] = {}
        self._listeners: List[StateListener] = []
        self._ready = False

    # ---- 状态读取 ----

    @property
    def state(self) -> ChatState:
        return self._state

    @property
    def ready(self) -> bool:
        """初次加载是否已完成；完成前的任何提交都不会写回存储。"""

        return self._ready

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    def credential(self, provider: str) -> str:
        return self._credentials.get(provider, "")

    def turn_state(self, conversation_id: str) -> TurnState:
        return self._turns.get(conversation_id, TurnState.IDLE)

    def list_conversations(self) -> List[Conversation]:
        return sorted_conversations(self._state.conversations)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """注册状态监听器（每次提交后调用），返回取消订阅函数。"""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---- 加载与会话重建 ----

    def load(self) -> ChatState:
        """从存储加载全部状态，修复中断的占位消息，随后重建会话句柄。"""

        stored = self._store.load()
        for name in PROVIDER_REGISTRY:
            self._credentials[name] = stored.credentials.get(name) or default_api_key(name, self._settings) or ""
        provider = stored.provider if stored.provider in PROVIDER_REGISTRY else self._state.provider
        conversations, repaired = self._repair_interrupted(stored.conversations)
        active = stored.active_conversation_id
        if active is not None and active not in conversations:
            active = None

        self._adapters.clear()
        self._turns.clear()
        self._sessions.retain(conversations)
        self._state = ChatState(conversations=conversations, active_conversation_id=active, provider=provider)
        self._ready = True
        self._log(
            logging.INFO,
            "Loaded chat state",
            {},
            conversations=len(conversations),
            repaired=len(repaired),
            provider=provider,
        )

        try:
            if repaired:
                self._store.save_conversations(conversations)
            if active != stored.active_conversation_id:
                self._store.save_active_conversation_id(active)
        except StorageError as e:
            self._log(logging.ERROR, "Failed to persist repaired state", {}, code=e.code, error=e.message)

        self._notify()
        self.rehydrate_sessions()
        return self._state

    def rehydrate_sessions(self) -> int:
        """为有消息但没有会话句柄的会话重建句柄，返回新建数量。"""

        created = 0
        for name, cfg in PROVIDER_REGISTRY.items():
            if not cfg.requires_session or not self.credential(name):
                continue
            adapter = self._adapter(name)
            created += self._sessions.rehydrate(self._state.conversations, self._safe_session_factory(adapter))
        if created:
            self._log(logging.INFO, "Rehydrated provider sessions", {}, created=created)
        return created

    def _safe_session_factory(self, adapter: StreamAdapter):
        def factory(history: Sequence[Message]) -> Optional[Any]:
            try:
                return adapter.create_session(history)
            except BusinessError as e:
                self._log(logging.WARNING, "Failed to rebuild session", {}, provider=adapter.name, error=e.message)
                return None

        return factory

    def _repair_interrupted(
        self, conversations: Mapping[str, Conversation]
    ) -> Tuple[Dict[str, Conversation], List[str]]:
        """把上次运行遗留的空占位消息替换为“已中断”的错误消息，以便重试。

        判断依据只有 -model 后缀加空文本，正常结束但回复为空的消息在下次加载时也会被改写。
        """

        result: Dict[str, Conversation] = {}
        repaired: List[str] = []
        for cid, conv in conversations.items():
            last = conv.last_message
            if last is not None and last.is_placeholder and not last.text.strip():
                notice = text_message(new_id("msg", ERROR_SUFFIX), "model", self._settings.interrupted_message)
                conv = conv.with_messages(conv.messages[:-1] + (notice,))
                repaired.append(cid)
            result[cid] = conv
        return result, repaired

    # ---- 设置类操作 ----

    def set_credential(self, provider: str, api_key: str) -> None:
        """保存某个 Provider 的凭证。

        若此前两个 Provider 都没有凭证，则自动选中该 Provider。
        会话式 Provider 的凭证变化后，旧句柄全部作废并按消息历史重建。
        """

        cfg = self._provider_config(provider)
        key = (api_key or "").strip()
        had_any = any(self._credentials.values())
        self._credentials[cfg.name] = key
        self._adapters.pop(cfg.name, None)
        try:
            self._store.save_credential(cfg.name, key)
        except StorageError as e:
            self._log(logging.ERROR, "Failed to persist credential", {}, provider=cfg.name, error=e.message)
        if key and not had_any:
            self.select_provider(cfg.name)
        if cfg.requires_session:
            self._sessions.retain(())
            if key and self._ready:
                self.rehydrate_sessions()

    def select_provider(self, provider: str) -> None:
        cfg = self._provider_config(provider)
        self._commit(replace(self._state, provider=cfg.name))

    def select_conversation(self, conversation_id: Optional[str]) -> None:
        if conversation_id is not None and conversation_id not in self._state.conversations:
            raise ValidationError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        self._commit(replace(self._state, active_conversation_id=conversation_id))

    def new_conversation(self) -> Conversation:
        """显式创建空会话并设为当前会话，至少需要配置一个凭证。"""

        if not any(self._credentials.values()):
            raise MissingCredentialError(self._state.provider)
        conv = Conversation(id=new_id("conv"), title=self._settings.default_title)
        self._commit(replace(self._state.put(conv), active_conversation_id=conv.id))
        self._log(logging.INFO, "Created new conversation", {"conversation_id": conv.id})
        return conv

    def rename_conversation(self, conversation_id: str, title: str) -> None:
        stripped = (title or "").strip()
        if not stripped:
            return
        self._commit(self._state.update(conversation_id, lambda c: replace(c, title=stripped)))

    def delete_conversation(self, conversation_id: str) -> None:
        if conversation_id not in self._state.conversations:
            raise ValidationError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        self._sessions.discard(conversation_id)
        self._turns.pop(conversation_id, None)
        self._commit(self._state.remove(conversation_id))

    # ---- 发送流程 ----

    async def send_message(self, turn: Message, provider: Optional[str] = None) -> Conversation:
        """发送一条用户消息并把流式回复写入当前会话，返回已结束的会话。

        凭证缺失时抛出 MissingCredentialError，会话仍在回复时抛出
        ConversationBusyError，两种情况都不修改状态。
        Provider 侧的任何失败都会变成会话中的一条错误消息，不会向外抛出。
        """

        cfg = self._provider_config(provider or self._state.provider)
        if not self.credential(cfg.name):
            raise MissingCredentialError(cfg.name)

        log_ctx: Dict[str, Any] = {"trace_id": f"tr-{uuid4().hex}", "provider": cfg.name}
        conv = self._state.active_conversation
        if conv is None:
            conv = Conversation(
                id=new_id("conv"),
                title=title_from_turn(turn, self._settings.title_max_chars, self._settings.default_title),
            )
            self._commit(replace(self._state.put(conv), active_conversation_id=conv.id))
            log_ctx["conversation_id"] = conv.id
            self._log(logging.INFO, "Created new conversation", log_ctx)
        elif self.turn_state(conv.id) in BUSY_STATES:
            raise ConversationBusyError(conv.id)
        cid = conv.id
        log_ctx["conversation_id"] = cid
        start_time = time.time()

        self._turns[cid] = TurnState.SENDING
        history = conv.messages
        self._commit(self._state.update(cid, lambda c: c.append(turn)))
        placeholder_id = new_id("msg", PLACEHOLDER_SUFFIX)
        placeholder = Message(id=placeholder_id, role="model", parts=(TextPart(""),))
        self._commit(self._state.update(cid, lambda c: c.append(placeholder)))

        stream_state = StreamState(conversation=self._state.conversations[cid], placeholder_id=placeholder_id)
        deltas = 0
        try:
            adapter = self._adapter(cfg.name)
            session = None
            if adapter.requires_session:
                session = self._sessions.resolve(cid, history, adapter.create_session)
            else:
                # 会话句柄看不到本轮消息，下次使用时按历史重建
                self._sessions.discard(cid)
            self._log(logging.INFO, "Calling provider", log_ctx, message_count=len(history) + 1)
            async for delta in adapter.stream(history, turn, session):
                self._turns[cid] = TurnState.STREAMING
                stream_state = self._apply(cid, stream_state, Delta(delta))
                deltas += 1
            stream_state = self._apply(cid, stream_state, Complete())
            self._turns[cid] = TurnState.COMPLETE
            self._log(
                logging.INFO,
                "Completed turn",
                log_ctx,
                deltas=deltas,
                elapsed_seconds=round(time.time() - start_time, 2),
            )
        except Exception as exc:
            text = self._format_error(cfg.name, exc)
            stream_state = self._apply(cid, stream_state, Fail(text, new_id("msg", ERROR_SUFFIX)))
            self._turns[cid] = TurnState.FAILED
            self._log(
                logging.ERROR,
                "Turn failed",
                log_ctx,
                deltas=deltas,
                error_type=type(exc).__name__,
                error=str(exc),
            )
        finally:
            if self._turns.get(cid) in BUSY_STATES:
                self._turns[cid] = TurnState.IDLE
        return self._state.conversations.get(cid, stream_state.conversation)

    async def retry_last_turn(
        self, conversation_id: Optional[str] = None, provider: Optional[str] = None
    ) -> Conversation:
        """重发以错误消息结尾的会话中最后一条用户消息。

        错误消息与对应的用户消息会先被移除，会话句柄也会丢弃，
        以便按剩余历史重建上下文。
        """

        cid = conversation_id or self._state.active_conversation_id
        conv = self._state.conversations.get(cid) if cid else None
        if conv is None:
            raise ValidationError(code="CONVERSATION_NOT_FOUND", message=str(cid), http_status=404)
        if self.turn_state(conv.id) in BUSY_STATES:
            raise ConversationBusyError(conv.id)
        msgs = conv.messages
        if len(msgs) < 2 or not msgs[-1].is_error or msgs[-2].role != "user":
            raise ValidationError(code="NOTHING_TO_RETRY", message=f"Conversation {conv.id} has no failed turn")
        cfg = self._provider_config(provider or self._state.provider)
        if not self.credential(cfg.name):
            raise MissingCredentialError(cfg.name)

        turn = msgs[-2]
        trimmed = self._state.update(conv.id, lambda c: c.with_messages(msgs[:-2]))
        self._commit(replace(trimmed, active_conversation_id=conv.id))
        self._sessions.discard(conv.id)
        self._log(logging.INFO, "Retrying turn", {"conversation_id": conv.id}, message_id=turn.id)
        return await self.send_message(turn, cfg.name)

    # ---- 内部工具 ----

    def _apply(self, conversation_id: str, stream_state: StreamState, event: StreamEvent) -> StreamState:
        """把事件作用到最新的会话快照上，有可见变化时提交。"""

        conv = self._state.conversations.get(conversation_id)
        if conv is None:
            return accumulator.apply(stream_state, event)
        updated = accumulator.apply(replace(stream_state, conversation=conv), event)
        if updated.conversation is not conv:
            self._commit(self._state.put(updated.conversation))
        return updated

    def _format_error(self, provider: str, exc: Exception) -> str:
        raw = exc.message if isinstance(exc, BusinessError) else str(exc)
        raw = raw or self._settings.unknown_error_message
        if provider == OPENAI_CONFIG.name and re.search(self._settings.quota_pattern, raw, re.IGNORECASE):
            return self._settings.quota_message
        return f"{self._settings.error_prefix}{raw}"

    def _commit(self, state: ChatState) -> None:
        previous = self._state
        if state is previous:
            return
        self._state = state
        if self._ready:
            self._persist(previous, state)
        self._notify()

    def _persist(self, previous: ChatState, state: ChatState) -> None:
        try:
            if state.conversations is not previous.conversations:
                self._store.save_conversations(state.conversations)
            if state.active_conversation_id != previous.active_conversation_id:
                self._store.save_active_conversation_id(state.active_conversation_id)
            if state.provider != previous.provider:
                self._store.save_provider(state.provider)
        except StorageError as e:
            self._log(logging.ERROR, "Failed to persist chat state", {}, code=e.code, error=e.message)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("State listener failed")

    def _adapter(self, provider: str) -> StreamAdapter:
        adapter = self._adapters.get(provider)
        if adapter is None:
            adapter = self._adapter_factory(provider, self.credential(provider) or None)
            self._adapters[provider] = adapter
        return adapter

    def _default_adapter_factory(self, provider: str, api_key: Optional[str]) -> StreamAdapter:
        return create_adapter(provider, api_key=api_key, cfg=self._settings)

    @staticmethod
    def _provider_config(provider: str):
        try:
            return get_provider_config(provider)
        except KeyError:
            raise ValidationError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {provider!r}")

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
