"""
Streaming Relay - 上游 SSE 到出站事件流的转换

状态机：

    IDLE -> SENDING -> STREAMING -> FINALIZING -> DONE
               \\            \\             \\
                +-> ERROR    +-> ERROR      +-> ERROR

events() 产出的事件是普通 dict：
- {"text": ...}                  增量文本（以及动作执行结果）
- {"done": True, "sessionId": ...}  成功结束，总是最后一个事件
- {"error": ...}                 流开始后的失败，之后不再有事件

调用方关闭生成器（客户端断开）时立即释放上游连接，不执行动作也不持久化。
"""
import asyncio
import json
import logging
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

from crm_assistant.exceptions import RelayStateError, StoreError, UpstreamError
from crm_assistant.models.conversation import MessageRole
from crm_assistant.services.actions.executor import ActionExecutor
from crm_assistant.services.conversation_store import ConversationStore
from crm_assistant.services.upstream import UpstreamClient, UpstreamStream
from crm_assistant.utils.sanitizer import strip_lone_surrogates

logger = logging.getLogger(__name__)


class RelayState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DONE = "done"
    ERROR = "error"


ALLOWED_TRANSITIONS = {
    RelayState.IDLE: {RelayState.SENDING},
    RelayState.SENDING: {RelayState.STREAMING, RelayState.ERROR},
    RelayState.STREAMING: {RelayState.FINALIZING, RelayState.ERROR},
    RelayState.FINALIZING: {RelayState.DONE, RelayState.ERROR},
    RelayState.DONE: set(),
    RelayState.ERROR: set(),
}


def parse_event_line(line: str) -> Optional[Dict[str, Any]]:
    """
    解析一行上游 SSE

    Returns:
        事件 dict；非 ``data:`` 行、``[DONE]``、无法解析的负载返回 None
    """
    if not line.startswith("data:"):
        return None
    payload = line[len("data:"):].strip()
    if not payload or payload == "[DONE]":
        return None
    try:
        event = json.loads(payload)
    except ValueError:
        logger.debug(f"丢弃无法解析的上游行: {payload[:80]}")
        return None
    return event if isinstance(event, dict) else None


def _mapping(value: Any) -> Dict[str, Any]:
    """事件中的嵌套对象；类型不符按空对象处理"""
    return value if isinstance(value, dict) else {}


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class StreamingRelay:
    """
    单轮对话的流式转发器

    Args:
        upstream: 上游客户端
        conversation_store: 会话存储（结束时写入 assistant 消息）
        executor: 动作执行器
        session_id: 会话ID（出现在 done 事件中）
        model: 上游模型名
        max_tokens: 上游 max_tokens
        context_summary: 随 assistant 消息保存的上下文摘要
    """

    def __init__(
        self,
        upstream: UpstreamClient,
        conversation_store: ConversationStore,
        executor: ActionExecutor,
        session_id: str,
        model: str,
        max_tokens: int = 4096,
        context_summary: Optional[str] = None
    ):
        self.upstream = upstream
        self.conversation_store = conversation_store
        self.executor = executor
        self.session_id = session_id
        self.model = model
        self.max_tokens = max_tokens
        self.context_summary = context_summary

        self.state = RelayState.IDLE
        self.accumulated = ""
        self.input_tokens: Optional[int] = None
        self.output_tokens: Optional[int] = None
        self._stream: Optional[UpstreamStream] = None

    def _transition(self, target: RelayState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise RelayStateError(f"Illegal relay transition: {self.state.value} -> {target.value}")
        logger.debug(f"relay {self.session_id}: {self.state.value} -> {target.value}")
        self.state = target

    @property
    def tokens_used(self) -> Optional[int]:
        if self.input_tokens is None and self.output_tokens is None:
            return None
        return (self.input_tokens or 0) + (self.output_tokens or 0)

    def build_payload(self, system: str, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system,
            "messages": messages,
            "stream": True
        }

    async def open(self, system: str, messages: List[Dict[str, str]]) -> None:
        """
        发送上游请求

        Raises:
            UpstreamError: 上游连接失败或非成功状态（流尚未开始）
        """
        self._transition(RelayState.SENDING)
        try:
            self._stream = await self.upstream.open_stream(self.build_payload(system, messages))
        except UpstreamError:
            self._transition(RelayState.ERROR)
            raise
        self._transition(RelayState.STREAMING)

    def _record_usage(self, event: Dict[str, Any]) -> None:
        kind = event.get("type")
        if kind == "message_start":
            usage = _mapping(_mapping(event.get("message")).get("usage"))
            if _is_count(usage.get("input_tokens")):
                self.input_tokens = usage["input_tokens"]
        elif kind == "message_delta":
            usage = _mapping(event.get("usage"))
            if _is_count(usage.get("output_tokens")):
                self.output_tokens = usage["output_tokens"]

    async def _relay_upstream(self) -> AsyncIterator[str]:
        """逐个产出增量文本；正常结束表示收到了 message_stop"""
        lines = self._stream.lines()
        try:
            async for line in lines:
                event = parse_event_line(line)
                if event is None:
                    continue
                kind = event.get("type")
                if kind == "content_block_delta":
                    text = _mapping(event.get("delta")).get("text")
                    if isinstance(text, str):
                        if text:
                            yield strip_lone_surrogates(text)
                    else:
                        logger.debug(f"丢弃格式不符的 content_block_delta: {event}")
                elif kind == "message_stop":
                    return
                elif kind == "error":
                    error_type = _mapping(event.get("error")).get("type")
                    if not isinstance(error_type, str):
                        error_type = None
                    logger.error(f"❌ 上游错误事件: {event.get('error')}")
                    raise UpstreamError(f"Upstream error: {error_type or 'unknown'}")
                else:
                    self._record_usage(event)
            raise UpstreamError("Upstream stream ended before message_stop")
        finally:
            await lines.aclose()
            await self._stream.aclose()

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        """出站事件生成器"""
        if self.state is not RelayState.STREAMING:
            raise RelayStateError(f"events() requires an open stream, state={self.state.value}")

        upstream = self._relay_upstream()
        try:
            async for text in upstream:
                self.accumulated += text
                yield {"text": text}
        except UpstreamError as e:
            self._transition(RelayState.ERROR)
            logger.error(f"❌ 流式转发中断 (session={self.session_id}): {e.message}")
            yield {"error": e.message}
            return
        except (GeneratorExit, asyncio.CancelledError):
            self._transition(RelayState.ERROR)
            logger.warning(f"⚠️  客户端断开，已释放上游连接 (session={self.session_id})")
            raise
        finally:
            await upstream.aclose()

        self._transition(RelayState.FINALIZING)
        for result in await self.executor.execute_all(self.accumulated, session_id=self.session_id):
            chunk = f"\n\n{result.message}"
            self.accumulated += chunk
            yield {"text": chunk}

        try:
            await self.conversation_store.append(
                self.session_id,
                MessageRole.ASSISTANT,
                self.accumulated,
                tokens_used=self.tokens_used,
                context_summary=self.context_summary
            )
        except StoreError as e:
            self._transition(RelayState.ERROR)
            logger.error(f"❌ assistant 消息保存失败 (session={self.session_id}): {e.message}")
            yield {"error": e.message}
            return

        self._transition(RelayState.DONE)
        logger.info(f"✅ 对话完成 (session={self.session_id}, tokens={self.tokens_used})")
        yield {"done": True, "sessionId": self.session_id}


__all__ = [
    "RelayState",
    "ALLOWED_TRANSITIONS",
    "StreamingRelay",
    "parse_event_line",
]
