"""
Assistant Chat Service - 单轮对话编排

流程：
1. 校验请求与配置
2. 获取或生成会话ID
3. 并发读取：历史 / base 上下文 / dynamic 上下文
4. 保存用户消息（失败则中止本轮）
5. 组装系统提示词与 messages
6. 打开上游流，返回 StreamingRelay 供 API 层逐事件转发
"""
import asyncio
import logging
import uuid
from typing import Optional

from crm_assistant.config.settings import Settings
from crm_assistant.exceptions import ChatRequestError, ConfigurationError
from crm_assistant.models.conversation import ChatRequest, MessageRole
from crm_assistant.services.actions.executor import ActionExecutor
from crm_assistant.services.context.assembler import ContextAssembler
from crm_assistant.services.conversation_store import ConversationStore
from crm_assistant.services.prompt_builder import build_system_prompt, compose_system
from crm_assistant.services.streaming_relay import StreamingRelay
from crm_assistant.services.upstream import UpstreamClient
from crm_assistant.utils.sanitizer import sanitize, strip_lone_surrogates

logger = logging.getLogger(__name__)


class AssistantChatService:
    """
    对话服务

    所有协作者在启动时构建一次并显式注入，便于用假实现测试。
    """

    def __init__(
        self,
        settings: Settings,
        conversation_store: ConversationStore,
        assembler: ContextAssembler,
        executor: ActionExecutor,
        upstream: Optional[UpstreamClient] = None
    ):
        self.settings = settings
        self.conversation_store = conversation_store
        self.assembler = assembler
        self.executor = executor
        self.upstream = upstream

    async def start_turn(self, request: ChatRequest) -> StreamingRelay:
        """
        开始一轮对话

        Returns:
            已打开上游流的 StreamingRelay

        Raises:
            ChatRequestError: 缺少 message
            ConfigurationError: 未配置 ANTHROPIC_API_KEY
            ContextUnavailableError: base 上下文全部读取失败
            StoreError: 历史读取或用户消息保存失败
            UpstreamError: 上游非成功状态
        """
        if not request.message:
            raise ChatRequestError()
        if not self.settings.ANTHROPIC_API_KEY or self.upstream is None:
            logger.error("❌ ANTHROPIC_API_KEY 未配置")
            raise ConfigurationError()

        session_id = request.session_id or str(uuid.uuid4())
        logger.info(f"Processing turn for session {session_id}: {request.message[:50]}...")

        history, context = await asyncio.gather(
            self.conversation_store.history(session_id, self.settings.HISTORY_WINDOW),
            self.assembler.assemble(request.message, request.page_context),
            return_exceptions=True
        )
        for outcome in (history, context):
            if isinstance(outcome, BaseException):
                raise outcome

        await self.conversation_store.append(
            session_id,
            MessageRole.USER,
            strip_lone_surrogates(request.message)
        )

        messages = [
            {"role": entry["role"], "content": sanitize(entry["content"])}
            for entry in history
        ]
        messages.append({"role": MessageRole.USER.value, "content": sanitize(request.message)})

        system = compose_system(
            build_system_prompt(request.user_name, request.user_role),
            sanitize(context.text)
        )

        relay = StreamingRelay(
            upstream=self.upstream,
            conversation_store=self.conversation_store,
            executor=self.executor,
            session_id=session_id,
            model=self.settings.ANTHROPIC_MODEL,
            max_tokens=self.settings.ANTHROPIC_MAX_TOKENS,
            context_summary=context.summary
        )
        await relay.open(system, messages)
        return relay


__all__ = [
    "AssistantChatService",
]
