"""
AI Assistant API routes - 业务助手对话接口

POST 成功时返回 SSE 流；流开始前的错误一律以纯 JSON {error} 返回。
"""
import logging
from fastapi import APIRouter, Request
from pydantic import ValidationError

from crm_assistant.exceptions import AssistantError, ChatRequestError
from crm_assistant.models.conversation import ChatRequest
from crm_assistant.api.streaming_utils import (
    create_sse_response,
    error_response,
    preflight_response,
    relay_to_sse
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["ai-assistant"])


async def parse_chat_request(request: Request) -> ChatRequest:
    """
    解析请求体

    Raises:
        ChatRequestError: 非法 JSON 或字段类型错误
    """
    try:
        body = await request.json()
    except ValueError:
        raise ChatRequestError("Invalid JSON body")

    if not isinstance(body, dict):
        raise ChatRequestError("Invalid JSON body")

    try:
        return ChatRequest.model_validate(body)
    except ValidationError as e:
        logger.warning(f"⚠️  请求体校验失败: {e.errors()}")
        raise ChatRequestError("Invalid request body")


@router.options("/ai-assistant")
async def ai_assistant_preflight():
    """CORS 预检"""
    return preflight_response()


@router.post("/ai-assistant")
async def ai_assistant(request: Request):
    """
    业务助手对话接口（SSE 流式）

    核心逻辑：
    1. 解析并校验请求
    2. 由 AssistantChatService 完成上下文组装、保存用户消息、打开上游流
    3. 逐事件转发 StreamingRelay 的输出，最后一个事件为 {done, sessionId}
    """
    chat_service = request.app.state.chat_service

    try:
        chat_request = await parse_chat_request(request)
        relay = await chat_service.start_turn(chat_request)
    except AssistantError as e:
        logger.error(f"AI assistant error ({e.status_code}): {e.message}")
        return error_response(e.status_code, e.message)

    return create_sse_response(relay_to_sse(relay.events()))
