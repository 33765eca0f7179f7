"""
SSE 流式响应工具函数
出站事件统一为 ``data: <json>\\n\\n``，所有响应都带 CORS 头
"""
import json
import logging
from typing import Any, AsyncIterator, Dict

from fastapi.responses import JSONResponse, Response, StreamingResponse

logger = logging.getLogger(__name__)

# 所有响应（含 OPTIONS 预检）都携带的 CORS 头
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type"
}

# 标准 SSE 响应头
SSE_HEADERS = {
    **CORS_HEADERS,
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no"  # 禁用 nginx 缓冲
}


def format_sse_event(data: dict) -> str:
    """
    格式化 SSE 事件

    Args:
        data: 要发送的数据字典

    Returns:
        SSE 格式的字符串
    """
    return f"data: {json.dumps(data)}\n\n"


def sse_text_event(text: str) -> str:
    """增量文本事件"""
    return format_sse_event({"text": text})


def sse_done_event(session_id: str) -> str:
    """
    生成完成 SSE 事件

    Args:
        session_id: 会话 ID（新会话时为服务端生成的 ID）

    Returns:
        SSE 格式的完成事件
    """
    return format_sse_event({"done": True, "sessionId": session_id})


def sse_error_event(message: str) -> str:
    """流开始后的错误事件"""
    return format_sse_event({"error": message})


async def relay_to_sse(events: AsyncIterator[Dict[str, Any]]) -> AsyncIterator[str]:
    """
    把 StreamingRelay 的事件转换为 SSE 文本

    生成器被关闭时同时关闭 relay 的事件生成器（释放上游连接）。
    """
    try:
        async for event in events:
            if "text" in event:
                yield sse_text_event(event["text"])
            elif event.get("done"):
                yield sse_done_event(event["sessionId"])
            else:
                yield sse_error_event(event.get("error", ""))
    finally:
        await events.aclose()


def create_sse_response(generator: AsyncIterator[str]) -> StreamingResponse:
    """
    创建标准 SSE 响应

    Args:
        generator: 异步事件生成器

    Returns:
        StreamingResponse 对象
    """
    return StreamingResponse(
        generator,
        media_type="text/event-stream",
        headers=SSE_HEADERS
    )


def error_response(status_code: int, message: str) -> JSONResponse:
    """同步错误（流尚未开始）：纯 JSON {error}"""
    return JSONResponse(status_code=status_code, content={"error": message}, headers=CORS_HEADERS)


def preflight_response() -> Response:
    """OPTIONS 预检：空响应体"""
    return Response(status_code=200, headers=CORS_HEADERS)
