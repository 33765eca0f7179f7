"""
Upstream client - Anthropic Messages API (streaming)

请求以 stream=True 发送；非 2xx 状态在流开始前以 UpstreamError 抛出，
流读取过程中的传输错误 / 超时同样转换为 UpstreamError。
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from crm_assistant.exceptions import UpstreamError

logger = logging.getLogger(__name__)


class UpstreamStream(ABC):
    """一次上游响应的逐行读取接口"""

    @abstractmethod
    def lines(self) -> AsyncIterator[str]:
        """逐行产出响应体（不含换行符）"""
        pass

    @abstractmethod
    async def aclose(self) -> None:
        """释放连接（可重复调用）"""
        pass


class UpstreamClient(ABC):
    """语言模型提供方客户端"""

    @abstractmethod
    async def open_stream(self, payload: Dict[str, Any]) -> UpstreamStream:
        """
        发送请求并打开流

        Raises:
            UpstreamError: 连接失败或非成功状态
        """
        pass

    async def close(self) -> None:
        return None


class HttpxUpstreamStream(UpstreamStream):
    """httpx 流式响应包装"""

    def __init__(self, response: httpx.Response):
        self._response = response

    async def lines(self) -> AsyncIterator[str]:
        try:
            async for line in self._response.aiter_lines():
                yield line
        except httpx.HTTPError as e:
            logger.error(f"❌ 上游流读取失败: {type(e).__name__}: {e}")
            raise UpstreamError(f"Upstream stream interrupted: {type(e).__name__}") from e

    async def aclose(self) -> None:
        await self._response.aclose()


class AnthropicClient(UpstreamClient):
    """
    Anthropic Messages API 客户端

    Args:
        api_key: x-api-key
        base_url: API 根地址
        version: anthropic-version 请求头
        connect_timeout: 连接超时（秒）
        read_timeout: 两次读取之间的最长等待（秒）
        client: 可注入的 httpx.AsyncClient（测试用 MockTransport）
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.anthropic.com",
        version: str = "2023-06-01",
        connect_timeout: float = 10.0,
        read_timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.version = version
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(read_timeout, connect=connect_timeout)
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.version,
            "Content-Type": "application/json"
        }

    async def open_stream(self, payload: Dict[str, Any]) -> UpstreamStream:
        request = self._client.build_request(
            "POST",
            f"{self.base_url}/v1/messages",
            headers=self._headers(),
            json=payload
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error(f"❌ Anthropic API 连接失败: {type(e).__name__}: {e}")
            raise UpstreamError() from e

        if not response.is_success:
            body = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            logger.error(f"❌ Anthropic API error: status={response.status_code}, body={body[:500]}")
            raise UpstreamError(status=response.status_code, body=body)

        return HttpxUpstreamStream(response)

    async def close(self) -> None:
        await self._client.aclose()


__all__ = [
    "UpstreamStream",
    "UpstreamClient",
    "HttpxUpstreamStream",
    "AnthropicClient",
]
