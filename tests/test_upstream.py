"""
Anthropic 上游客户端单元测试（httpx.MockTransport，无真实网络）
"""

import json

import httpx
import pytest

from crm_assistant.exceptions import UpstreamError
from crm_assistant.services.upstream import AnthropicClient


def make_client(handler) -> AnthropicClient:
    return AnthropicClient(
        api_key="test-key",
        base_url="https://api.example.test/",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )


class TestAnthropicClient:
    """AnthropicClient.open_stream"""

    @pytest.mark.asyncio
    async def test_request_shape_and_lines(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            body = 'data: {"type": "message_stop"}\n\ndata: [DONE]\n\n'
            return httpx.Response(200, content=body.encode("utf-8"), headers={"content-type": "text/event-stream"})

        client = make_client(handler)
        stream = await client.open_stream({"model": "m", "stream": True})
        lines = [line async for line in stream.lines()]
        await stream.aclose()
        await client.close()

        assert seen["url"] == "https://api.example.test/v1/messages"
        assert seen["headers"]["x-api-key"] == "test-key"
        assert seen["headers"]["anthropic-version"] == "2023-06-01"
        assert seen["body"] == {"model": "m", "stream": True}
        assert 'data: {"type": "message_stop"}' in lines
        assert "data: [DONE]" in lines

    @pytest.mark.asyncio
    async def test_non_success_status_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"type": "error", "error": {"type": "authentication_error"}})

        client = make_client(handler)
        with pytest.raises(UpstreamError) as exc_info:
            await client.open_stream({"model": "m"})
        await client.close()

        assert exc_info.value.status == 401
        assert "authentication_error" in exc_info.value.body
        assert exc_info.value.status_code == 502
        assert exc_info.value.message == "Error calling Anthropic API"

    @pytest.mark.asyncio
    async def test_connect_failure_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        client = make_client(handler)
        with pytest.raises(UpstreamError):
            await client.open_stream({"model": "m"})
        await client.close()

    def test_default_client_is_bounded(self):
        client = AnthropicClient(api_key="k", connect_timeout=3.0, read_timeout=30.0)
        timeout = client._client.timeout

        assert timeout.connect == 3.0
        assert timeout.read == 30.0
