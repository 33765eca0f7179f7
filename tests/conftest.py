"""
测试公共夹具

- FakeDataStore: 内存数据存储，按 Query 过滤 / 排序 / 截断，并记录写入
- ScriptedUpstream: 按脚本逐行返回 SSE 的上游
"""

import asyncio
import json
import os
import sys
from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

# 添加项目根目录到 path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from crm_assistant.config.settings import Settings
from crm_assistant.exceptions import DataStoreError, UpstreamError
from crm_assistant.services.actions.executor import ActionExecutor
from crm_assistant.services.chat_service import AssistantChatService
from crm_assistant.services.context.assembler import ContextAssembler
from crm_assistant.services.conversation_store import ConversationStore
from crm_assistant.services.upstream import UpstreamClient, UpstreamStream
from crm_assistant.storage.datastore import DataStore, FilterOp, Query


FIXED_NOW = datetime(2025, 3, 12, 15, 30, tzinfo=timezone.utc)  # 星期三


# ==================== FakeDataStore ====================

def _matches(row: Dict[str, Any], column: str, op: FilterOp, value: Any) -> bool:
    current = row.get(column)
    if op == FilterOp.EQ:
        return current == value
    if current is None:
        return False
    if op == FilterOp.NEQ:
        return current != value
    if op == FilterOp.LT:
        return current < value
    if op == FilterOp.LTE:
        return current <= value
    if op == FilterOp.GT:
        return current > value
    if op == FilterOp.GTE:
        return current >= value
    if op == FilterOp.IN:
        return current in value
    if op == FilterOp.NOT_IN:
        return current not in value
    if op == FilterOp.ILIKE:
        return value.strip("%").lower() in str(current).lower()
    raise AssertionError(f"unsupported op {op}")


class FakeDataStore(DataStore):
    """内存数据存储（忽略 columns，返回整行）"""

    def __init__(self, tables: Optional[Dict[str, List[dict]]] = None):
        self.tables: Dict[str, List[dict]] = deepcopy(tables or {})
        self.queries: List[Query] = []
        self.inserts: List[tuple] = []
        self.updates: List[tuple] = []
        self.failing_tables: set = set()
        self.fail_writes = False

    async def select(self, query: Query) -> List[Dict[str, Any]]:
        self.queries.append(query)
        await asyncio.sleep(0)
        if query.table in self.failing_tables:
            raise DataStoreError(f"{query.table}: connection refused")

        rows = [
            row for row in self.tables.get(query.table, [])
            if all(_matches(row, f.column, f.op, f.value) for f in query.filters)
        ]
        if query.order_by:
            present = [r for r in rows if r.get(query.order_by) is not None]
            missing = [r for r in rows if r.get(query.order_by) is None]
            present.sort(key=lambda r: r[query.order_by], reverse=query.descending)
            rows = missing + present if query.nulls_first else present + missing
        if query.limit is not None:
            rows = rows[:query.limit]
        return deepcopy(rows)

    async def insert(self, table: str, row: Dict[str, Any]) -> None:
        if self.fail_writes:
            raise DataStoreError(f"{table}: permission denied")
        self.inserts.append((table, dict(row)))
        self.tables.setdefault(table, []).append(dict(row))

    async def update(self, table: str, values: Dict[str, Any], match: Dict[str, Any]) -> None:
        if self.fail_writes:
            raise DataStoreError(f"{table}: permission denied")
        self.updates.append((table, dict(values), dict(match)))
        for row in self.tables.get(table, []):
            if all(row.get(k) == v for k, v in match.items()):
                row.update(values)


# ==================== ScriptedUpstream ====================

def sse(event: dict) -> str:
    return f"data: {json.dumps(event)}"


def text_delta(text: str) -> str:
    return sse({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}})


def reply_lines(*chunks: str, input_tokens: int = 120, output_tokens: int = 30) -> List[str]:
    """一次完整上游回复的 SSE 行"""
    lines = [
        "event: message_start",
        sse({"type": "message_start", "message": {"usage": {"input_tokens": input_tokens, "output_tokens": 1}}}),
        "",
        sse({"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}),
        ": ping",
    ]
    for chunk in chunks:
        lines.append(text_delta(chunk))
        lines.append("")
    lines.extend([
        sse({"type": "content_block_stop", "index": 0}),
        sse({"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": output_tokens}}),
        sse({"type": "message_stop"}),
    ])
    return lines


class ScriptedStream(UpstreamStream):
    def __init__(self, lines: List[str], hang: bool = False, fail_with: Optional[Exception] = None):
        self._lines = lines
        self._hang = hang
        self._fail_with = fail_with
        self.closed = False
        self.lines_read = 0

    async def lines(self):
        for line in self._lines:
            await asyncio.sleep(0)
            self.lines_read += 1
            yield line
        if self._fail_with is not None:
            raise self._fail_with
        if self._hang:
            await asyncio.Event().wait()

    async def aclose(self) -> None:
        self.closed = True


class ScriptedUpstream(UpstreamClient):
    """记录请求负载，按脚本返回流"""

    def __init__(self, lines: Optional[List[str]] = None, error: Optional[UpstreamError] = None, **stream_kwargs):
        self._lines = lines if lines is not None else reply_lines("Hola")
        self._error = error
        self._stream_kwargs = stream_kwargs
        self.payloads: List[dict] = []
        self.streams: List[ScriptedStream] = []

    async def open_stream(self, payload: Dict[str, Any]) -> UpstreamStream:
        self.payloads.append(payload)
        if self._error is not None:
            raise self._error
        stream = ScriptedStream(self._lines, **self._stream_kwargs)
        self.streams.append(stream)
        return stream


# ==================== 夹具 ====================

@pytest.fixture
def settings():
    return Settings(_env_file=None, ANTHROPIC_API_KEY="test-key", HISTORY_WINDOW=18)


@pytest.fixture
def datastore():
    return FakeDataStore()


@pytest.fixture
def conversation_store():
    return ConversationStore()


@pytest.fixture
def assembler(datastore):
    return ContextAssembler(datastore, clock=lambda: FIXED_NOW)


@pytest.fixture
def executor(datastore):
    return ActionExecutor(datastore, clock=lambda: FIXED_NOW)


def make_service(settings, datastore, conversation_store, upstream) -> AssistantChatService:
    return AssistantChatService(
        settings=settings,
        conversation_store=conversation_store,
        assembler=ContextAssembler(datastore, clock=lambda: FIXED_NOW),
        executor=ActionExecutor(datastore, clock=lambda: FIXED_NOW),
        upstream=upstream
    )
