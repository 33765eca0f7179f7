"""
Context Assembler - 组装每轮对话注入系统提示的业务上下文

四部分：
1. base: 每轮都有的关键指标
2. dynamic: 按消息关键词触发的规则（规则表顺序）
3. page: 调用方当前页面
4. predictive: 预测分析（由 dynamic 规则表中的 predictive 规则触发）

单个读取失败只会让对应的区块被省略；base 全部失败则本轮无法继续。
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from crm_assistant.exceptions import ContextUnavailableError
from crm_assistant.models.conversation import PageContext
from crm_assistant.storage.datastore import DataStore
from .base_context import base_queries, render_base
from .fetching import SectionResult, fetch_all
from .predictive import predictive_queries, render_predictive
from .rules import DEFAULT_RULES, ContextRule

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AssembledContext:
    """One turn's context text plus what went into it."""
    text: str
    topics: List[str] = field(default_factory=list)
    page: bool = False

    @property
    def summary(self) -> str:
        dynamic = f"dynamic({', '.join(self.topics)})" if self.topics else "none"
        page = " + page" if self.page else ""
        return f"Context included: base + {dynamic}{page}"


class ContextAssembler:
    """
    业务上下文组装器

    Args:
        datastore: 数据读取接口
        rules: 动态规则表（默认 DEFAULT_RULES）
        row_cap: base 批量读取的行数上限
        clock: 当前时间来源（测试可注入）
    """

    def __init__(
        self,
        datastore: DataStore,
        rules: Optional[Sequence[ContextRule]] = None,
        row_cap: int = 2000,
        clock: Callable[[], datetime] = utc_now
    ):
        self.datastore = datastore
        self.rules = tuple(rules) if rules is not None else DEFAULT_RULES
        self.row_cap = row_cap
        self.clock = clock

    async def assemble_base(self) -> str:
        """
        基础上下文

        Raises:
            ContextUnavailableError: 所有读取都失败
        """
        now = self.clock()
        queries = base_queries(now, self.row_cap)
        data = await fetch_all(
            {name: self.datastore.select(query) for name, query in queries.items()},
            label="base"
        )
        if all(value is None for value in data.values()):
            logger.error("❌ 基础上下文全部读取失败")
            raise ContextUnavailableError()
        return render_base(data, now)

    async def _run_rule(self, rule: ContextRule, message: str, now: datetime) -> SectionResult:
        try:
            data = await rule.fetch(self.datastore, message, now)
            return SectionResult(rule.topic, True, rule.render(data, now) if data is not None else "")
        except Exception as e:
            logger.warning(f"⚠️  上下文区块 '{rule.topic}' 失败，已省略: {e}")
            return SectionResult(rule.topic, False, error=str(e))

    async def dynamic_sections(self, message: str) -> List[SectionResult]:
        """触发的规则并发读取，按规则表顺序返回各自结果"""
        now = self.clock()
        fired = [rule for rule in self.rules if rule.matches(message)]
        if not fired:
            return []
        logger.debug(f"动态上下文触发: {[rule.topic for rule in fired]}")
        return list(await asyncio.gather(*(self._run_rule(rule, message, now) for rule in fired)))

    async def assemble_dynamic(self, message: str) -> str:
        sections = await self.dynamic_sections(message)
        return "".join(s.text for s in sections if s.ok)

    async def assemble_predictive(self) -> str:
        now = self.clock()
        data = await fetch_all(
            {name: self.datastore.select(query) for name, query in predictive_queries(now).items()},
            label="predictive"
        )
        return render_predictive(data, now)

    @staticmethod
    def render_page_context(page_context: Optional[PageContext]) -> str:
        if page_context is None:
            return ""
        text = f"\n\n══════ CONTEXTO DE PÁGINA ACTUAL ══════\nEl usuario está viendo: {page_context.page}\n"
        if page_context.data is not None:
            text += f"Datos: {json.dumps(page_context.data, ensure_ascii=False, separators=(',', ':'), default=str)}"
        return text

    async def assemble(self, message: str, page_context: Optional[PageContext] = None) -> AssembledContext:
        """
        base 与 dynamic 并发组装

        Returns:
            AssembledContext（text 未清洗，由调用方统一 sanitize）
        """
        base, sections = await asyncio.gather(
            self.assemble_base(),
            self.dynamic_sections(message)
        )
        included = [s for s in sections if s.ok and s.text]
        text = base + "".join(s.text for s in included) + self.render_page_context(page_context)
        return AssembledContext(
            text=text,
            topics=[s.topic for s in included],
            page=page_context is not None
        )


__all__ = [
    "AssembledContext",
    "ContextAssembler",
]
