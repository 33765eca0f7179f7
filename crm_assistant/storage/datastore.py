"""
Data Store - 关系型数据存储的读写接口

上下文组装与动作执行只通过这里访问业务数据，
查询以 Query 值对象描述，具体后端（Supabase / 测试用内存实现）负责翻译。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class FilterOp(str, Enum):
    """支持的过滤操作"""
    EQ = "eq"
    NEQ = "neq"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    IN = "in"
    NOT_IN = "not_in"
    ILIKE = "ilike"


@dataclass(frozen=True)
class Filter:
    column: str
    op: FilterOp
    value: Any


@dataclass(frozen=True)
class Query:
    """
    单表查询描述

    columns 使用 PostgREST 语法，可以内嵌关联表，
    例如 ``"id, concept, projects(name, clients(company_name))"``。
    """
    table: str
    columns: str = "*"
    filters: Tuple[Filter, ...] = ()
    order_by: Optional[str] = None
    descending: bool = False
    nulls_first: Optional[bool] = None
    limit: Optional[int] = None

    def where(self, column: str, op: FilterOp, value: Any) -> "Query":
        return replace(self, filters=self.filters + (Filter(column, op, value),))

    def order(self, column: str, descending: bool = False, nulls_first: Optional[bool] = None) -> "Query":
        return replace(self, order_by=column, descending=descending, nulls_first=nulls_first)

    def take(self, limit: int) -> "Query":
        return replace(self, limit=limit)


class DataStore(ABC):
    """
    数据存储抽象接口

    实现必须把底层客户端异常包装为 DataStoreError。
    """

    @abstractmethod
    async def select(self, query: Query) -> List[Dict[str, Any]]:
        """
        执行查询

        Args:
            query: 查询描述

        Returns:
            行列表（可能包含内嵌的关联数据）
        """
        pass

    @abstractmethod
    async def insert(self, table: str, row: Dict[str, Any]) -> None:
        """插入一行"""
        pass

    @abstractmethod
    async def update(self, table: str, values: Dict[str, Any], match: Dict[str, Any]) -> None:
        """
        更新匹配的行

        Args:
            table: 表名
            values: 要写入的列
            match: 等值匹配条件（column -> value）
        """
        pass

    async def close(self) -> None:
        """关闭底层连接（可选）"""
        return None


__all__ = [
    "FilterOp",
    "Filter",
    "Query",
    "DataStore",
]
