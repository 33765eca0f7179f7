"""
Supabase Data Store - 基于 supabase-py 异步客户端的数据存储实现
"""

import logging
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client

from crm_assistant.exceptions import DataStoreError
from .datastore import DataStore, FilterOp, Query

logger = logging.getLogger(__name__)


class SupabaseDataStore(DataStore):
    """
    Supabase (PostgREST) 数据存储

    使用 service role key，所有查询在服务端执行。
    """

    def __init__(self, url: str, key: str):
        """
        初始化 Supabase 存储

        Args:
            url: 项目 URL
            key: service role key
        """
        self.url = url
        self.key = key
        self.client: Optional[AsyncClient] = None

        logger.info(f"初始化 SupabaseDataStore: {url}")

    async def connect(self) -> None:
        """创建异步客户端"""
        if self.client is not None:
            return
        self.client = await acreate_client(self.url, self.key)
        logger.info("✅ Supabase 客户端已创建")

    def _require_client(self) -> AsyncClient:
        if self.client is None:
            raise DataStoreError("Supabase 未连接")
        return self.client

    def _build(self, query: Query):
        builder = self._require_client().table(query.table).select(query.columns)

        for f in query.filters:
            if f.op == FilterOp.EQ:
                builder = builder.eq(f.column, f.value)
            elif f.op == FilterOp.NEQ:
                builder = builder.neq(f.column, f.value)
            elif f.op == FilterOp.LT:
                builder = builder.lt(f.column, f.value)
            elif f.op == FilterOp.LTE:
                builder = builder.lte(f.column, f.value)
            elif f.op == FilterOp.GT:
                builder = builder.gt(f.column, f.value)
            elif f.op == FilterOp.GTE:
                builder = builder.gte(f.column, f.value)
            elif f.op == FilterOp.IN:
                builder = builder.in_(f.column, list(f.value))
            elif f.op == FilterOp.NOT_IN:
                builder = builder.not_.in_(f.column, list(f.value))
            elif f.op == FilterOp.ILIKE:
                builder = builder.ilike(f.column, f.value)

        if query.order_by:
            builder = builder.order(
                query.order_by,
                desc=query.descending,
                nullsfirst=bool(query.nulls_first)
            )
        if query.limit is not None:
            builder = builder.limit(query.limit)
        return builder

    async def select(self, query: Query) -> List[Dict[str, Any]]:
        try:
            response = await self._build(query).execute()
        except APIError as e:
            logger.error(f"Supabase 查询失败 ({query.table}): {e.message}")
            raise DataStoreError(f"{query.table}: {e.message}") from e
        except DataStoreError:
            raise
        except Exception as e:
            logger.error(f"Supabase 查询异常 ({query.table}): {e}")
            raise DataStoreError(f"{query.table}: {e}") from e
        return response.data or []

    async def insert(self, table: str, row: Dict[str, Any]) -> None:
        try:
            await self._require_client().table(table).insert(row).execute()
        except APIError as e:
            logger.error(f"Supabase 写入失败 ({table}): {e.message}")
            raise DataStoreError(f"{table}: {e.message}") from e
        except DataStoreError:
            raise
        except Exception as e:
            logger.error(f"Supabase 写入异常 ({table}): {e}")
            raise DataStoreError(f"{table}: {e}") from e

    async def update(self, table: str, values: Dict[str, Any], match: Dict[str, Any]) -> None:
        try:
            builder = self._require_client().table(table).update(values)
            for column, value in match.items():
                builder = builder.eq(column, value)
            await builder.execute()
        except APIError as e:
            logger.error(f"Supabase 更新失败 ({table}): {e.message}")
            raise DataStoreError(f"{table}: {e.message}") from e
        except DataStoreError:
            raise
        except Exception as e:
            logger.error(f"Supabase 更新异常 ({table}): {e}")
            raise DataStoreError(f"{table}: {e}") from e
