"""
Table Storage - 基于数据存储表（ai_conversations）的会话存储
"""

import logging
from typing import List

from crm_assistant.exceptions import DataStoreError, StoreError
from crm_assistant.models.conversation import ConversationMessage
from .base import ConversationStorage
from .datastore import DataStore, FilterOp, Query

logger = logging.getLogger(__name__)


class TableConversationStorage(ConversationStorage):
    """每条消息一行，按 created_at 排序"""

    def __init__(self, datastore: DataStore, table: str = "ai_conversations"):
        self.datastore = datastore
        self.table = table

    async def append_message(self, message: ConversationMessage) -> None:
        row = {
            "session_id": message.session_id,
            "role": message.role,
            "content": message.content,
            "created_at": message.created_at.isoformat(),
            "tokens_used": message.tokens_used,
            "context_summary": message.context_summary,
        }
        try:
            await self.datastore.insert(self.table, row)
        except DataStoreError as e:
            raise StoreError(f"保存消息失败: {e.message}") from e

    async def recent_messages(self, session_id: str, limit: int) -> List[ConversationMessage]:
        # 取最新的 limit 条（倒序），再翻转为正序
        query = (
            Query(self.table, "session_id, role, content, created_at")
            .where("session_id", FilterOp.EQ, session_id)
            .order("created_at", descending=True)
            .take(limit)
        )
        try:
            rows = await self.datastore.select(query)
        except DataStoreError as e:
            raise StoreError(f"读取历史失败: {e.message}") from e

        messages = [
            ConversationMessage(
                session_id=row.get("session_id", session_id),
                role=row["role"],
                content=row.get("content") or "",
                created_at=row["created_at"],
            )
            for row in rows
        ]
        messages.sort(key=lambda m: m.created_at)
        return messages

    async def health_check(self) -> bool:
        try:
            await self.datastore.select(Query(self.table, "id").take(1))
            return True
        except DataStoreError as e:
            logger.error(f"会话表健康检查失败: {e}")
            return False
