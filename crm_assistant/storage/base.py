"""
Storage Base - 会话存储层抽象接口
定义会话消息存储的统一接口，支持多种存储后端（Supabase 表、Redis、内存）
"""

from abc import ABC, abstractmethod
from typing import List

from crm_assistant.models.conversation import ConversationMessage


class ConversationStorage(ABC):
    """
    会话存储抽象接口

    统一的存储接口，后端实现：
    - TableConversationStorage: 数据存储中的 ai_conversations 表
    - RedisConversationStorage: 基于 Redis 列表
    - MemoryConversationStorage: 基于内存的临时存储（降级方案）

    写入失败必须以 StoreError 抛出，不能静默吞掉。
    """

    async def connect(self) -> None:
        """建立连接（可选）"""
        return None

    @abstractmethod
    async def append_message(self, message: ConversationMessage) -> None:
        """
        追加一条消息

        Args:
            message: 消息记录
        """
        pass

    @abstractmethod
    async def recent_messages(self, session_id: str, limit: int) -> List[ConversationMessage]:
        """
        获取最近的消息

        Args:
            session_id: 会话ID
            limit: 最多返回条数

        Returns:
            最近 limit 条消息，按时间正序（最旧的在前）
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        健康检查

        Returns:
            存储后端是否健康
        """
        pass

    async def close(self) -> None:
        """关闭存储连接"""
        return None
