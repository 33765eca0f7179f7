"""
Storage Layer - 存储层
业务数据存储接口（Supabase）与会话消息存储（Supabase 表 / Redis / 内存）
"""

from .base import ConversationStorage
from .datastore import DataStore, Filter, FilterOp, Query
from .memory_storage import MemoryConversationStorage
from .redis_storage import RedisConversationStorage
from .table_storage import TableConversationStorage

__all__ = [
    "ConversationStorage",
    "DataStore",
    "Filter",
    "FilterOp",
    "Query",
    "MemoryConversationStorage",
    "RedisConversationStorage",
    "TableConversationStorage",
]
