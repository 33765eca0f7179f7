"""
Redis Storage - 基于 Redis 列表的会话消息存储
支持自动过期，RPUSH 追加天然保持写入顺序
"""

import logging
from typing import List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError, ConnectionError as RedisConnectionError

from crm_assistant.exceptions import StoreError
from crm_assistant.models.conversation import ConversationMessage
from .base import ConversationStorage

logger = logging.getLogger(__name__)


class RedisConversationStorage(ConversationStorage):
    """
    基于 Redis 的会话存储

    特性：
    - 每个会话一个列表 key，按写入顺序追加
    - 自动过期（TTL，每次写入刷新）
    - 连接池管理
    """

    def __init__(
        self,
        redis_url: str = "redis://127.0.0.1:6379/0",
        ttl_seconds: int = 30 * 86400,  # 30 天
        key_prefix: str = "ai_conversation:",
        max_connections: int = 10,
        username: Optional[str] = None,
        password: Optional[str] = None
    ):
        """
        初始化 Redis 存储

        Args:
            redis_url: Redis 连接 URL
            ttl_seconds: 会话过期时间（秒）
            key_prefix: Redis key 前缀
            max_connections: 最大连接数
            username: Redis ACL 用户名（可选）
            password: Redis 密码（可选）
        """
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix
        self.max_connections = max_connections
        self.username = username
        self.password = password
        self.redis: Optional[aioredis.Redis] = None
        self._connected = False

        auth_status = "启用" if password else "未启用"
        logger.info(
            "初始化 RedisConversationStorage: %s, TTL=%ss, 认证%s",
            redis_url,
            ttl_seconds,
            auth_status
        )

    async def connect(self) -> None:
        """建立 Redis 连接"""
        if self._connected and self.redis:
            return

        try:
            connection_kwargs = {
                "encoding": "utf-8",
                "decode_responses": True,
                "max_connections": self.max_connections
            }
            if self.username:
                connection_kwargs["username"] = self.username
            if self.password:
                connection_kwargs["password"] = self.password

            self.redis = aioredis.from_url(
                self.redis_url,
                **connection_kwargs
            )
            # 测试连接
            await self.redis.ping()
            self._connected = True
            logger.info("✅ Redis 连接成功")
        except RedisConnectionError as e:
            logger.error(f"❌ Redis 连接失败: {e}")
            self._connected = False
            raise
        except Exception as e:
            logger.error(f"❌ Redis 初始化失败: {e}")
            self._connected = False
            raise

    def _make_key(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    def _require_connection(self) -> aioredis.Redis:
        if not self._connected or not self.redis:
            raise StoreError("Redis 未连接")
        return self.redis

    async def append_message(self, message: ConversationMessage) -> None:
        redis = self._require_connection()
        key = self._make_key(message.session_id)
        payload = message.model_dump_json()

        try:
            async with redis.pipeline() as pipe:
                await pipe.rpush(key, payload)
                await pipe.expire(key, self.ttl_seconds)
                await pipe.execute()
            logger.debug(f"追加消息到 Redis: {message.session_id} ({message.role})")
        except RedisError as e:
            logger.error(f"Redis 写入失败: {e}")
            raise StoreError(f"Redis 写入失败: {e}") from e

    async def recent_messages(self, session_id: str, limit: int) -> List[ConversationMessage]:
        redis = self._require_connection()
        if limit <= 0:
            return []

        try:
            items = await redis.lrange(self._make_key(session_id), -limit, -1)
        except RedisError as e:
            logger.error(f"Redis 读取失败: {e}")
            raise StoreError(f"Redis 读取失败: {e}") from e

        return [ConversationMessage.model_validate_json(item) for item in items]

    async def health_check(self) -> bool:
        """
        健康检查

        Returns:
            Redis 是否健康
        """
        try:
            if not self.redis:
                return False
            await self.redis.ping()
            return True
        except Exception as e:
            logger.error(f"Redis 健康检查失败: {e}")
            return False

    async def close(self) -> None:
        """关闭 Redis 连接"""
        if self.redis:
            await self.redis.aclose()
            self._connected = False
            logger.info("Redis 连接已关闭")
