"""
Conversation Store - 会话消息存储适配器

对外只提供两个操作：append / history。
存储后端初始化失败时降级到内存存储；运行期写入失败一律以 StoreError 抛出，
由调用方决定是否中止本轮对话。
"""
import logging
from typing import Any, Dict, List, Optional

from crm_assistant.exceptions import StoreError
from crm_assistant.models.conversation import ConversationMessage, MessageRole
from crm_assistant.storage.base import ConversationStorage
from crm_assistant.storage.memory_storage import MemoryConversationStorage

logger = logging.getLogger(__name__)


class ConversationStore:
    """
    会话存储适配器

    职责：
    1. 追加消息（user / assistant，每轮每角色一次）
    2. 读取最近 N 条历史（正序）
    3. 存储后端不可用时降级到内存
    """

    def __init__(self, storage: Optional[ConversationStorage] = None):
        """
        初始化

        Args:
            storage: 存储后端（可选，默认使用内存）
        """
        self.storage: ConversationStorage = storage or MemoryConversationStorage()
        self._using_fallback = False

    @property
    def using_fallback(self) -> bool:
        return self._using_fallback

    async def initialize(self) -> None:
        """初始化存储后端"""
        try:
            await self.storage.connect()
            logger.info(f"✅ 会话存储初始化成功 ({type(self.storage).__name__})")
            self._using_fallback = False
        except Exception as e:
            logger.error(f"❌ 会话存储初始化失败: {e}")
            logger.warning("⚠️  降级到内存存储")
            self.storage = MemoryConversationStorage()
            self._using_fallback = True

    async def append(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        tokens_used: Optional[int] = None,
        context_summary: Optional[str] = None
    ) -> ConversationMessage:
        """
        追加一条消息

        Raises:
            StoreError: 写入失败
        """
        message = ConversationMessage(
            session_id=session_id,
            role=role,
            content=content,
            tokens_used=tokens_used,
            context_summary=context_summary
        )
        try:
            await self.storage.append_message(message)
        except StoreError:
            logger.error(f"❌ 消息写入失败: session={session_id}, role={message.role}")
            raise
        except Exception as e:
            logger.error(f"❌ 消息写入异常: session={session_id}, role={message.role}: {e}")
            raise StoreError(f"保存消息失败: {e}") from e

        logger.debug(f"已保存消息: session={session_id}, role={message.role}")
        return message

    async def history(self, session_id: str, limit: int) -> List[Dict[str, str]]:
        """
        读取历史

        Args:
            session_id: 会话ID
            limit: 最多返回条数

        Returns:
            [{role, content}]，最旧的在前；新会话返回空列表
        """
        if limit <= 0:
            return []
        try:
            messages = await self.storage.recent_messages(session_id, limit)
        except StoreError:
            raise
        except Exception as e:
            logger.error(f"❌ 历史读取异常: session={session_id}: {e}")
            raise StoreError(f"读取历史失败: {e}") from e

        return [m.as_history_entry() for m in messages[-limit:]]

    async def health(self) -> Dict[str, Any]:
        """存储后端健康状态（供 /health 使用）"""
        return {
            "backend": type(self.storage).__name__,
            "healthy": await self.storage.health_check(),
            "fallback": self._using_fallback
        }

    async def close(self) -> None:
        await self.storage.close()
