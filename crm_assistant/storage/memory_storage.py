"""
Memory Storage - 进程内会话存储（降级方案 / 本地开发）
"""

from typing import Dict, List

from crm_assistant.models.conversation import ConversationMessage
from .base import ConversationStorage


class MemoryConversationStorage(ConversationStorage):
    """session_id -> 消息列表，进程重启即丢失"""

    def __init__(self):
        self._messages: Dict[str, List[ConversationMessage]] = {}

    async def append_message(self, message: ConversationMessage) -> None:
        self._messages.setdefault(message.session_id, []).append(message)

    async def recent_messages(self, session_id: str, limit: int) -> List[ConversationMessage]:
        if limit <= 0:
            return []
        messages = sorted(self._messages.get(session_id, []), key=lambda m: m.created_at)
        return messages[-limit:]

    async def health_check(self) -> bool:
        return True
