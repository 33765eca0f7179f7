"""
Conversation数据模型

- MessageRole: 消息角色（user / assistant）
- ConversationMessage: 持久化的一条消息（写入后不可变）
- PageContext: 调用方当前查看的页面
- ChatRequest: 入站请求体
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field


class MessageRole(str, Enum):
    """消息角色"""
    USER = "user"
    ASSISTANT = "assistant"


class ConversationMessage(BaseModel):
    """
    会话消息记录

    按 created_at 单调排序；每轮对话每个角色写入一次。
    """
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    session_id: str = Field(..., description="会话ID")
    role: MessageRole = Field(..., description="消息角色")
    content: str = Field(..., description="消息内容")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="创建时间"
    )
    tokens_used: Optional[int] = Field(None, description="上游报告的 token 用量")
    context_summary: Optional[str] = Field(None, description="本轮上下文摘要")

    def as_history_entry(self) -> dict:
        """上游 messages 数组中的形态"""
        return {"role": self.role, "content": self.content}


class PageContext(BaseModel):
    """调用方当前页面"""
    page: str = Field(..., description="页面名称")
    data: Optional[Any] = Field(None, description="页面数据（任意 JSON）")


class ChatRequest(BaseModel):
    """
    入站请求体

    字段名沿用前端的 camelCase（sessionId / pageContext / userName / userRole）。
    """
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = Field(None, description="用户消息（必填）")
    session_id: Optional[str] = Field(None, alias="sessionId")
    page_context: Optional[PageContext] = Field(None, alias="pageContext")
    user_name: Optional[str] = Field(None, alias="userName")
    user_role: Optional[str] = Field(None, alias="userRole")


__all__ = [
    "MessageRole",
    "ConversationMessage",
    "PageContext",
    "ChatRequest",
]
