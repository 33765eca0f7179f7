"""
Application settings and configuration management.

Settings are built once at process start (see ``main.py``) and passed
explicitly into every service, so handlers can be exercised with fake
credentials and stores.
"""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Anthropic API配置
    ANTHROPIC_API_KEY: Optional[str] = None
    ANTHROPIC_BASE_URL: str = "https://api.anthropic.com"
    ANTHROPIC_MODEL: str = "claude-sonnet-4-20250514"
    ANTHROPIC_VERSION: str = "2023-06-01"
    ANTHROPIC_MAX_TOKENS: int = 4096

    # 上游超时（秒）
    UPSTREAM_CONNECT_TIMEOUT: float = 10.0
    UPSTREAM_READ_TIMEOUT: float = 60.0

    # Supabase 数据存储
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None

    # 会话存储: supabase | redis | memory
    CONVERSATION_BACKEND: str = "supabase"
    CONVERSATION_TABLE: str = "ai_conversations"
    CONVERSATION_TTL: int = 30 * 86400  # 30天（仅 Redis）
    HISTORY_WINDOW: int = 18

    # Redis 配置
    REDIS_URL: str = "redis://127.0.0.1:6379/0"
    REDIS_USERNAME: Optional[str] = None
    REDIS_PASSWORD: Optional[str] = None

    # 上下文
    BASE_CONTEXT_ROW_CAP: int = 2000

    # 动作执行
    ACTION_ACTOR: str = "Sheldon AI"
    AUDIT_LOG_DIR: str = "logs"

    # 服务配置
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    获取设置实例（进程内只构建一次）

    Returns:
        Settings 实例
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings
