"""
Main application entry point for the CRM AI assistant backend.
"""
from pathlib import Path
from dotenv import load_dotenv

# 加载 .env 文件（必须在读取 Settings 之前）
load_dotenv()

import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from crm_assistant.config.settings import Settings, get_settings
from crm_assistant.api.chat import router as chat_router
from crm_assistant.api.streaming_utils import CORS_HEADERS
from crm_assistant.services.actions.executor import ActionExecutor
from crm_assistant.services.audit_logger import get_audit_logger
from crm_assistant.services.chat_service import AssistantChatService
from crm_assistant.services.context.assembler import ContextAssembler
from crm_assistant.services.conversation_store import ConversationStore
from crm_assistant.services.upstream import AnthropicClient
from crm_assistant.storage import (
    ConversationStorage,
    MemoryConversationStorage,
    RedisConversationStorage,
    TableConversationStorage,
)
from crm_assistant.storage.supabase_datastore import SupabaseDataStore

settings = get_settings()

# 配置日志
Path("logs").mkdir(parents=True, exist_ok=True)
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('logs/app.log'),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)


def build_conversation_storage(settings: Settings, datastore: SupabaseDataStore) -> ConversationStorage:
    """按 CONVERSATION_BACKEND 选择会话存储后端"""
    backend = settings.CONVERSATION_BACKEND.lower()

    if backend == "redis":
        if settings.REDIS_PASSWORD:
            logger.info(
                "Redis 认证已启用（用户名: %s）",
                settings.REDIS_USERNAME or "<default>"
            )
        return RedisConversationStorage(
            redis_url=settings.REDIS_URL,
            ttl_seconds=settings.CONVERSATION_TTL,
            username=settings.REDIS_USERNAME,
            password=settings.REDIS_PASSWORD
        )
    if backend == "memory":
        return MemoryConversationStorage()
    if backend != "supabase":
        logger.warning(f"⚠️  未知的 CONVERSATION_BACKEND={backend}，使用 supabase")
    return TableConversationStorage(datastore, table=settings.CONVERSATION_TABLE)


async def build_chat_service(settings: Settings) -> AssistantChatService:
    """构建对话服务及其全部长生命周期客户端"""
    datastore = SupabaseDataStore(settings.SUPABASE_URL or "", settings.SUPABASE_SERVICE_ROLE_KEY or "")
    if settings.SUPABASE_URL and settings.SUPABASE_SERVICE_ROLE_KEY:
        try:
            await datastore.connect()
        except Exception as e:
            logger.error(f"❌ Supabase 客户端创建失败: {e}")
    else:
        logger.warning("⚠️  SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY 未配置，业务上下文不可用")

    conversation_store = ConversationStore(build_conversation_storage(settings, datastore))
    await conversation_store.initialize()

    upstream = None
    if settings.ANTHROPIC_API_KEY:
        upstream = AnthropicClient(
            api_key=settings.ANTHROPIC_API_KEY,
            base_url=settings.ANTHROPIC_BASE_URL,
            version=settings.ANTHROPIC_VERSION,
            connect_timeout=settings.UPSTREAM_CONNECT_TIMEOUT,
            read_timeout=settings.UPSTREAM_READ_TIMEOUT
        )
        logger.info(f"✅ Anthropic 客户端已创建 (model={settings.ANTHROPIC_MODEL})")
    else:
        logger.warning("⚠️  ANTHROPIC_API_KEY 未配置，对话请求将返回 500")

    executor = ActionExecutor(
        datastore,
        actor=settings.ACTION_ACTOR,
        audit_logger=get_audit_logger(Path(settings.AUDIT_LOG_DIR))
    )

    return AssistantChatService(
        settings=settings,
        conversation_store=conversation_store,
        assembler=ContextAssembler(datastore, row_cap=settings.BASE_CONTEXT_ROW_CAP),
        executor=executor,
        upstream=upstream
    )


def create_app(chat_service: Optional[AssistantChatService] = None) -> FastAPI:
    """
    创建 FastAPI 应用

    Args:
        chat_service: 预先构建的对话服务（测试注入）；为空时在 lifespan 中构建
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用生命周期管理"""
        logger.info("Starting CRM AI assistant...")

        owned = None
        if getattr(app.state, "chat_service", None) is None:
            owned = await build_chat_service(settings)
            app.state.chat_service = owned

        logger.info("Application startup complete")

        yield

        logger.info("Shutting down...")
        if owned is not None:
            await owned.conversation_store.close()
            if owned.upstream is not None:
                await owned.upstream.close()
            await owned.executor.datastore.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="CRM AI Assistant",
        version="1.0.0",
        description="Conversational assistant for the business dashboard (streaming)",
        lifespan=lifespan
    )
    app.state.chat_service = chat_service

    app.include_router(chat_router)

    # 全局异常处理
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Global exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": str(exc)},
            headers=CORS_HEADERS
        )

    # 健康检查端点
    @app.get("/health")
    async def health_check(request: Request):
        """系统健康检查端点（会话存储不可用时为 degraded）"""
        chat_service = request.app.state.chat_service
        storage = await chat_service.conversation_store.health() if chat_service else None
        return JSONResponse(
            content={
                "status": "healthy" if storage and storage["healthy"] else "degraded",
                "version": "1.0.0",
                "service": "CRM AI Assistant",
                "conversation_store": storage
            },
            headers=CORS_HEADERS
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
