"""
审计日志系统

职责：
- 记录助手发起的每一次动作执行（成功或失败）
- JSON Lines格式存储
- 写入失败只记录错误，不影响本轮对话
"""

import logging
import json
import aiofiles
from typing import Dict, Optional
from pathlib import Path
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


class AuditLogger:
    """动作执行审计日志"""

    def __init__(self, log_dir: Path):
        """
        初始化审计日志

        Args:
            log_dir: 日志目录
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.action_audit_file = self.log_dir / "action_audit.jsonl"

        logger.info(f"AuditLogger initialized (log_dir={self.log_dir})")

    async def log_action(
        self,
        session_id: Optional[str],
        action_type: str,
        params: Dict[str, str],
        succeeded: bool,
        message: str
    ):
        """
        记录一次动作执行

        Args:
            session_id: 会话ID
            action_type: 动作类型（可能是未识别的类型）
            params: 解析出的参数
            succeeded: 是否成功
            message: 返回给用户的结果文本
        """
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": "action_execution",
            "session_id": session_id,
            "action_type": action_type,
            "params": params,
            "succeeded": succeeded,
            "result": message
        }

        try:
            async with aiofiles.open(self.action_audit_file, 'a', encoding='utf-8') as f:
                await f.write(json.dumps(log_entry, ensure_ascii=False) + '\n')

            logger.info(f"Logged action: {action_type} (session={session_id}, ok={succeeded})")

        except Exception as e:
            logger.error(f"Failed to write audit log: {e}")


# 全局单例
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger(log_dir: Optional[Path] = None) -> AuditLogger:
    """
    获取AuditLogger单例

    Args:
        log_dir: 日志目录

    Returns:
        AuditLogger实例
    """
    global _audit_logger

    if _audit_logger is None:
        if log_dir is None:
            log_dir = Path("logs")

        _audit_logger = AuditLogger(log_dir=log_dir)

    return _audit_logger


# 导出
__all__ = [
    "AuditLogger",
    "get_audit_logger"
]
