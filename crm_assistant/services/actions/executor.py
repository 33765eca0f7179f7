"""
Action Executor - 执行助手在回复中嵌入的动作

处理函数通过 ActionType -> handler 查找表分派；新增动作只需注册一个 handler。
执行严格按出现顺序串行进行，不重试；每次尝试都产生一行结果文本。
"""
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from crm_assistant.exceptions import StoreError
from crm_assistant.models.actions import (
    ActionResult,
    ActionType,
    LeadStage,
    Malformed,
    ParsedAction,
    Recognized,
    Unrecognized,
)
from crm_assistant.services.audit_logger import AuditLogger
from crm_assistant.storage.datastore import DataStore
from .parser import parse_actions

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, str]], Awaitable[ActionResult]]

VALID_STAGES = [stage.value for stage in LeadStage]


class ActionExecutor:
    """
    动作执行器

    Args:
        datastore: 写入目标
        actor: 写入 created_by / completed_by 的执行者名称
        audit_logger: 审计日志（可选）
        clock: 当前时间来源
    """

    def __init__(
        self,
        datastore: DataStore,
        actor: str = "Sheldon AI",
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        self.datastore = datastore
        self.actor = actor
        self.audit_logger = audit_logger
        self.clock = clock
        self.handlers: Dict[ActionType, Handler] = {
            ActionType.CREATE_NOTE: self._create_note,
            ActionType.CHANGE_STAGE: self._change_stage,
            ActionType.ASSIGN_OWNER: self._assign_owner,
            ActionType.COMPLETE_TASK: self._complete_task,
        }

    async def _create_note(self, params: Dict[str, str]) -> ActionResult:
        lead_id, content = params.get("lead_id"), params.get("content")
        if not lead_id or not content:
            return ActionResult.fail("Error: Faltan parámetros para crear nota")

        await self.datastore.insert("lead_activities", {
            "lead_id": lead_id,
            "type": params.get("type") or "note",
            "description": content,
            "created_by": self.actor
        })
        return ActionResult.ok("Nota creada exitosamente en el lead")

    async def _change_stage(self, params: Dict[str, str]) -> ActionResult:
        lead_id, new_stage = params.get("lead_id"), params.get("new_stage")
        if not lead_id or not new_stage:
            return ActionResult.fail("Error: Faltan parámetros para cambiar stage")
        if new_stage not in VALID_STAGES:
            return ActionResult.fail(f"Error: Stage inválido. Válidos: {', '.join(VALID_STAGES)}")

        await self.datastore.update(
            "leads",
            {"stage": new_stage, "stage_entered_at": self.clock().isoformat()},
            {"id": lead_id}
        )
        return ActionResult.ok(f"Stage actualizado a {new_stage}")

    async def _assign_owner(self, params: Dict[str, str]) -> ActionResult:
        lead_id, owner_id = params.get("lead_id"), params.get("owner_id")
        if not lead_id or not owner_id:
            return ActionResult.fail("Error: Faltan parámetros para asignar owner")

        await self.datastore.update("leads", {"owner_id": owner_id}, {"id": lead_id})
        return ActionResult.ok(f"Lead asignado a {owner_id}")

    async def _complete_task(self, params: Dict[str, str]) -> ActionResult:
        task_id = params.get("task_id")
        if not task_id:
            return ActionResult.fail("Error: Falta task_id")

        await self.datastore.update(
            "project_tasks",
            {"status": "done", "completed_at": self.clock().isoformat(), "completed_by": self.actor},
            {"id": task_id}
        )
        return ActionResult.ok("Tarea marcada como completada")

    async def execute(self, action: ParsedAction, session_id: Optional[str] = None) -> ActionResult:
        """
        执行单个已解析的动作

        Returns:
            ActionResult（不抛异常；数据存储错误被概括进结果文本）
        """
        if isinstance(action, Malformed):
            result = ActionResult.fail(f"Acción mal formada: {action.reason}")
            action_type, params = "MALFORMED", {}
        elif isinstance(action, Unrecognized):
            result = ActionResult.fail(f"Acción no reconocida: {action.type}")
            action_type, params = action.type, action.params
        else:
            action_type, params = action.type.value, action.params
            try:
                result = await self.handlers[action.type](action.params)
            except StoreError as e:
                logger.error(f"❌ 动作执行失败: {action_type} {params}: {e.message}")
                result = ActionResult.fail(f"Error ejecutando acción: {e.message}")
            except Exception as e:
                logger.error(f"❌ 动作执行异常: {action_type} {params}: {type(e).__name__}: {e}")
                result = ActionResult.fail(f"Error ejecutando acción: {e}")

        logger.info(f"动作 {action_type}: {result.message}")
        if self.audit_logger is not None:
            await self.audit_logger.log_action(session_id, action_type, params, result.succeeded, result.message)
        return result

    async def execute_all(self, text: str, session_id: Optional[str] = None) -> List[ActionResult]:
        """按出现顺序串行执行文本中的全部动作"""
        results = []
        for action in parse_actions(text):
            results.append(await self.execute(action, session_id=session_id))
        return results


__all__ = [
    "ActionExecutor",
    "VALID_STAGES",
]
