"""TaskExecutor -- 执行已审批任务的副作用

流程：
1. 校验任务为 approved，CAS 认领 approved -> executing（并发认领只有一方成功）
2. 按 task_type 分派到 handler，handler 逐步调用领域服务
3. 成功 -> completed + result；任一步失败 -> failed + error（result 保留已完成步骤的引用）

认领之后的任何失败都转为任务终态与审计日志，不会越过 Executor 抛给调用方。
已产生的实体不做补偿回滚，由操作员根据部分 result 对账。
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from opspilot.core.exceptions import (
    ApprovalStateError,
    DomainServiceError,
    ExecutionError,
    NotFoundError,
    OpsPilotError,
)
from opspilot.core.models import (
    ActorType,
    BasePayload,
    GeneratePOPayload,
    ReorderMaterialsPayload,
    SendEmailPayload,
    SendRFQPayload,
    Task,
    TaskStatus,
    TaskType,
    VendorFollowupPayload,
    parse_payload,
)

from .domain import DomainServices, PurchaseOrderLine, call_with_timeout
from .task_service import TaskService

log = structlog.get_logger()

INTERRUPTED_ERROR = (
    "interrupted: process stopped while the task was executing; "
    "reconcile side effects before retrying"
)


class StepRunner:
    """按步骤执行领域调用，记录当前步骤与已产生的部分结果"""

    def __init__(self, task_id: str, timeout_s: float) -> None:
        self.task_id = task_id
        self.timeout_s = timeout_s
        self.current_step: str | None = None
        self.partial: dict[str, Any] = {}

    def idempotency_key(self, step: str) -> str:
        return f"{self.task_id}:{step}"

    async def run(self, step: str, call: Callable[[str], Awaitable[Any]]) -> Any:
        """执行一步：传入幂等键，受领域调用超时约束"""
        self.current_step = step
        return await call_with_timeout(call(self.idempotency_key(step)), self.timeout_s, step)


Handler = Callable[[Task, BasePayload, StepRunner], Awaitable[dict[str, Any]]]


class TaskExecutor:
    """任务执行器"""

    def __init__(
        self,
        task_service: TaskService,
        services: DomainServices,
        domain_timeout_s: float = 15.0,
        max_concurrent: int = 5,
        handlers: dict[TaskType, Handler] | None = None,
    ) -> None:
        """
        Args:
            task_service: 任务服务（认领与终态流转）
            services: 领域服务协作方
            domain_timeout_s: 单次领域调用超时（秒）
            max_concurrent: execute_approved 的最大并发数
            handlers: 覆盖或补充默认 handler

        Raises:
            ExecutionError: 有 TaskType 没有对应 handler
        """
        self._tasks = task_service
        self._services = services
        self._timeout_s = domain_timeout_s
        self._max_concurrent = max(1, max_concurrent)

        self._handlers: dict[TaskType, Handler] = {
            TaskType.GENERATE_PO: self._generate_po,
            TaskType.REORDER_MATERIALS: self._reorder_materials,
            TaskType.SEND_RFQ: self._send_rfq,
            TaskType.SEND_EMAIL: self._send_email,
            TaskType.VENDOR_FOLLOWUP: self._vendor_followup,
        }
        if handlers is not None:
            self._handlers.update(handlers)

        missing = [t.value for t in TaskType if t not in self._handlers]
        if missing:
            raise ExecutionError(f"no executor handler for task types: {', '.join(missing)}")

    # ------------------------------------------------------------------
    # 执行入口
    # ------------------------------------------------------------------

    async def execute(self, task_id: str) -> Task:
        """执行一个已审批任务

        Returns:
            进入终态（completed / failed）后的任务

        Raises:
            NotFoundError: 任务不存在
            ApprovalStateError: 任务不在 approved，或被其他执行方抢先认领
        """
        task = await self._tasks.get(task_id)
        if task.status != TaskStatus.APPROVED:
            raise ApprovalStateError(task_id, task.status.value, TaskStatus.EXECUTING.value)
        task = await self._tasks.claim(task_id)
        return await self._run(task)

    async def execute_approved(self, limit: int | None = None) -> list[Task]:
        """按审批队列顺序并发执行已审批任务（并发数受 max_concurrent 约束）

        已被其他执行方认领的任务跳过。
        """
        approved = await self._tasks.list_queue(TaskStatus.APPROVED, limit=limit)
        if not approved:
            return []

        semaphore = asyncio.Semaphore(self._max_concurrent)

        async def run_one(task_id: str) -> Task | None:
            async with semaphore:
                try:
                    return await self.execute(task_id)
                except (ApprovalStateError, NotFoundError):
                    await log.ainfo("task_execution_skipped", task_id=task_id)
                    return None
                except Exception:
                    # 认领或落终态时的存储错误；任务保持原状态，等待下次调度或启动对账
                    await log.aexception("task_execution_error", task_id=task_id)
                    return None

        results = await asyncio.gather(*(run_one(t.task_id) for t in approved))
        executed = [t for t in results if t is not None]
        await log.ainfo(
            "approved_tasks_executed",
            candidates=len(approved),
            executed=len(executed),
            failed=sum(1 for t in executed if t.status == TaskStatus.FAILED),
        )
        return executed

    async def fail_interrupted(self) -> list[Task]:
        """将上次进程崩溃遗留在 executing 的任务标记为 failed

        启动时调用；这些任务的副作用状态未知，需要操作员对账。
        """
        stuck = await self._tasks.list(status=TaskStatus.EXECUTING, limit=None)
        failed: list[Task] = []
        for task in stuck:
            try:
                failed.append(
                    await self._tasks.fail(
                        task.task_id,
                        INTERRUPTED_ERROR,
                        result=task.result,
                        actor=ActorType.SYSTEM.value,
                    )
                )
            except ApprovalStateError:
                log.info("interrupted_task_already_settled", task_id=task.task_id)
        if failed:
            await log.awarning("interrupted_tasks_failed", count=len(failed))
        return failed

    async def _run(self, task: Task) -> Task:
        """分派 handler 并落终态，不向外抛出异常"""
        runner = StepRunner(task.task_id, self._timeout_s)
        handler = self._handlers[task.task_type]

        try:
            payload = parse_payload(task.task_type, task.payload)
            result = await handler(task, payload, runner)
        except DomainServiceError as e:
            error = self._describe_failure(runner, e.message)
            await log.awarning(
                "task_step_failed",
                task_id=task.task_id,
                step=runner.current_step,
                error_code=e.error_code,
                retryable=e.retryable,
            )
            return await self._settle_failure(task, error, runner.partial)
        except OpsPilotError as e:
            return await self._settle_failure(
                task, self._describe_failure(runner, e.message), runner.partial
            )
        except Exception as e:
            await log.aexception("task_execution_unexpected_error", task_id=task.task_id)
            error = self._describe_failure(runner, f"unexpected {type(e).__name__}: {e}")
            return await self._settle_failure(task, error, runner.partial)

        try:
            completed = await self._tasks.complete(task.task_id, result)
        except Exception as e:
            await log.aexception("task_completion_write_failed", task_id=task.task_id)
            return await self._settle_failure(
                task, f"failed to record completion: {type(e).__name__}: {e}", result
            )

        await log.ainfo(
            "task_executed",
            task_id=task.task_id,
            task_type=task.task_type.value,
            result=result,
        )
        return completed

    @staticmethod
    def _describe_failure(runner: StepRunner, message: str) -> str:
        if runner.current_step is None:
            return message
        return f"step {runner.current_step} failed: {message}"

    async def _settle_failure(
        self,
        task: Task,
        error: str,
        partial: dict[str, Any],
    ) -> Task:
        try:
            return await self._tasks.fail(task.task_id, error, result=partial or None)
        except Exception:
            # 终态写入失败时任务停留在 executing，下次启动由 fail_interrupted 处理
            await log.aexception("task_failure_write_failed", task_id=task.task_id, error=error)
            return task

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _generate_po(
        self,
        task: Task,
        payload: GeneratePOPayload,
        runner: StepRunner,
    ) -> dict[str, Any]:
        """创建采购单 -> 标记物料在途"""
        line = PurchaseOrderLine(
            raw_material_id=payload.raw_material_id,
            quantity=payload.quantity,
            unit_cost=payload.unit_cost if payload.unit_cost is not None else 0,
            description=payload.material_name,
        )
        po = await runner.run(
            "create_purchase_order",
            lambda key: self._services.create_purchase_order(
                vendor_id=payload.vendor_id,
                lines=[line],
                total_amount=payload.total_amount,
                idempotency_key=key,
            ),
        )
        runner.partial.update(purchaseOrderId=po.purchase_order_id, poNumber=po.po_number)

        await runner.run(
            "mark_on_order",
            lambda key: self._services.mark_on_order(
                raw_material_id=payload.raw_material_id,
                quantity=payload.quantity,
                purchase_order_id=po.purchase_order_id,
                idempotency_key=key,
            ),
        )
        return {"purchaseOrderId": po.purchase_order_id, "poNumber": po.po_number}

    async def _reorder_materials(
        self,
        task: Task,
        payload: ReorderMaterialsPayload,
        runner: StepRunner,
    ) -> dict[str, Any]:
        """一张多行采购单 -> 逐个物料标记在途"""
        lines = [
            PurchaseOrderLine(
                raw_material_id=line.raw_material_id,
                quantity=line.quantity,
                unit_cost=line.unit_cost,
                description=line.name,
            )
            for line in payload.lines
        ]
        po = await runner.run(
            "create_purchase_order",
            lambda key: self._services.create_purchase_order(
                vendor_id=payload.vendor_id,
                lines=lines,
                total_amount=payload.total_amount,
                idempotency_key=key,
            ),
        )
        runner.partial.update(
            purchaseOrderId=po.purchase_order_id,
            poNumber=po.po_number,
            markedMaterialIds=[],
        )

        for line in payload.lines:
            await runner.run(
                f"mark_on_order:{line.raw_material_id}",
                lambda key, line=line: self._services.mark_on_order(
                    raw_material_id=line.raw_material_id,
                    quantity=line.quantity,
                    purchase_order_id=po.purchase_order_id,
                    idempotency_key=key,
                ),
            )
            runner.partial["markedMaterialIds"].append(line.raw_material_id)

        return {
            "purchaseOrderId": po.purchase_order_id,
            "poNumber": po.po_number,
            "lineCount": len(payload.lines),
        }

    async def _send_rfq(
        self,
        task: Task,
        payload: SendRFQPayload,
        runner: StepRunner,
    ) -> dict[str, Any]:
        """创建询价单 -> 逐个供应商发送邀请"""
        rfq_id = await runner.run(
            "create_rfq",
            lambda key: self._services.create_rfq(
                raw_material_id=payload.raw_material_id,
                quantity=payload.quantity,
                due_date=payload.due_date,
                idempotency_key=key,
            ),
        )
        invitation_ids: list[int] = []
        runner.partial.update(rfqId=rfq_id, invitationCount=0, invitationIds=invitation_ids)

        for vendor_id in payload.vendor_ids:
            invitation_id = await runner.run(
                f"send_invitation:{vendor_id}",
                lambda key, vendor_id=vendor_id: self._services.send_invitation(
                    rfq_id=rfq_id,
                    vendor_id=vendor_id,
                    idempotency_key=key,
                ),
            )
            invitation_ids.append(invitation_id)
            runner.partial["invitationCount"] = len(invitation_ids)

        return {
            "rfqId": rfq_id,
            "invitationCount": len(invitation_ids),
            "invitationIds": invitation_ids,
        }

    async def _send_email(
        self,
        task: Task,
        payload: SendEmailPayload,
        runner: StepRunner,
    ) -> dict[str, Any]:
        message_id = await runner.run(
            "send_email",
            lambda key: self._services.send_email(
                to=payload.to,
                subject=payload.subject,
                body=payload.body,
                idempotency_key=key,
                cc=payload.cc,
                in_reply_to_email_id=payload.in_reply_to_email_id,
            ),
        )
        return {"messageId": message_id}

    async def _vendor_followup(
        self,
        task: Task,
        payload: VendorFollowupPayload,
        runner: StepRunner,
    ) -> dict[str, Any]:
        subject = payload.subject or f"Follow-up on purchase order {payload.po_number}"
        body = payload.body or (
            f"We are following up on purchase order {payload.po_number}. "
            "Please confirm receipt and the expected delivery date."
        )
        message_id = await runner.run(
            "send_followup_email",
            lambda key: self._services.send_email(
                to=payload.vendor_email,
                subject=subject,
                body=body,
                idempotency_key=key,
            ),
        )
        return {"messageId": message_id, "purchaseOrderId": payload.purchase_order_id}
