"""AgentScheduler -- 周期性驱动规则评估与任务执行

每个 tick：过期待审批任务（配置了 TTL 时）-> 规则评估周期 -> 执行已审批任务。
单个 tick 失败只记录日志，不会停止循环。
"""

import asyncio
from datetime import timedelta

import structlog

from .approval_gate import ApprovalGate
from .executor import TaskExecutor
from .rule_engine import RuleEngine

log = structlog.get_logger()


class AgentScheduler:
    """后台调度器"""

    def __init__(
        self,
        rule_engine: RuleEngine,
        executor: TaskExecutor,
        approval_gate: ApprovalGate,
        interval_s: float = 60.0,
        pending_ttl: timedelta | None = None,
    ) -> None:
        self._engine = rule_engine
        self._executor = executor
        self._gate = approval_gate
        self._interval_s = interval_s
        self._pending_ttl = pending_ttl
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()
        self.tick_count = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """启动后台循环（重复调用无副作用）"""
        if self.is_running:
            log.info("scheduler_already_running")
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="opspilot-scheduler")
        log.info("scheduler_started", interval_s=self._interval_s)

    async def stop(self) -> None:
        """停止循环并等待当前 tick 结束"""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        await log.ainfo("scheduler_stopped", ticks=self.tick_count)

    async def tick(self) -> None:
        """执行一次完整 tick"""
        if self._pending_ttl is not None:
            await self._gate.expire_stale(self._pending_ttl)
        report = await self._engine.run_cycle()
        executed = await self._executor.execute_approved()
        self.tick_count += 1
        await log.ainfo(
            "scheduler_tick_completed",
            tick=self.tick_count,
            tasks_created=len(report.tasks_created),
            tasks_executed=len(executed),
        )

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.tick()
            except Exception:
                await log.aexception("scheduler_tick_failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval_s)
            except TimeoutError:
                continue
