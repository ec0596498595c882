"""CLI 入口模块 -- python -m opspilot.engine <command>

支持的命令：
  evaluate-rules     执行一次规则评估周期
  execute-approved   执行全部已审批任务
  expire-stale       过期驳回超过 TTL 的待审批任务
  fail-interrupted   将遗留在 executing 的任务标记为 failed
"""

import asyncio
import sys
from collections.abc import Awaitable, Callable

from opspilot.core.config import get_db_path
from opspilot.core.store import create_store_group

from . import EngineServices, create_engine_services

_USAGE = """用法: python -m opspilot.engine <command>
命令:
  evaluate-rules     执行一次规则评估周期
  execute-approved   执行全部已审批任务
  expire-stale       过期驳回超过 TTL 的待审批任务（需设置 OPSPILOT_PENDING_TTL_HOURS）
  fail-interrupted   将遗留在 executing 的任务标记为 failed"""


async def evaluate_rules(services: EngineServices) -> None:
    report = await services.rule_engine.run_cycle()
    print(
        f"评估规则 {report.rules_evaluated} 条，新建任务 {len(report.tasks_created)} 个，"
        f"自动审批 {len(report.auto_approved)} 个，去重 {report.duplicates_suppressed} 个，"
        f"错误 {len(report.errors)} 个"
    )
    for error in report.errors:
        print(f"  [{error.rule_id}] {error.error}")


async def execute_approved(services: EngineServices) -> None:
    executed = await services.executor.execute_approved()
    print(f"执行任务 {len(executed)} 个")
    for task in executed:
        print(f"  {task.task_id} {task.task_type.value} -> {task.status.value}")


async def expire_stale(services: EngineServices) -> None:
    if services.pending_ttl is None:
        print("未配置 OPSPILOT_PENDING_TTL_HOURS，跳过")
        return
    expired = await services.approval_gate.expire_stale(services.pending_ttl)
    print(f"过期驳回任务 {len(expired)} 个")


async def fail_interrupted(services: EngineServices) -> None:
    failed = await services.executor.fail_interrupted()
    print(f"标记中断任务 {len(failed)} 个")


COMMANDS: dict[str, Callable[[EngineServices], Awaitable[None]]] = {
    "evaluate-rules": evaluate_rules,
    "execute-approved": execute_approved,
    "expire-stale": expire_stale,
    "fail-interrupted": fail_interrupted,
}


async def run_command(command: str) -> None:
    """打开数据库、组装引擎服务并执行命令"""
    db_path = get_db_path()
    print(f"数据库路径: {db_path}")

    store_group = await create_store_group(db_path)
    services = create_engine_services(store_group)
    try:
        await COMMANDS[command](services)
    finally:
        await services.aclose()
        await store_group.close()


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(_USAGE)
        sys.exit(1)

    command = sys.argv[1]
    if command not in COMMANDS:
        print(f"未知命令: {command}")
        print(f"可用命令: {', '.join(COMMANDS)}")
        sys.exit(1)

    asyncio.run(run_command(command))


if __name__ == "__main__":
    main()
