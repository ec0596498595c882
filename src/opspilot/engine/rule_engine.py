"""RuleEngine -- 规则评估周期

一次周期：
1. 取快照（调用方推送，或从 SnapshotProvider 拉取）与启用的规则
2. 每条规则扫描其集合，对每条记录求值触发条件
3. 命中记录 -> 基础 payload -> Scorer 打分 -> 应用建议参数 -> 重新校验 -> TaskProposal
4. 提案交给 TaskService（原子去重 + 自动审批判定），记录 rule_triggered 并累加触发计数

规则之间、记录之间相互独立：任一失败记录 rule_evaluation_error 后跳过，不影响其他。
"""

import asyncio
from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field

from opspilot.core.exceptions import DomainServiceError, OpsPilotError, RuleEvaluationError
from opspilot.core.models import (
    ActorType,
    LogAction,
    LogStatus,
    Rule,
    RuleType,
    StateSnapshot,
    TaskPriority,
    TaskProposal,
    TaskStatus,
    TaskType,
    actor_ref,
)

from .audit_log import AuditLog
from .conditions import evaluate_condition
from .proposals import PayloadDraft, apply_suggestions, build_draft, build_grouped_drafts
from .rule_service import RULE_COLLECTIONS, RuleService
from .scorer import ConfidenceScorer, ScoringContext
from .snapshot import SnapshotProvider
from .task_service import TaskService

log = structlog.get_logger()


class CycleError(BaseModel):
    """周期内的一次评估失败"""

    rule_id: str | None = None
    record_ids: list[Any] = Field(default_factory=list)
    error: str


class CycleReport(BaseModel):
    """一次规则评估周期的结果"""

    snapshot_taken_at: datetime | None = None
    rules_evaluated: int = 0
    triggered_rules: list[str] = Field(default_factory=list)
    tasks_created: list[str] = Field(default_factory=list)
    duplicates_suppressed: int = 0
    auto_approved: list[str] = Field(default_factory=list)
    errors: list[CycleError] = Field(default_factory=list)


def _suggested_priority(suggested: dict[str, Any] | None) -> TaskPriority | None:
    if not suggested or "priority" not in suggested:
        return None
    try:
        return TaskPriority(str(suggested["priority"]).lower())
    except ValueError:
        return None


class RuleEngine:
    """规则引擎"""

    def __init__(
        self,
        rule_service: RuleService,
        task_service: TaskService,
        scorer: ConfidenceScorer,
        audit_log: AuditLog,
        snapshot_provider: SnapshotProvider,
    ) -> None:
        self._rules = rule_service
        self._tasks = task_service
        self._scorer = scorer
        self._audit = audit_log
        self._snapshots = snapshot_provider

    async def run_cycle(
        self,
        snapshot: StateSnapshot | None = None,
        rule_types: list[RuleType] | None = None,
    ) -> CycleReport:
        """执行一次规则评估周期"""
        report = CycleReport()

        if snapshot is None:
            try:
                snapshot = await self._snapshots.get_snapshot()
            except DomainServiceError as e:
                await self._record_error(report, None, [], e.message)
                return report
        report.snapshot_taken_at = snapshot.taken_at

        rules = await self._rules.list_active()
        if rule_types is not None:
            rules = [r for r in rules if r.rule_type in rule_types]
        report.rules_evaluated = len(rules)

        await asyncio.gather(*(self._evaluate_rule(rule, snapshot, report) for rule in rules))

        await log.ainfo(
            "rule_cycle_completed",
            rules_evaluated=report.rules_evaluated,
            tasks_created=len(report.tasks_created),
            duplicates_suppressed=report.duplicates_suppressed,
            auto_approved=len(report.auto_approved),
            errors=len(report.errors),
        )
        return report

    async def evaluate_inbound_email(self, email: dict[str, Any]) -> CycleReport:
        """对一封已分类的入站邮件执行 email_auto_reply 规则"""
        return await self.run_cycle(
            snapshot=StateSnapshot(emails=[email]),
            rule_types=[RuleType.EMAIL_AUTO_REPLY],
        )

    async def _evaluate_rule(self, rule: Rule, snapshot: StateSnapshot, report: CycleReport) -> None:
        """评估单条规则，所有失败在此处消化"""
        try:
            records = snapshot.collection(RULE_COLLECTIONS[rule.rule_type])
            matches: list[dict[str, Any]] = []
            for record in records:
                try:
                    if evaluate_condition(rule.trigger_condition, record):
                        matches.append(record)
                except RuleEvaluationError as e:
                    await self._record_error(report, rule, [record.get("id")], e.message)

            if not matches:
                return

            drafts: list[PayloadDraft] = []
            if rule.action_type is TaskType.REORDER_MATERIALS:
                drafts, rejected = build_grouped_drafts(rule, matches)
                for record, message in rejected:
                    await self._record_error(report, rule, [record.get("id")], message)
            else:
                for record in matches:
                    try:
                        drafts.append(build_draft(rule, record))
                    except RuleEvaluationError as e:
                        await self._record_error(report, rule, [record.get("id")], e.message)
                    except Exception as e:
                        await log.aexception(
                            "payload_build_unexpected_error",
                            rule_id=rule.rule_id,
                            record_id=record.get("id"),
                        )
                        await self._record_error(
                            report,
                            rule,
                            [record.get("id")],
                            f"unexpected {type(e).__name__}: {e}",
                        )

            created = 0
            for draft in drafts:
                if await self._propose(rule, draft, report):
                    created += 1

            if created:
                await self._rules.record_trigger(rule.rule_id, created)
                report.triggered_rules.append(rule.rule_id)
        except Exception as e:
            await log.aexception("rule_evaluation_unexpected_error", rule_id=rule.rule_id)
            await self._record_error(report, rule, [], f"unexpected {type(e).__name__}: {e}")

    async def _propose(self, rule: Rule, draft: PayloadDraft, report: CycleReport) -> bool:
        """打分并提交一个提案

        Returns:
            True 如果创建了新任务
        """
        try:
            score = await self._scorer.score(
                ScoringContext(
                    rule=rule,
                    records=draft.records,
                    action=draft.task_type,
                    payload=draft.payload,
                )
            )
            payload = apply_suggestions(draft.task_type, draft.payload, score.suggested_parameters)
        except RuleEvaluationError as e:
            await self._record_error(report, rule, draft.subject_ids, e.message)
            return False
        except Exception as e:
            await log.aexception("confidence_scorer_unexpected_error", rule_id=rule.rule_id)
            await self._record_error(
                report,
                rule,
                draft.subject_ids,
                f"confidence scorer failed: {type(e).__name__}: {e}",
            )
            return False

        proposal = TaskProposal(
            task_type=draft.task_type.value,
            payload=payload,
            priority=_suggested_priority(score.suggested_parameters) or rule.priority,
            reasoning=score.reasoning,
            confidence=score.confidence,
            rule_id=rule.rule_id,
        )
        try:
            task, created = await self._tasks.create(proposal, from_rule_engine=True)
        except OpsPilotError as e:
            await self._record_error(report, rule, draft.subject_ids, e.message)
            return False

        if not created:
            report.duplicates_suppressed += 1
            return False

        report.tasks_created.append(task.task_id)
        if task.status == TaskStatus.APPROVED:
            report.auto_approved.append(task.task_id)

        await self._audit.record(
            action=LogAction.RULE_TRIGGERED,
            status=LogStatus.SUCCESS,
            actor=actor_ref(ActorType.RULE, rule.rule_id),
            task_id=task.task_id,
            rule_id=rule.rule_id,
            message=(
                f"Rule {rule.name!r} triggered {task.task_type.value} "
                f"(confidence {score.confidence:g})"
            ),
            details={
                "record_ids": draft.subject_ids,
                "confidence": score.confidence,
                "reasoning": score.reasoning,
                "task_status": task.status.value,
            },
        )
        return True

    async def _record_error(
        self,
        report: CycleReport,
        rule: Rule | None,
        record_ids: list[Any],
        message: str,
    ) -> None:
        rule_id = rule.rule_id if rule else None
        report.errors.append(CycleError(rule_id=rule_id, record_ids=record_ids, error=message))
        await log.awarning(
            "rule_evaluation_error",
            rule_id=rule_id,
            record_ids=record_ids,
            error=message,
        )
        label = f"Rule {rule.name!r}" if rule else "Rule cycle"
        await self._audit.record(
            action=LogAction.RULE_EVALUATION_ERROR,
            status=LogStatus.ERROR,
            actor=actor_ref(ActorType.RULE, rule_id) if rule_id else ActorType.SYSTEM.value,
            rule_id=rule_id,
            message=f"{label} evaluation failed: {message}",
            details={"record_ids": record_ids, "error": message},
        )
