"""OpsPilot Engine -- 规则引擎、任务状态机、审批闸门、执行器与调度器

提供工厂函数按环境配置组装全部引擎服务（gateway lifespan 与 CLI 共用）。
"""

from datetime import timedelta

import structlog

from opspilot.core.config import (
    get_domain_timeout_s,
    get_erp_base_url,
    get_max_concurrent_executions,
    get_pending_ttl_hours,
    get_scheduler_interval_s,
    get_scorer_timeout_s,
)
from opspilot.core.store import StoreGroup
from opspilot.provider import create_llm_client, load_provider_config

from .approval_gate import ApprovalGate
from .audit_log import AuditLog, LogListener
from .domain import DomainServices, HttpDomainServices, InMemoryDomainServices
from .executor import TaskExecutor
from .rule_engine import CycleReport, RuleEngine
from .rule_service import RuleService
from .scheduler import AgentScheduler
from .scorer import ConfidenceScore, ConfidenceScorer, LLMConfidenceScorer
from .snapshot import HttpSnapshotProvider, SnapshotProvider, StaticSnapshotProvider
from .task_service import TaskService

log = structlog.get_logger()


class EngineServices:
    """引擎服务组 -- 共享同一个 StoreGroup"""

    def __init__(
        self,
        store_group: StoreGroup,
        scorer: ConfidenceScorer,
        domain_services: DomainServices,
        snapshot_provider: SnapshotProvider,
        listener: LogListener | None = None,
    ) -> None:
        self.store_group = store_group
        self.domain_services = domain_services
        self.snapshot_provider = snapshot_provider
        self.audit_log = AuditLog(store_group, listener)
        self.task_service = TaskService(store_group, self.audit_log)
        self.rule_service = RuleService(store_group)
        self.approval_gate = ApprovalGate(self.task_service)
        self.executor = TaskExecutor(
            self.task_service,
            domain_services,
            domain_timeout_s=get_domain_timeout_s(),
            max_concurrent=get_max_concurrent_executions(),
        )
        self.rule_engine = RuleEngine(
            self.rule_service,
            self.task_service,
            scorer,
            self.audit_log,
            snapshot_provider,
        )
        ttl_hours = get_pending_ttl_hours()
        self.pending_ttl = timedelta(hours=ttl_hours) if ttl_hours is not None else None
        self.scheduler = AgentScheduler(
            self.rule_engine,
            self.executor,
            self.approval_gate,
            interval_s=get_scheduler_interval_s(),
            pending_ttl=self.pending_ttl,
        )

    async def aclose(self) -> None:
        """停止调度器并释放 HTTP 客户端"""
        await self.scheduler.stop()
        for resource in (self.domain_services, self.snapshot_provider):
            if isinstance(resource, HttpDomainServices | HttpSnapshotProvider):
                await resource.aclose()


def create_engine_services(
    store_group: StoreGroup,
    listener: LogListener | None = None,
    scorer: ConfidenceScorer | None = None,
    domain_services: DomainServices | None = None,
    snapshot_provider: SnapshotProvider | None = None,
) -> EngineServices:
    """按环境配置组装引擎服务，显式传入的协作方优先"""
    if scorer is None:
        provider_config = load_provider_config()
        scorer = LLMConfidenceScorer(
            create_llm_client(provider_config),
            model_alias=provider_config.scorer_model,
            timeout_s=get_scorer_timeout_s(),
        )
        log.info("scorer_configured", llm_mode=provider_config.llm_mode)

    erp_base_url = get_erp_base_url()
    if domain_services is None:
        if erp_base_url:
            domain_services = HttpDomainServices(erp_base_url, timeout_s=get_domain_timeout_s())
        else:
            domain_services = InMemoryDomainServices()
    if snapshot_provider is None:
        if erp_base_url:
            snapshot_provider = HttpSnapshotProvider(erp_base_url, timeout_s=get_domain_timeout_s())
        else:
            snapshot_provider = StaticSnapshotProvider()
    log.info("domain_services_configured", erp_base_url=erp_base_url or "in-memory")

    return EngineServices(
        store_group=store_group,
        scorer=scorer,
        domain_services=domain_services,
        snapshot_provider=snapshot_provider,
        listener=listener,
    )


__all__ = [
    "EngineServices",
    "create_engine_services",
    "AuditLog",
    "TaskService",
    "RuleService",
    "ApprovalGate",
    "TaskExecutor",
    "RuleEngine",
    "CycleReport",
    "AgentScheduler",
    "ConfidenceScore",
    "LLMConfidenceScorer",
    "InMemoryDomainServices",
    "HttpDomainServices",
    "StaticSnapshotProvider",
    "HttpSnapshotProvider",
]
