"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭、引擎服务组装、遗留执行中任务处理、调度器启停。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from starlette.responses import JSONResponse

from opspilot.core.config import get_db_path, get_scorer_timeout_s, is_scheduler_enabled
from opspilot.core.exceptions import (
    ApprovalStateError,
    DomainServiceError,
    NotFoundError,
    OpsPilotError,
    RuleEvaluationError,
    ValidationError,
)
from opspilot.core.store import create_store_group
from opspilot.engine import LLMConfidenceScorer, create_engine_services
from opspilot.provider import LiteLLMClient, create_llm_client, load_provider_config

from .middleware.logging_config import setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import approvals, health, logs, rules, stream, tasks, triggers
from .services.sse_hub import SSEHub

log = structlog.get_logger()

# 异常类型 -> HTTP 状态码（按 MRO 顺序匹配，子类在前）
_ERROR_STATUS: list[tuple[type[OpsPilotError], int]] = [
    (NotFoundError, 404),
    (ApprovalStateError, 409),
    (ValidationError, 422),
    (RuleEvaluationError, 422),
    (DomainServiceError, 502),
]


def error_status(exc: OpsPilotError) -> int:
    for exc_type, status_code in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status_code
    return 500


async def opspilot_error_handler(request: Request, exc: OpsPilotError) -> JSONResponse:
    """统一错误信封 {"error": {"code", "message"}}"""
    status_code = error_status(exc)
    if status_code >= 500:
        await log.aerror("request_failed", code=exc.code, error=exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": exc.code, "message": exc.message}},
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """启动：打开 DB、组装引擎、处理上次遗留的 executing 任务、按配置启动调度器"""
    store_group = await create_store_group(get_db_path())
    app.state.store_group = store_group

    sse_hub = SSEHub()
    app.state.sse_hub = sse_hub

    provider_config = load_provider_config()
    llm_client = create_llm_client(provider_config)
    # 保存 litellm_client 引用供 /ready?profile=llm 使用，echo 模式为 None
    app.state.litellm_client = llm_client if isinstance(llm_client, LiteLLMClient) else None
    scorer = LLMConfidenceScorer(
        llm_client,
        model_alias=provider_config.scorer_model,
        timeout_s=get_scorer_timeout_s(),
    )
    log.info("scorer_initialized", mode=provider_config.llm_mode)

    engine = create_engine_services(store_group, listener=sse_hub, scorer=scorer)
    app.state.engine = engine

    await engine.executor.fail_interrupted()
    if is_scheduler_enabled():
        engine.scheduler.start()

    yield

    await engine.aclose()
    await store_group.close()


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="OpsPilot Gateway",
        version="0.1.0",
        description="采购运营自动化：规则评估、审批闸门与任务执行 API",
        lifespan=lifespan,
    )

    # 注册中间件（后注册者在外层：Logging 先清理并绑定 request_id，Trace 再追加 trace_id）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    app.add_exception_handler(OpsPilotError, opspilot_error_handler)

    setup_logging()

    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(approvals.router, tags=["approvals"])
    app.include_router(rules.router, tags=["rules"])
    app.include_router(logs.router, tags=["logs"])
    app.include_router(triggers.router, tags=["triggers"])
    app.include_router(stream.router, tags=["stream"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
