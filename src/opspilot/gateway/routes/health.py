"""健康检查路由

GET /health: Liveness 检查，永远返回 200
GET /ready: Readiness 检查，SQLite 连通性 + 调度器状态；profile=llm 时额外探测 LiteLLM Proxy
"""

import structlog
from fastapi import APIRouter, Query, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/ready")
async def ready(
    request: Request,
    profile: str | None = Query(
        default=None,
        description="core（默认）仅核心检查；llm 额外探测 LiteLLM Proxy",
    ),
):
    """Readiness 检查

    检查项：
    1. sqlite: 数据库连通性
    2. scheduler: running / stopped（仅报告，不影响就绪状态）
    3. litellm_proxy: profile=llm 且配置了 LiteLLM 客户端时真实探测，否则 skipped
    """
    effective_profile = profile or "core"
    checks: dict[str, str] = {}
    all_ok = True

    try:
        cursor = await request.app.state.store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        checks["sqlite"] = f"error: {e}"
        all_ok = False

    engine = getattr(request.app.state, "engine", None)
    checks["scheduler"] = "running" if engine and engine.scheduler.is_running else "stopped"

    litellm_client = getattr(request.app.state, "litellm_client", None)
    if effective_profile == "llm" and litellm_client is not None:
        if await litellm_client.health_check():
            checks["litellm_proxy"] = "ok"
        else:
            log.warning("litellm_proxy_unreachable")
            checks["litellm_proxy"] = "unreachable"
            all_ok = False
    else:
        checks["litellm_proxy"] = "skipped"

    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={
            "status": "ready" if all_ok else "not_ready",
            "profile": effective_profile,
            "checks": checks,
        },
    )
