"""TraceMiddleware -- 为任务/规则操作绑定 trace_id

trace_id 由路径中的 task_id 或 rule_id 生成，贯穿该请求内的全部日志。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

ULID_LENGTH = 26

# 路径段 -> trace 前缀
_TRACED_SEGMENTS = {"tasks": "task", "rules": "rule"}


def extract_trace_id(path: str) -> str | None:
    """从 /api/tasks/{task_id}/... 或 /api/rules/{rule_id}/... 提取 trace_id"""
    parts = path.strip("/").split("/")
    for i, part in enumerate(parts[:-1]):
        prefix = _TRACED_SEGMENTS.get(part)
        if prefix and len(parts[i + 1]) == ULID_LENGTH:
            return f"trace-{prefix}-{parts[i + 1]}"
    return None


class TraceMiddleware(BaseHTTPMiddleware):
    """任务级追踪中间件"""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace_id = extract_trace_id(request.url.path)
        if trace_id:
            structlog.contextvars.bind_contextvars(trace_id=trace_id)
        return await call_next(request)
