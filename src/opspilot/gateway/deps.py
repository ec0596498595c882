"""依赖注入模块 -- 通过 FastAPI Depends 注入服务实例

实例挂在 app.state 上，由 lifespan 初始化/清理。
"""

from fastapi import Request

from opspilot.core.store import StoreGroup
from opspilot.engine import EngineServices

from .services.sse_hub import SSEHub


def get_store_group(request: Request) -> StoreGroup:
    return request.app.state.store_group


def get_sse_hub(request: Request) -> SSEHub:
    return request.app.state.sse_hub


def get_engine(request: Request) -> EngineServices:
    """从 app.state 获取引擎服务组"""
    return request.app.state.engine
