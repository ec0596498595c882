"""SSE 日志流路由

GET /api/stream/logs: 实时推送新提交的审计日志，可按 task_id 过滤。
支持 Last-Event-ID（即日志 seq）断线重连补发、心跳保活。
按 task_id 订阅时先补发该任务历史日志，任务进入终态后携带 final: true 并结束。
"""

import asyncio
import json
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends, Query, Request
from sse_starlette.sse import EventSourceResponse

from opspilot.core.config import SSE_HEARTBEAT_INTERVAL
from opspilot.core.exceptions import NotFoundError
from opspilot.core.models import TERMINAL_STATES, LogEntry, TaskStatus
from opspilot.core.store import StoreGroup

from ..deps import get_sse_hub, get_store_group
from ..services.sse_hub import ALL_LOGS, SSEHub

router = APIRouter()


def is_terminal_entry(entry: LogEntry) -> bool:
    """判断日志是否标识任务到达终态"""
    to_status = entry.details.get("to_status")
    if to_status is None:
        return False
    try:
        return TaskStatus(to_status) in TERMINAL_STATES
    except ValueError:
        return False


def entry_to_sse(entry: LogEntry, is_final: bool = False) -> dict:
    """LogEntry -> sse-starlette 事件 dict"""
    data = entry.model_dump(mode="json")
    data["final"] = is_final
    return {
        "id": str(entry.seq),
        "event": entry.action.value,
        "data": json.dumps(data, ensure_ascii=False),
    }


def parse_last_event_id(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


async def log_event_stream(
    store_group: StoreGroup,
    sse_hub: SSEHub,
    task_id: str | None = None,
    last_seq: int | None = None,
    heartbeat_s: float = SSE_HEARTBEAT_INTERVAL,
) -> AsyncGenerator[dict, None]:
    """日志事件流

    先订阅再补发历史，按 seq 去重，保证补发与实时推送之间不丢不重。
    """
    key = task_id or ALL_LOGS
    queue = await sse_hub.subscribe(key)
    try:
        if last_seq is not None:
            backlog = await store_group.log_store.get_logs_after(last_seq)
            if task_id:
                backlog = [e for e in backlog if e.task_id == task_id]
        elif task_id:
            backlog = await store_group.log_store.get_logs_for_task(task_id)
        else:
            backlog = []

        sent_seq = last_seq or 0
        for entry in backlog:
            is_final = task_id is not None and is_terminal_entry(entry)
            yield entry_to_sse(entry, is_final=is_final)
            sent_seq = max(sent_seq, entry.seq)
            if is_final:
                return

        while True:
            try:
                entry = await asyncio.wait_for(queue.get(), timeout=heartbeat_s)
            except TimeoutError:
                yield {"comment": "heartbeat"}
                continue
            if entry.seq <= sent_seq:
                continue
            is_final = task_id is not None and is_terminal_entry(entry)
            yield entry_to_sse(entry, is_final=is_final)
            sent_seq = entry.seq
            if is_final:
                return
    finally:
        await sse_hub.unsubscribe(key, queue)


@router.get("/api/stream/logs")
async def stream_logs(
    request: Request,
    task_id: str | None = Query(default=None, description="只推送该任务的日志"),
    store_group: StoreGroup = Depends(get_store_group),
    sse_hub: SSEHub = Depends(get_sse_hub),
):
    """SSE 日志流端点"""
    if task_id:
        task = await store_group.task_store.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)

    last_seq = parse_last_event_id(request.headers.get("last-event-id"))
    return EventSourceResponse(log_event_stream(store_group, sse_hub, task_id, last_seq))
