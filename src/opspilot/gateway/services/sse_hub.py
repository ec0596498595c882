"""SSEHub -- 内存中的审计日志广播器

订阅键为 task_id（只接收该任务的日志）或 "*"（接收全部日志）。
每个订阅者持有一个有界 asyncio.Queue，消费过慢（队列已满）的订阅者被移除。
"""

import asyncio
from collections import defaultdict

import structlog

from opspilot.core.models import LogEntry

log = structlog.get_logger()

ALL_LOGS = "*"


class SSEHub:
    """SSE 日志广播器 -- 基于 asyncio.Queue 的发布/订阅"""

    def __init__(self, queue_maxsize: int = 100) -> None:
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._queue_maxsize = queue_maxsize

    @property
    def subscriber_count(self) -> int:
        return sum(len(queues) for queues in self._subscribers.values())

    async def subscribe(self, key: str = ALL_LOGS) -> asyncio.Queue:
        """订阅日志流

        Args:
            key: task_id，或 "*" 订阅全部

        Returns:
            新日志会被推送到此队列
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._subscribers[key].add(queue)
        return queue

    async def unsubscribe(self, key: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(key)
        if queues is None:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[key]

    async def broadcast(self, entry: LogEntry) -> None:
        """向全量订阅者及该任务的订阅者推送一条已提交日志"""
        keys = [ALL_LOGS]
        if entry.task_id:
            keys.append(entry.task_id)

        for key in keys:
            dead_queues = []
            for queue in self._subscribers.get(key, set()):
                try:
                    queue.put_nowait(entry)
                except asyncio.QueueFull:
                    dead_queues.append(queue)
            for queue in dead_queues:
                await log.awarning("sse_subscriber_dropped", key=key, seq=entry.seq)
                await self.unsubscribe(key, queue)
