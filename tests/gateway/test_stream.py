"""SSE 日志流测试 -- SSEHub 广播、历史补发、实时推送、Last-Event-ID、终态结束"""

import asyncio
import json
from datetime import UTC, datetime

from httpx import AsyncClient
from opspilot.core.models import LogAction, LogEntry
from opspilot.gateway.routes.stream import (
    entry_to_sse,
    is_terminal_entry,
    log_event_stream,
    parse_last_event_id,
)
from opspilot.gateway.services.sse_hub import ALL_LOGS, SSEHub


def _entry(seq: int, task_id: str | None = "T1", details: dict | None = None) -> LogEntry:
    return LogEntry(
        log_id=f"log-{seq}",
        seq=seq,
        task_id=task_id,
        action=LogAction.TASK_APPROVED,
        details=details or {},
        created_at=datetime.now(UTC),
    )


def _data(event: dict) -> dict:
    return json.loads(event["data"])


class TestSSEHub:
    async def test_broadcast_to_task_and_global(self):
        hub = SSEHub()
        task_queue = await hub.subscribe("T1")
        all_queue = await hub.subscribe(ALL_LOGS)
        other_queue = await hub.subscribe("T2")

        await hub.broadcast(_entry(1))

        assert (await asyncio.wait_for(task_queue.get(), 1)).seq == 1
        assert (await asyncio.wait_for(all_queue.get(), 1)).seq == 1
        assert other_queue.empty()

    async def test_rule_level_entry_only_global(self):
        hub = SSEHub()
        all_queue = await hub.subscribe()
        await hub.broadcast(_entry(1, task_id=None))
        assert all_queue.qsize() == 1

    async def test_slow_subscriber_dropped(self):
        hub = SSEHub(queue_maxsize=1)
        await hub.subscribe("T1")

        await hub.broadcast(_entry(1))
        await hub.broadcast(_entry(2))

        assert hub.subscriber_count == 0

    async def test_unsubscribe(self):
        hub = SSEHub()
        queue = await hub.subscribe("T1")
        await hub.unsubscribe("T1", queue)
        await hub.unsubscribe("T1", queue)
        assert hub.subscriber_count == 0


class TestHelpers:
    def test_terminal_detection(self):
        assert is_terminal_entry(_entry(1, details={"to_status": "completed"}))
        assert is_terminal_entry(_entry(1, details={"to_status": "rejected"}))
        assert not is_terminal_entry(_entry(1, details={"to_status": "approved"}))
        assert not is_terminal_entry(_entry(1))

    def test_entry_to_sse(self):
        event = entry_to_sse(_entry(12), is_final=True)
        assert event["id"] == "12"
        assert event["event"] == "task_approved"
        assert _data(event)["final"] is True
        assert _data(event)["seq"] == 12

    def test_parse_last_event_id(self):
        assert parse_last_event_id("41") == 41
        assert parse_last_event_id("abc") is None
        assert parse_last_event_id(None) is None


class TestLogEventStream:
    async def test_replay_then_live_until_terminal(self, test_app, make_po_proposal):
        engine = test_app.state.engine
        hub = test_app.state.sse_hub
        task, _ = await engine.task_service.create(make_po_proposal())

        stream = log_event_stream(test_app.state.store_group, hub, task_id=task.task_id)
        first = await stream.__anext__()
        assert first["event"] == "task_created"
        assert _data(first)["final"] is False

        await engine.task_service.approve(task.task_id, approver_id=7)
        await engine.executor.execute(task.task_id)

        rest = [event async for event in stream]
        assert [e["event"] for e in rest] == ["task_approved", "task_executing", "task_completed"]
        assert _data(rest[-1])["final"] is True
        assert hub.subscriber_count == 0

    async def test_terminal_history_closes_immediately(self, test_app, make_po_proposal):
        engine = test_app.state.engine
        task, _ = await engine.task_service.create(make_po_proposal())
        await engine.task_service.reject(task.task_id, approver_id=7, reason="not needed")

        events = [
            event
            async for event in log_event_stream(
                test_app.state.store_group, test_app.state.sse_hub, task_id=task.task_id
            )
        ]

        assert [e["event"] for e in events] == ["task_created", "task_rejected"]
        assert _data(events[-1])["final"] is True

    async def test_resume_after_last_event_id(self, test_app, make_po_proposal):
        engine = test_app.state.engine
        first, _ = await engine.task_service.create(make_po_proposal(raw_material_id=1))
        second, _ = await engine.task_service.create(make_po_proposal(raw_material_id=2))
        history = await engine.audit_log.for_task(first.task_id)

        stream = log_event_stream(
            test_app.state.store_group,
            test_app.state.sse_hub,
            last_seq=history[-1].seq,
            heartbeat_s=0.01,
        )
        replayed = await stream.__anext__()
        heartbeat = await stream.__anext__()
        await stream.aclose()

        assert _data(replayed)["task_id"] == second.task_id
        assert heartbeat == {"comment": "heartbeat"}
        assert test_app.state.sse_hub.subscriber_count == 0


class TestStreamEndpoint:
    async def test_unknown_task(self, client: AsyncClient):
        resp = await client.get(
            "/api/stream/logs", params={"task_id": "01J00000000000000000000000"}
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "TASK_NOT_FOUND"

    async def test_completed_task_stream(self, client: AsyncClient, test_app, make_po_proposal):
        engine = test_app.state.engine
        task, _ = await engine.task_service.create(make_po_proposal())
        await engine.task_service.approve(task.task_id, approver_id=7)
        await engine.executor.execute(task.task_id)

        received = []
        async with client.stream(
            "GET", "/api/stream/logs", params={"task_id": task.task_id}
        ) as response:
            assert response.status_code == 200
            async for line in response.aiter_lines():
                if line.startswith("data:"):
                    received.append(json.loads(line[len("data:"):].strip()))

        assert [e["action"] for e in received] == [
            "task_created",
            "task_approved",
            "task_executing",
            "task_completed",
        ]
        assert received[-1]["final"] is True
        assert all(not e["final"] for e in received[:-1])
