"""TaskExecutor 测试 -- 分派、部分失败、超时、并发认领、中断恢复"""

import asyncio
import sqlite3
from decimal import Decimal

import pytest
from opspilot.core.exceptions import ApprovalStateError, DomainServiceError
from opspilot.core.models import LogAction, TaskProposal, TaskStatus, TaskType
from opspilot.engine.domain import InMemoryDomainServices
from opspilot.engine.executor import INTERRUPTED_ERROR, TaskExecutor


async def _approved(engine, proposal: TaskProposal) -> str:
    task, _ = await engine.task_service.create(proposal)
    await engine.task_service.approve(task.task_id, approver_id=7)
    return task.task_id


def _rfq_proposal(vendor_ids: list[int]) -> TaskProposal:
    return TaskProposal(
        task_type="send_rfq",
        payload={"raw_material_id": 4, "vendor_ids": vendor_ids, "quantity": "120"},
        reasoning="price check before reorder",
        confidence=70,
    )


def _reorder_proposal() -> TaskProposal:
    return TaskProposal(
        task_type="reorder_materials",
        payload={
            "vendor_id": 2,
            "lines": [
                {"raw_material_id": 1, "quantity": "200", "unit_cost": "10.00"},
                {"raw_material_id": 4, "quantity": "50", "unit_cost": "3.50"},
            ],
        },
        reasoning="two materials below reorder point",
        confidence=88,
    )


class TestExecute:
    async def test_generate_po_completes(self, engine, domain, make_po_proposal):
        task_id = await _approved(engine, make_po_proposal())

        task = await engine.executor.execute(task_id)

        assert task.status == TaskStatus.COMPLETED
        assert task.result == {"purchaseOrderId": 1, "poNumber": "PO-000001"}
        assert task.executed_at is not None
        assert task.completed_at is not None
        assert len(domain.purchase_orders) == 1
        po = domain.purchase_orders[1]
        assert po["vendor_id"] == 2
        assert po["total_amount"] == Decimal("5000.00")
        assert domain.on_order == [
            {"raw_material_id": 1, "quantity": Decimal("500"), "purchase_order_id": 1}
        ]
        assert domain.calls == [
            ("create_purchase_order", f"{task_id}:create_purchase_order"),
            ("mark_on_order", f"{task_id}:mark_on_order"),
        ]

        actions = [e.action for e in await engine.audit_log.for_task(task_id)]
        assert actions == [
            LogAction.TASK_CREATED,
            LogAction.TASK_APPROVED,
            LogAction.TASK_EXECUTING,
            LogAction.TASK_COMPLETED,
        ]

    async def test_send_rfq_invites_every_vendor(self, engine, domain):
        task_id = await _approved(engine, _rfq_proposal([1, 2, 3]))

        task = await engine.executor.execute(task_id)

        assert task.status == TaskStatus.COMPLETED
        assert task.result["invitationCount"] == 3
        assert len(task.result["invitationIds"]) == 3
        assert [i["vendor_id"] for i in domain.invitations] == [1, 2, 3]
        assert {i["rfq_id"] for i in domain.invitations} == {task.result["rfqId"]}

    async def test_reorder_marks_each_line(self, engine, domain):
        task_id = await _approved(engine, _reorder_proposal())

        task = await engine.executor.execute(task_id)

        assert task.status == TaskStatus.COMPLETED
        assert task.result["lineCount"] == 2
        po = domain.purchase_orders[task.result["purchaseOrderId"]]
        assert po["total_amount"] == Decimal("2175.00")
        assert [m["raw_material_id"] for m in domain.on_order] == [1, 4]

    async def test_send_email(self, engine, domain):
        proposal = TaskProposal(
            task_type="send_email",
            payload={
                "to": "buyer@vendor.com",
                "subject": "Re: Quote request",
                "body": "Thanks, we will reply shortly.",
                "in_reply_to_email_id": 42,
            },
            confidence=90,
        )
        task_id = await _approved(engine, proposal)

        task = await engine.executor.execute(task_id)

        assert task.status == TaskStatus.COMPLETED
        assert task.result == {"messageId": domain.sent_emails[0]["message_id"]}
        assert domain.sent_emails[0]["in_reply_to_email_id"] == 42

    async def test_vendor_followup(self, engine, domain):
        proposal = TaskProposal(
            task_type="vendor_followup",
            payload={
                "purchase_order_id": 12,
                "vendor_id": 3,
                "vendor_email": "sales@vendor.com",
                "po_number": "PO-12",
            },
            confidence=60,
        )
        task_id = await _approved(engine, proposal)

        task = await engine.executor.execute(task_id)

        assert task.result["purchaseOrderId"] == 12
        assert domain.sent_emails[0]["subject"] == "Follow-up on purchase order PO-12"

    async def test_pending_task_not_executed(self, engine, domain, make_po_proposal):
        task, _ = await engine.task_service.create(make_po_proposal())

        with pytest.raises(ApprovalStateError):
            await engine.executor.execute(task.task_id)

        assert domain.calls == []
        assert (await engine.task_service.get(task.task_id)).status == TaskStatus.PENDING_APPROVAL

    async def test_concurrent_execute_single_winner(self, engine, domain, make_po_proposal):
        task_id = await _approved(engine, make_po_proposal())

        results = await asyncio.gather(
            engine.executor.execute(task_id),
            engine.executor.execute(task_id),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], ApprovalStateError)
        assert len(domain.purchase_orders) == 1


class TestFailures:
    async def test_partial_failure_keeps_created_po(self, engine, domain, make_po_proposal):
        domain.failures["mark_on_order"] = DomainServiceError(
            "material is locked by a stock count", error_code="conflict"
        )
        task_id = await _approved(engine, make_po_proposal())

        task = await engine.executor.execute(task_id)

        assert task.status == TaskStatus.FAILED
        assert task.error == "step mark_on_order failed: material is locked by a stock count"
        assert task.result == {"purchaseOrderId": 1, "poNumber": "PO-000001"}
        assert len(domain.purchase_orders) == 1

        logs = await engine.audit_log.for_task(task_id)
        assert logs[-1].action == LogAction.TASK_FAILED
        assert logs[-1].details["partial_result"]["purchaseOrderId"] == 1

    async def test_first_step_failure_has_no_result(self, engine, domain, make_po_proposal):
        domain.failures["create_purchase_order"] = DomainServiceError("vendor inactive")
        task_id = await _approved(engine, make_po_proposal())

        task = await engine.executor.execute(task_id)

        assert task.status == TaskStatus.FAILED
        assert task.error == "step create_purchase_order failed: vendor inactive"
        assert task.result is None

    async def test_reorder_failure_records_marked_lines(self, engine, domain):
        task_id = await _approved(engine, _reorder_proposal())
        original = domain.mark_on_order

        async def fail_second(raw_material_id, quantity, purchase_order_id, idempotency_key):
            if raw_material_id == 4:
                raise DomainServiceError("unknown material")
            await original(raw_material_id, quantity, purchase_order_id, idempotency_key)

        domain.mark_on_order = fail_second
        task = await engine.executor.execute(task_id)

        assert task.status == TaskStatus.FAILED
        assert task.error.startswith("step mark_on_order:4 failed")
        assert task.result["markedMaterialIds"] == [1]

    async def test_domain_timeout(self, engine, make_po_proposal):
        slow = InMemoryDomainServices(delays={"create_purchase_order": 1.0})
        executor = TaskExecutor(engine.task_service, slow, domain_timeout_s=0.05)
        task_id = await _approved(engine, make_po_proposal())

        task = await executor.execute(task_id)

        assert task.status == TaskStatus.FAILED
        assert "timed out" in task.error
        assert slow.purchase_orders == {}

    async def test_unexpected_handler_error_becomes_failure(self, engine, domain, make_po_proposal):
        async def broken(task, payload, runner):
            raise RuntimeError("handler bug")

        executor = TaskExecutor(
            engine.task_service, domain, handlers={TaskType.GENERATE_PO: broken}
        )
        task_id = await _approved(engine, make_po_proposal())

        task = await executor.execute(task_id)

        assert task.status == TaskStatus.FAILED
        assert task.error == "unexpected RuntimeError: handler bug"


class TestBatch:
    async def test_execute_approved_runs_queue(self, engine, domain, make_po_proposal):
        for material_id in (1, 2, 3):
            await _approved(engine, make_po_proposal(raw_material_id=material_id))
        pending, _ = await engine.task_service.create(make_po_proposal(raw_material_id=9))

        executed = await engine.executor.execute_approved()

        assert len(executed) == 3
        assert all(t.status == TaskStatus.COMPLETED for t in executed)
        assert len(domain.purchase_orders) == 3
        assert (await engine.task_service.get(pending.task_id)).status == (
            TaskStatus.PENDING_APPROVAL
        )

    async def test_storage_error_on_one_task_spares_the_rest(
        self, engine, domain, make_po_proposal, monkeypatch
    ):
        task_ids = [
            await _approved(engine, make_po_proposal(raw_material_id=material_id))
            for material_id in (1, 2, 3)
        ]
        broken_id = task_ids[1]
        claim = engine.task_service.claim

        async def flaky_claim(task_id: str, *args, **kwargs):
            if task_id == broken_id:
                raise sqlite3.OperationalError("database is locked")
            return await claim(task_id, *args, **kwargs)

        monkeypatch.setattr(engine.task_service, "claim", flaky_claim)

        executed = await engine.executor.execute_approved()

        assert sorted(t.task_id for t in executed) == sorted([task_ids[0], task_ids[2]])
        assert len(domain.purchase_orders) == 2
        assert (await engine.task_service.get(broken_id)).status == TaskStatus.APPROVED

    async def test_execute_approved_empty(self, engine):
        assert await engine.executor.execute_approved() == []

    async def test_fail_interrupted(self, engine, make_po_proposal):
        task_id = await _approved(engine, make_po_proposal())
        await engine.task_service.claim(task_id)

        failed = await engine.executor.fail_interrupted()

        assert [t.task_id for t in failed] == [task_id]
        task = await engine.task_service.get(task_id)
        assert task.status == TaskStatus.FAILED
        assert task.error == INTERRUPTED_ERROR
        assert task.error.startswith("interrupted:")
        assert await engine.executor.fail_interrupted() == []
