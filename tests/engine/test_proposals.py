"""Payload 构造测试 -- 补货数量、按供应商合并、邮件回复、Scorer 建议覆盖"""

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from opspilot.core.exceptions import RuleEvaluationError
from opspilot.core.models import (
    ConditionOperator,
    Rule,
    RuleType,
    TaskType,
    TriggerCondition,
)
from opspilot.engine.proposals import (
    DEFAULT_REPLY_BODY,
    apply_suggestions,
    build_draft,
    build_grouped_drafts,
    reorder_quantity,
)


def _rule(action_type: TaskType, rule_type: RuleType, **config) -> Rule:
    now = datetime.now(UTC)
    return Rule(
        rule_id="01JRULE0000000000000000001",
        name="test rule",
        rule_type=rule_type,
        trigger_condition=TriggerCondition(
            field="current_stock", operator=ConditionOperator.LT, ref="reorder_point"
        ),
        action_type=action_type,
        action_config=config,
        created_at=now,
        updated_at=now,
    )


MATERIAL = {
    "id": 1,
    "name": "Steel sheet",
    "currentStock": 40,
    "reorderPoint": 100,
    "minOrderQty": 150,
    "unitCost": "10.00",
    "preferredVendorId": 2,
    "preferredVendorName": "Acme Metals",
}


class TestReorderQuantity:
    def test_multiplier(self):
        assert reorder_quantity({"reorder_point": 100}, {}) == Decimal("200")
        assert reorder_quantity({"reorder_point": 100}, {"multiplier": 3}) == Decimal("300")

    def test_min_order_qty_floor(self):
        assert reorder_quantity({"reorder_point": 10, "min_order_qty": 50}, {}) == Decimal("50")

    def test_no_positive_quantity(self):
        with pytest.raises(RuleEvaluationError):
            reorder_quantity({"id": 7, "reorder_point": 0}, {})


class TestBuildDraft:
    def test_generate_po_from_camel_case_record(self):
        draft = build_draft(_rule(TaskType.GENERATE_PO, RuleType.PO_AUTO_GENERATE), MATERIAL)
        assert draft.task_type is TaskType.GENERATE_PO
        assert draft.payload["vendor_id"] == 2
        assert draft.payload["raw_material_id"] == 1
        assert Decimal(draft.payload["quantity"]) == Decimal("200")
        assert Decimal(draft.payload["total_amount"]) == Decimal("2000.00")
        assert draft.subject_ids == [1]

    def test_generate_po_without_vendor(self):
        record = {**MATERIAL, "preferredVendorId": None}
        with pytest.raises(RuleEvaluationError, match="no preferred vendor"):
            build_draft(_rule(TaskType.GENERATE_PO, RuleType.PO_AUTO_GENERATE), record)

    def test_generate_po_non_numeric_vendor(self):
        record = {**MATERIAL, "preferredVendorId": "abc"}
        with pytest.raises(RuleEvaluationError, match="vendor_id is not an integer"):
            build_draft(_rule(TaskType.GENERATE_PO, RuleType.PO_AUTO_GENERATE), record)

    def test_send_rfq_non_numeric_response_days(self):
        rule = _rule(
            TaskType.SEND_RFQ, RuleType.RFQ_AUTO_SEND, vendor_ids=[1], response_days="soon"
        )
        with pytest.raises(RuleEvaluationError, match="response_days"):
            build_draft(rule, MATERIAL)

    def test_send_rfq(self):
        rule = _rule(TaskType.SEND_RFQ, RuleType.RFQ_AUTO_SEND, vendor_ids=[1, 2, 3])
        draft = build_draft(rule, MATERIAL)
        assert draft.payload["vendor_ids"] == [1, 2, 3]
        assert draft.payload["due_date"] > datetime.now(UTC).date().isoformat()

    def test_send_email_reply(self):
        rule = _rule(TaskType.SEND_EMAIL, RuleType.EMAIL_AUTO_REPLY)
        draft = build_draft(
            rule,
            {"id": 42, "from_address": "buyer@vendor.com", "subject": "Quote for steel"},
        )
        assert draft.payload["to"] == "buyer@vendor.com"
        assert draft.payload["subject"] == "Re: Quote for steel"
        assert draft.payload["body"] == DEFAULT_REPLY_BODY
        assert draft.payload["in_reply_to_email_id"] == 42

    def test_vendor_followup(self):
        rule = _rule(TaskType.VENDOR_FOLLOWUP, RuleType.VENDOR_FOLLOWUP)
        draft = build_draft(
            rule,
            {"id": 12, "poNumber": "PO-000012", "vendorId": 3, "vendorEmail": "s@v.com"},
        )
        assert draft.payload["purchase_order_id"] == 12
        assert "PO-000012" in draft.payload["subject"]
        assert "PO-000012" in draft.payload["body"]


class TestGroupedDrafts:
    def test_grouped_by_vendor(self):
        rule = _rule(TaskType.REORDER_MATERIALS, RuleType.INVENTORY_REORDER)
        records = [
            {"id": 1, "reorder_point": 10, "preferred_vendor_id": 2, "unit_cost": "1.5"},
            {"id": 2, "reorder_point": 20, "preferred_vendor_id": 2},
            {"id": 3, "reorder_point": 5, "preferred_vendor_id": 9},
        ]
        drafts, rejected = build_grouped_drafts(rule, records)
        assert rejected == []
        by_vendor = {d.payload["vendor_id"]: d for d in drafts}
        assert set(by_vendor) == {2, 9}
        assert [line["raw_material_id"] for line in by_vendor[2].payload["lines"]] == [1, 2]
        assert by_vendor[2].subject_ids == [1, 2]
        assert by_vendor[9].payload["lines"][0]["unit_cost"] == "0"

    def test_bad_vendor_id_rejects_only_that_record(self):
        rule = _rule(TaskType.REORDER_MATERIALS, RuleType.INVENTORY_REORDER)
        records = [
            {"id": 1, "reorder_point": 10, "preferred_vendor_id": 2},
            {"id": 2, "reorder_point": 10, "preferred_vendor_id": "abc"},
            {"id": 3, "reorder_point": 10, "preferred_vendor_id": 2},
        ]
        drafts, rejected = build_grouped_drafts(rule, records)
        assert [d.subject_ids for d in drafts] == [[1, 3]]
        assert [record["id"] for record, _ in rejected] == [2]
        assert "vendor_id" in rejected[0][1]


class TestApplySuggestions:
    def test_quantity_override_recomputes_total(self):
        payload = {
            "vendor_id": 2,
            "raw_material_id": 1,
            "quantity": "200",
            "unit_cost": "10.00",
            "total_amount": "2000.00",
        }
        updated = apply_suggestions(TaskType.GENERATE_PO, payload, {"quantity": 250})
        assert Decimal(updated["quantity"]) == Decimal("250")
        assert Decimal(updated["total_amount"]) == Decimal("2500.00")

    def test_non_whitelisted_fields_ignored(self):
        payload = {
            "vendor_id": 2,
            "raw_material_id": 1,
            "quantity": "200",
            "total_amount": "2000.00",
        }
        updated = apply_suggestions(TaskType.GENERATE_PO, payload, {"vendor_id": 99})
        assert updated["vendor_id"] == 2

    def test_invalid_override_raises(self):
        payload = {
            "vendor_id": 2,
            "raw_material_id": 1,
            "quantity": "200",
            "total_amount": "2000.00",
        }
        with pytest.raises(RuleEvaluationError, match="payload invalid after scoring"):
            apply_suggestions(TaskType.GENERATE_PO, payload, {"quantity": -5})
