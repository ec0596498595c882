"""Payload 构造 -- 规则命中记录 -> 基础 payload

按规则的 action_type 构造对应 payload：
- generate_po / send_rfq: 单条物料记录，数量 = reorder_point × multiplier，且不低于 min_order_qty
- reorder_materials: 同一供应商的命中物料合并为一张多行采购单
- send_email: 对入站邮件的回复
- vendor_followup: 对未回复采购单的跟进邮件

快照记录字段兼容 snake_case 与 camelCase（ERP 原始列名为 camelCase）。
Scorer 的 suggested_parameters 只允许覆盖白名单字段，覆盖后重新校验。
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from pydantic.alias_generators import to_camel

from opspilot.core.exceptions import RuleEvaluationError, ValidationError
from opspilot.core.models import Rule, TaskType, dump_payload, parse_payload

DEFAULT_MULTIPLIER = Decimal("2")
DEFAULT_RFQ_RESPONSE_DAYS = 7
_CENTS = Decimal("0.01")

DEFAULT_REPLY_BODY = (
    "Thank you for your email. We have received your message and "
    "will get back to you shortly."
)
DEFAULT_FOLLOWUP_BODY = (
    "We are following up on purchase order {po_number} sent earlier. "
    "Please confirm receipt and the expected delivery date at your earliest convenience."
)

# 各任务类型允许被 Scorer 覆盖的 payload 字段
SUGGESTION_FIELDS: dict[TaskType, frozenset[str]] = {
    TaskType.GENERATE_PO: frozenset({"quantity"}),
    TaskType.SEND_RFQ: frozenset({"quantity"}),
    TaskType.REORDER_MATERIALS: frozenset(),
    TaskType.SEND_EMAIL: frozenset({"subject", "body"}),
    TaskType.VENDOR_FOLLOWUP: frozenset({"subject", "body"}),
}


@dataclass
class PayloadDraft:
    """待打分的基础 payload 及其来源记录"""

    task_type: TaskType
    payload: dict[str, Any]
    records: list[dict[str, Any]] = field(default_factory=list)

    @property
    def subject_ids(self) -> list[Any]:
        return [r.get("id") for r in self.records]


def _get(record: dict[str, Any], name: str, default: Any = None) -> Any:
    """取字段，依次尝试 snake_case 与 camelCase"""
    if name in record:
        return record[name]
    return record.get(to_camel(name), default)


def _require(record: dict[str, Any], name: str) -> Any:
    value = _get(record, name)
    if value is None or value == "":
        raise RuleEvaluationError(f"record {record.get('id')!r} has no {name}")
    return value


def _decimal(value: Any, name: str) -> Decimal:
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise RuleEvaluationError(f"{name} is not numeric: {value!r}") from None


def _int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise RuleEvaluationError(f"{name} is not an integer: {value!r}")
    if isinstance(value, float) and value.is_integer():
        return int(value)
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise RuleEvaluationError(f"{name} is not an integer: {value!r}") from None


def reorder_quantity(record: dict[str, Any], config: dict[str, Any]) -> Decimal:
    """补货数量：reorder_point × multiplier，不低于 min_order_qty"""
    multiplier = _decimal(config.get("multiplier", DEFAULT_MULTIPLIER), "multiplier")
    reorder_point = _get(record, "reorder_point")
    min_order_qty = _get(record, "min_order_qty")

    quantity = Decimal("0")
    if reorder_point not in (None, ""):
        quantity = _decimal(reorder_point, "reorder_point") * multiplier
    if min_order_qty not in (None, ""):
        quantity = max(quantity, _decimal(min_order_qty, "min_order_qty"))
    if quantity <= 0:
        raise RuleEvaluationError(
            f"cannot derive a positive reorder quantity for material {record.get('id')!r}"
        )
    return quantity


def _money(value: Decimal) -> Decimal:
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def _vendor_id(record: dict[str, Any], config: dict[str, Any]) -> int:
    vendor_id = config.get("vendor_id") or _get(record, "preferred_vendor_id")
    if not vendor_id:
        raise RuleEvaluationError(f"material {record.get('id')!r} has no preferred vendor")
    return _int(vendor_id, "vendor_id")


def _build_generate_po(record: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
    quantity = reorder_quantity(record, config)
    raw_cost = _get(record, "unit_cost")
    unit_cost = _decimal(raw_cost, "unit_cost") if raw_cost not in (None, "") else None
    total = _money(quantity * unit_cost) if unit_cost is not None else Decimal("0.00")
    return {
        "vendor_id": _vendor_id(record, config),
        "raw_material_id": _require(record, "id"),
        "quantity": str(quantity),
        "unit_cost": str(unit_cost) if unit_cost is not None else None,
        "total_amount": str(total),
        "material_name": _get(record, "name", ""),
        "vendor_name": _get(record, "preferred_vendor_name", "") or "",
    }


def _build_send_rfq(record: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
    vendor_ids = config.get("vendor_ids") or _get(record, "vendor_ids") or []
    if not vendor_ids:
        raise RuleEvaluationError(f"material {record.get('id')!r} has no candidate vendors")
    days = _int(config.get("response_days", DEFAULT_RFQ_RESPONSE_DAYS), "response_days")
    due_date = (datetime.now(UTC) + timedelta(days=days)).date().isoformat()
    return {
        "raw_material_id": _require(record, "id"),
        "vendor_ids": list(dict.fromkeys(_int(v, "vendor_id") for v in vendor_ids)),
        "quantity": str(reorder_quantity(record, config)),
        "due_date": due_date,
        "material_name": _get(record, "name", ""),
    }


def _build_send_email(record: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
    subject = (_get(record, "subject") or "").strip()
    if not subject.lower().startswith("re:"):
        subject = f"Re: {subject}" if subject else "Re: your message"
    return {
        "to": _get(record, "from_address") or _require(record, "from"),
        "subject": subject,
        "body": config.get("body") or DEFAULT_REPLY_BODY,
        "in_reply_to_email_id": _require(record, "id"),
        "cc": list(config.get("cc", [])),
    }


def _build_vendor_followup(record: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
    po_number = str(_get(record, "po_number") or record.get("id"))
    body = config.get("body") or DEFAULT_FOLLOWUP_BODY
    return {
        "purchase_order_id": _require(record, "id"),
        "vendor_id": _require(record, "vendor_id"),
        "vendor_email": _require(record, "vendor_email"),
        "po_number": po_number,
        "subject": config.get("subject") or f"Follow-up on purchase order {po_number}",
        "body": body.replace("{po_number}", po_number),
    }


def _reorder_line(record: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
    raw_cost = _get(record, "unit_cost")
    if raw_cost not in (None, ""):
        _decimal(raw_cost, "unit_cost")
    return {
        "raw_material_id": _require(record, "id"),
        "quantity": str(reorder_quantity(record, config)),
        "unit_cost": str(raw_cost) if raw_cost not in (None, "") else "0",
        "name": _get(record, "name", ""),
    }


def _build_reorder_materials(
    records: list[dict[str, Any]],
    config: dict[str, Any],
) -> tuple[list[PayloadDraft], list[tuple[dict[str, Any], str]]]:
    groups: dict[int, list[tuple[dict[str, Any], dict[str, Any]]]] = {}
    rejected: list[tuple[dict[str, Any], str]] = []
    for record in records:
        try:
            vendor_id = _vendor_id(record, config)
            line = _reorder_line(record, config)
        except RuleEvaluationError as e:
            rejected.append((record, e.message))
            continue
        groups.setdefault(vendor_id, []).append((record, line))

    drafts = [
        PayloadDraft(
            task_type=TaskType.REORDER_MATERIALS,
            payload={"vendor_id": vendor_id, "lines": [line for _, line in members]},
            records=[record for record, _ in members],
        )
        for vendor_id, members in groups.items()
    ]
    return drafts, rejected


_SINGLE_RECORD_BUILDERS = {
    TaskType.GENERATE_PO: _build_generate_po,
    TaskType.SEND_RFQ: _build_send_rfq,
    TaskType.SEND_EMAIL: _build_send_email,
    TaskType.VENDOR_FOLLOWUP: _build_vendor_followup,
}


def build_draft(rule: Rule, record: dict[str, Any]) -> PayloadDraft:
    """单条记录 -> 基础 payload（reorder_materials 以外的任务类型）

    Raises:
        RuleEvaluationError: 记录缺少构造 payload 所需字段
    """
    builder = _SINGLE_RECORD_BUILDERS[rule.action_type]
    return PayloadDraft(
        task_type=rule.action_type,
        payload=builder(record, rule.action_config),
        records=[record],
    )


def build_grouped_drafts(
    rule: Rule,
    records: list[dict[str, Any]],
) -> tuple[list[PayloadDraft], list[tuple[dict[str, Any], str]]]:
    """多条记录 -> 按供应商合并的 reorder_materials payload

    Returns:
        (drafts, rejected) -- rejected 为无法构造订单行的记录及原因，不影响其他记录
    """
    return _build_reorder_materials(records, rule.action_config)


def apply_suggestions(
    task_type: TaskType,
    payload: dict[str, Any],
    suggested: dict[str, Any] | None,
) -> dict[str, Any]:
    """应用 Scorer 建议的参数并重新校验

    Raises:
        RuleEvaluationError: 覆盖后的 payload 不合法
    """
    allowed = SUGGESTION_FIELDS[task_type]
    updated = dict(payload)
    for key, value in (suggested or {}).items():
        if key in allowed and value is not None:
            updated[key] = value

    if task_type is TaskType.GENERATE_PO and "quantity" in (suggested or {}):
        unit_cost = updated.get("unit_cost")
        if unit_cost is not None:
            quantity = _decimal(updated["quantity"], "quantity")
            updated["total_amount"] = str(_money(quantity * _decimal(unit_cost, "unit_cost")))

    try:
        return dump_payload(parse_payload(task_type, updated))
    except ValidationError as e:
        raise RuleEvaluationError(f"payload invalid after scoring: {e.message}") from e
