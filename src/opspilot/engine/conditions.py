"""触发条件求值 -- 对单条快照记录的纯函数

字段支持点号路径（vendor.email）；比较值来自 value 或同一记录中的 ref 字段。
ERP 的数值列可能以字符串返回（"12.50"），比较前统一转为 Decimal。
字段缺失或值不可比较时抛出 RuleEvaluationError。
"""

from decimal import Decimal, InvalidOperation
from typing import Any

from opspilot.core.exceptions import RuleEvaluationError
from opspilot.core.models import ConditionOperator, TriggerCondition

_MISSING = object()

_ORDERED_OPERATORS = {
    ConditionOperator.LT,
    ConditionOperator.LTE,
    ConditionOperator.GT,
    ConditionOperator.GTE,
}


def resolve_field(record: dict[str, Any], path: str) -> Any:
    """按点号路径取值，任一段缺失抛出 RuleEvaluationError"""
    current: Any = record
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part, _MISSING)
        else:
            current = _MISSING
        if current is _MISSING:
            raise RuleEvaluationError(f"field {path!r} is missing from record")
    return current


def _as_number(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int | float):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return None
    return None


def _compare_ordered(op: ConditionOperator, left: Any, right: Any, field: str) -> bool:
    left_num, right_num = _as_number(left), _as_number(right)
    if left_num is not None and right_num is not None:
        a, b = left_num, right_num
    elif isinstance(left, str) and isinstance(right, str):
        a, b = left, right
    else:
        raise RuleEvaluationError(
            f"cannot compare field {field!r} ({type(left).__name__}) "
            f"with {type(right).__name__} using {op.value}"
        )

    if op is ConditionOperator.LT:
        return a < b
    if op is ConditionOperator.LTE:
        return a <= b
    if op is ConditionOperator.GT:
        return a > b
    return a >= b


def _equals(left: Any, right: Any) -> bool:
    left_num, right_num = _as_number(left), _as_number(right)
    if left_num is not None and right_num is not None:
        return left_num == right_num
    return left == right


def _contains(left: Any, right: Any, field: str) -> bool:
    if isinstance(left, str) and isinstance(right, str):
        return right.lower() in left.lower()
    if isinstance(left, list | tuple | set):
        return any(_equals(item, right) for item in left)
    raise RuleEvaluationError(
        f"operator contains needs a string or list field, {field!r} is {type(left).__name__}"
    )


def evaluate_condition(condition: TriggerCondition, record: dict[str, Any]) -> bool:
    """对一条记录求值触发条件

    Raises:
        RuleEvaluationError: 字段缺失或值不可比较
    """
    left = resolve_field(record, condition.field)
    right = resolve_field(record, condition.ref) if condition.ref else condition.value
    op = condition.operator

    if op in _ORDERED_OPERATORS:
        if left is None or right is None:
            raise RuleEvaluationError(
                f"cannot apply {op.value} to null value of field {condition.field!r}"
            )
        return _compare_ordered(op, left, right, condition.field)
    if op is ConditionOperator.EQ:
        return _equals(left, right)
    if op is ConditionOperator.NE:
        return not _equals(left, right)
    if left is None:
        return False
    return _contains(left, right, condition.field)
