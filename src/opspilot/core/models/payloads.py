"""Task Payload 变体 -- 每个 TaskType 对应一个 payload 模型

payload 同时接受 snake_case 与 camelCase 字段名（ERP 前端使用 camelCase），
落库时统一为 snake_case JSON。每个 payload 声明自己的主体实体（subject），
用于派生 dedup_key。
"""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ..exceptions import ValidationError
from .enums import TaskType


_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class _PayloadModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class BasePayload(_PayloadModel):
    """payload 基类"""

    def subject_ref(self) -> str:
        """主体实体标识，如 raw_material:1"""
        raise NotImplementedError


class GeneratePOPayload(BasePayload):
    """generate_po -- 为单个物料生成采购单"""

    vendor_id: int = Field(gt=0, description="供应商 ID")
    raw_material_id: int = Field(gt=0, description="物料 ID")
    quantity: Decimal = Field(gt=0, description="采购数量")
    unit_cost: Decimal | None = Field(default=None, ge=0, description="单价")
    total_amount: Decimal = Field(ge=0, description="采购总额")
    material_name: str = Field(default="", description="物料名称")
    vendor_name: str = Field(default="", description="供应商名称")

    def subject_ref(self) -> str:
        return f"raw_material:{self.raw_material_id}"


class SendRFQPayload(BasePayload):
    """send_rfq -- 向多个供应商询价"""

    raw_material_id: int = Field(gt=0, description="物料 ID")
    vendor_ids: list[int] = Field(min_length=1, description="受邀供应商 ID 列表")
    quantity: Decimal = Field(gt=0, description="询价数量")
    due_date: str | None = Field(default=None, description="报价截止日期（ISO 8601）")
    material_name: str = Field(default="", description="物料名称")

    @field_validator("vendor_ids")
    @classmethod
    def _unique_vendors(cls, value: list[int]) -> list[int]:
        if len(set(value)) != len(value):
            raise ValueError("vendor_ids must be unique")
        if any(v <= 0 for v in value):
            raise ValueError("vendor_ids must be positive")
        return value

    def subject_ref(self) -> str:
        return f"raw_material:{self.raw_material_id}"


class SendEmailPayload(BasePayload):
    """send_email -- 发送邮件（通常是入站邮件的回复）"""

    to: str = Field(pattern=_EMAIL_PATTERN, description="收件人")
    subject: str = Field(min_length=1, description="邮件主题")
    body: str = Field(min_length=1, description="邮件正文")
    cc: list[str] = Field(default_factory=list, description="抄送")
    in_reply_to_email_id: int | None = Field(
        default=None,
        description="被回复的入站邮件 ID",
    )

    def subject_ref(self) -> str:
        if self.in_reply_to_email_id is not None:
            return f"email:{self.in_reply_to_email_id}"
        return f"recipient:{self.to.lower()}:{self.subject.strip().lower()}"


class MaterialLine(_PayloadModel):
    """reorder_materials 的单行物料"""

    raw_material_id: int = Field(gt=0, description="物料 ID")
    quantity: Decimal = Field(gt=0, description="采购数量")
    unit_cost: Decimal = Field(default=Decimal("0"), ge=0, description="单价")
    name: str = Field(default="", description="物料名称")


class ReorderMaterialsPayload(BasePayload):
    """reorder_materials -- 同一供应商的多物料补货"""

    vendor_id: int = Field(gt=0, description="供应商 ID")
    lines: list[MaterialLine] = Field(min_length=1, description="物料行")

    @field_validator("lines")
    @classmethod
    def _unique_materials(cls, value: list[MaterialLine]) -> list[MaterialLine]:
        ids = [line.raw_material_id for line in value]
        if len(set(ids)) != len(ids):
            raise ValueError("each raw material may appear only once")
        return value

    @property
    def total_amount(self) -> Decimal:
        return sum((line.quantity * line.unit_cost for line in self.lines), Decimal("0"))

    def subject_ref(self) -> str:
        return f"vendor:{self.vendor_id}"


class VendorFollowupPayload(BasePayload):
    """vendor_followup -- 对未回复的采购单向供应商发送跟进邮件"""

    purchase_order_id: int = Field(gt=0, description="采购单 ID")
    vendor_id: int = Field(gt=0, description="供应商 ID")
    vendor_email: str = Field(pattern=_EMAIL_PATTERN, description="供应商邮箱")
    po_number: str = Field(default="", description="采购单号")
    subject: str = Field(default="", description="邮件主题")
    body: str = Field(default="", description="邮件正文")

    def subject_ref(self) -> str:
        return f"purchase_order:{self.purchase_order_id}"


PAYLOAD_MODELS: dict[TaskType, type[BasePayload]] = {
    TaskType.GENERATE_PO: GeneratePOPayload,
    TaskType.SEND_RFQ: SendRFQPayload,
    TaskType.SEND_EMAIL: SendEmailPayload,
    TaskType.REORDER_MATERIALS: ReorderMaterialsPayload,
    TaskType.VENDOR_FOLLOWUP: VendorFollowupPayload,
}


def parse_payload(task_type: TaskType | str, data: dict[str, Any]) -> BasePayload:
    """按任务类型校验 payload

    Raises:
        ValidationError: 未知任务类型或 payload 非法
    """
    try:
        kind = TaskType(task_type)
    except ValueError as e:
        raise ValidationError(f"Unknown task type: {task_type}") from e

    model = PAYLOAD_MODELS[kind]
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {kind.value} payload: {e}") from e


def dump_payload(payload: BasePayload) -> dict[str, Any]:
    """payload -> 可 JSON 序列化的 snake_case dict"""
    return payload.model_dump(mode="json", by_alias=False)


def derive_dedup_key(task_type: TaskType, payload: BasePayload) -> str:
    """由 (task_type, 主体实体) 派生 dedup_key"""
    return f"{task_type.value}:{payload.subject_ref()}"
