# FILE: medistock/schemas/quality_control.py
from __future__ import annotations

from datetime import datetime, date
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict, model_validator

from medistock.models.quality_control import (
    QCStatus,
    QCType,
    QCPriority,
    QCResult,
    ItemQCStatus,
    QCReason,
    LightCondition,
)
from medistock.schemas.common import StrictIn, UserMini


# -------------------------
# INPUT
# -------------------------
class QCItemIn(StrictIn):
    item_number: int = Field(..., ge=1)
    status: ItemQCStatus = ItemQCStatus.PENDING
    qc_reasons: List[QCReason] = Field(default_factory=list)
    remarks: Optional[str] = None


class QCProductIn(StrictIn):
    product_id: int
    batch_no: str = Field(..., min_length=1, max_length=100)
    mfg_date: Optional[date] = None
    exp_date: Optional[date] = None
    received_qty: int = Field(..., ge=1, le=100000)
    unit_cost: Optional[Decimal] = Field(None, ge=0)
    # omitted -> one pending item per received unit
    items: Optional[List[QCItemIn]] = None

    @model_validator(mode="after")
    def _items_match_received(self):
        if self.items is not None:
            nums = [i.item_number for i in self.items]
            if len(set(nums)) != len(nums):
                raise ValueError("item_number values must be unique within a product")
            if len(self.items) != self.received_qty:
                raise ValueError("items must contain exactly received_qty entries")
        return self


class QCCreateIn(StrictIn):
    qc_type: QCType
    products: List[QCProductIn] = Field(..., min_length=1)
    invoice_reference: Optional[str] = Field(None, max_length=100)
    purchase_order_reference: Optional[str] = Field(None, max_length=100)
    priority: QCPriority = QCPriority.MEDIUM
    assigned_to_id: Optional[int] = None
    qc_remarks: Optional[str] = None


class QCUpdateIn(StrictIn):
    invoice_reference: Optional[str] = Field(None, max_length=100)
    purchase_order_reference: Optional[str] = Field(None, max_length=100)
    qc_type: Optional[QCType] = None
    priority: Optional[QCPriority] = None
    assigned_to_id: Optional[int] = None
    qc_remarks: Optional[str] = None
    # routed through the state machine
    status: Optional[QCStatus] = None
    reason: Optional[str] = None


class QCItemResultIn(StrictIn):
    status: ItemQCStatus
    qc_reasons: List[QCReason] = Field(default_factory=list)
    remarks: Optional[str] = None


class QCBulkItemRow(QCItemResultIn):
    item_index: int = Field(..., ge=0)


class QCBulkItemsIn(StrictIn):
    items: List[QCBulkItemRow] = Field(..., min_length=1)


class QCEnvironmentIn(StrictIn):
    temperature: Optional[Decimal] = None
    humidity: Optional[Decimal] = Field(None, ge=0, le=100)
    light_condition: Optional[LightCondition] = None


class QCSubmitIn(StrictIn):
    remarks: Optional[str] = None
    environment: Optional[QCEnvironmentIn] = None


class QCBulkAssignIn(StrictIn):
    ids: List[int] = Field(default_factory=list)
    assigned_to_id: int
    priority: Optional[QCPriority] = None


class QCApproveIn(StrictIn):
    remarks: Optional[str] = None
    # when set and the result passes, the warehouse approval is opened right away
    warehouse_id: Optional[int] = None


# -------------------------
# OUTPUT
# -------------------------
class QCItemOut(BaseModel):
    id: int
    item_number: int
    status: ItemQCStatus
    qc_reasons: Optional[List[str]] = None
    remarks: Optional[str] = None
    qc_by_id: Optional[int] = None
    qc_date: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class QCProductOut(BaseModel):
    id: int
    line_no: int
    product_id: int
    product_code: Optional[str] = None
    product_name: Optional[str] = None
    batch_no: str
    mfg_date: Optional[date] = None
    exp_date: Optional[date] = None
    received_qty: int
    unit_cost: Decimal
    passed_qty: int
    failed_qty: int
    overall_status: QCResult
    qc_summary: Optional[Dict[str, int]] = None
    items: List[QCItemOut] = []

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class QCOut(BaseModel):
    id: int
    qc_number: str
    invoice_reference: Optional[str] = None
    purchase_order_reference: Optional[str] = None
    qc_type: QCType
    priority: QCPriority
    status: QCStatus
    overall_result: QCResult

    assigned_to_id: Optional[int] = None
    assigned_to: Optional[UserMini] = None

    qc_temperature: Optional[Decimal] = None
    qc_humidity: Optional[Decimal] = None
    light_condition: Optional[LightCondition] = None

    qc_by_id: Optional[int] = None
    qc_date: Optional[datetime] = None
    qc_remarks: Optional[str] = None
    approved_by_id: Optional[int] = None
    approval_date: Optional[datetime] = None
    approval_remarks: Optional[str] = None
    rejection_reason: Optional[str] = None

    created_by_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    version: int

    products: List[QCProductOut] = []

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class QCListOut(BaseModel):
    """List rows skip item detail."""
    id: int
    qc_number: str
    invoice_reference: Optional[str] = None
    qc_type: QCType
    priority: QCPriority
    status: QCStatus
    overall_result: QCResult
    assigned_to_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
