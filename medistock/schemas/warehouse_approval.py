# FILE: medistock/schemas/warehouse_approval.py
from __future__ import annotations

from datetime import datetime, date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict

from medistock.models.warehouse_approval import WAStatus, StorageStatus, WAItemStatus
from medistock.schemas.common import StrictIn, UserMini


# -------------------------
# INPUT
# -------------------------
class WACreateIn(StrictIn):
    quality_control_id: int
    warehouse_id: int
    assigned_to_id: Optional[int] = None


class WAUpdateIn(StrictIn):
    warehouse_id: Optional[int] = None
    assigned_to_id: Optional[int] = None
    # routed through the state machine
    status: Optional[WAStatus] = None
    reason: Optional[str] = None


class WAItemStorageIn(StrictIn):
    storage_location: str = Field(..., min_length=1, max_length=120)
    remarks: Optional[str] = None


class WAProductStorageIn(StrictIn):
    storage_location: str = Field(..., min_length=1, max_length=120)
    # also place every still-pending item of the product at this location
    apply_to_items: bool = True


class WABulkAssignIn(StrictIn):
    ids: List[int] = Field(default_factory=list)
    assigned_to_id: int


# -------------------------
# OUTPUT
# -------------------------
class WAItemOut(BaseModel):
    id: int
    item_number: int
    qc_item_id: Optional[int] = None
    status: WAItemStatus
    storage_location: Optional[str] = None
    remarks: Optional[str] = None
    stored_by_id: Optional[int] = None
    stored_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class WAProductOut(BaseModel):
    id: int
    line_no: int
    qc_product_id: int
    product_id: int
    product_code: Optional[str] = None
    product_name: Optional[str] = None
    batch_no: str
    mfg_date: Optional[date] = None
    exp_date: Optional[date] = None
    unit_cost: Decimal
    qc_passed_qty: int
    stored_qty: int
    storage_location: Optional[str] = None
    storage_status: StorageStatus
    inventory_id: Optional[int] = None
    items: List[WAItemOut] = []

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class WAOut(BaseModel):
    id: int
    wa_number: str
    quality_control_id: int
    warehouse_id: int
    status: WAStatus
    inventory_created: bool

    assigned_to_id: Optional[int] = None
    assigned_to: Optional[UserMini] = None

    submitted_by_id: Optional[int] = None
    submitted_at: Optional[datetime] = None
    submission_remarks: Optional[str] = None
    approved_by_id: Optional[int] = None
    approval_date: Optional[datetime] = None
    approval_remarks: Optional[str] = None
    rejection_reason: Optional[str] = None

    created_by_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    version: int

    products: List[WAProductOut] = []

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class WAListOut(BaseModel):
    id: int
    wa_number: str
    quality_control_id: int
    warehouse_id: int
    status: WAStatus
    inventory_created: bool
    assigned_to_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
