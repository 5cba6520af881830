# FILE: medistock/schemas/inventory.py
from __future__ import annotations

from datetime import datetime, date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict

from medistock.models.inventory import (
    InventoryStatus,
    AdjustmentReason,
    ReservedFor,
    ReservationStatus,
    MovementType,
)
from medistock.schemas.common import StrictIn


# -------------------------
# INPUT
# -------------------------
class InventoryCreateIn(StrictIn):
    product_id: int
    warehouse_id: int
    batch_no: str = Field(..., min_length=1, max_length=100)
    quantity: int = Field(..., ge=0)
    unit_cost: Decimal = Field(Decimal("0"), ge=0)
    mfg_date: Optional[date] = None
    exp_date: Optional[date] = None
    storage_location: Optional[str] = Field(None, max_length=120)
    status: InventoryStatus = InventoryStatus.ACTIVE
    minimum_stock: int = Field(0, ge=0)
    maximum_stock: Optional[int] = Field(None, ge=0)
    remarks: Optional[str] = None


class InventoryUpdateIn(StrictIn):
    # identity / computed fields are accepted so the ledger can refuse them explicitly
    product_id: Optional[int] = None
    warehouse_id: Optional[int] = None
    batch_no: Optional[str] = None
    reserved_quantity: Optional[int] = None
    available_quantity: Optional[int] = None

    quantity: Optional[int] = None
    unit_cost: Optional[Decimal] = Field(None, ge=0)
    mfg_date: Optional[date] = None
    exp_date: Optional[date] = None
    storage_location: Optional[str] = Field(None, max_length=120)
    status: Optional[InventoryStatus] = None
    minimum_stock: Optional[int] = Field(None, ge=0)
    maximum_stock: Optional[int] = Field(None, ge=0)
    remarks: Optional[str] = None


class AdjustIn(StrictIn):
    delta: int
    reason: AdjustmentReason
    remarks: Optional[str] = None


class ReserveIn(StrictIn):
    quantity: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=255)
    reserved_for: ReservedFor
    reference_number: Optional[str] = Field(None, max_length=100)
    expiry_date: Optional[date] = None


class ReleaseIn(StrictIn):
    quantity: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=255)
    reservation_id: Optional[int] = None


class TransferIn(StrictIn):
    target_warehouse_id: int
    quantity: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=255)
    storage_location: Optional[str] = Field(None, max_length=120)


class UtilizeIn(StrictIn):
    quantity: int = Field(..., gt=0)
    hospital_name: Optional[str] = Field(None, max_length=255)
    case_number: Optional[str] = Field(None, max_length=100)
    patient_name: Optional[str] = Field(None, max_length=255)
    patient_ref: Optional[str] = Field(None, max_length=100)
    doctor_name: Optional[str] = Field(None, max_length=255)
    reason: str = Field("Patient utilization", min_length=1, max_length=255)
    remarks: Optional[str] = None


class InventoryBulkFields(StrictIn):
    minimum_stock: Optional[int] = Field(None, ge=0)
    maximum_stock: Optional[int] = Field(None, ge=0)
    storage_location: Optional[str] = Field(None, max_length=120)


class InventoryBulkUpdateIn(StrictIn):
    ids: List[int] = Field(default_factory=list)
    update: InventoryBulkFields


# -------------------------
# OUTPUT
# -------------------------
class AdjustmentOut(BaseModel):
    id: int
    delta: int
    reason: AdjustmentReason
    remarks: Optional[str] = None
    quantity_before: int
    quantity_after: int
    actor_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class ReservationOut(BaseModel):
    id: int
    quantity: int
    released_quantity: int
    outstanding_quantity: int
    reason: str
    reserved_for: ReservedFor
    reference_number: Optional[str] = None
    expiry_date: Optional[date] = None
    status: ReservationStatus
    actor_id: Optional[int] = None
    created_at: datetime
    released_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class UtilizationOut(BaseModel):
    id: int
    inventory_id: int
    quantity: int
    hospital_name: Optional[str] = None
    case_number: Optional[str] = None
    patient_name: Optional[str] = None
    patient_ref: Optional[str] = None
    doctor_name: Optional[str] = None
    reason: str
    remarks: Optional[str] = None
    quantity_after: int
    actor_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MovementOut(BaseModel):
    id: int
    inventory_id: int
    movement_type: MovementType
    quantity: int
    quantity_after: int
    reserved_after: int
    ref_type: Optional[str] = None
    ref_id: Optional[int] = None
    from_warehouse_id: Optional[int] = None
    to_warehouse_id: Optional[int] = None
    remark: Optional[str] = None
    actor_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class InventoryOut(BaseModel):
    id: int
    product_id: int
    warehouse_id: int
    batch_no: str
    product_code: Optional[str] = None
    product_name: Optional[str] = None

    quantity: int
    reserved_quantity: int
    available_quantity: int

    unit_cost: Decimal
    mfg_date: Optional[date] = None
    exp_date: Optional[date] = None
    storage_location: Optional[str] = None
    status: InventoryStatus
    minimum_stock: int
    maximum_stock: Optional[int] = None

    source_type: str
    source_id: Optional[int] = None
    remarks: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class InventoryDetailOut(InventoryOut):
    adjustments: List[AdjustmentOut] = []
    reservations: List[ReservationOut] = []
    utilizations: List[UtilizationOut] = []


class TransferOut(BaseModel):
    source: InventoryOut
    target: InventoryOut
