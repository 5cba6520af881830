# FILE: medistock/schemas/masters.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict

from medistock.schemas.common import StrictIn


class ProductCreate(StrictIn):
    code: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    generic_name: Optional[str] = Field("", max_length=255)
    unit: str = Field("unit", max_length=50)
    manufacturer: Optional[str] = Field("", max_length=255)
    default_unit_cost: Decimal = Field(Decimal("0"), ge=0)
    minimum_stock: int = Field(0, ge=0)


class ProductOut(BaseModel):
    id: int
    code: str
    name: str
    generic_name: Optional[str] = None
    unit: Optional[str] = None
    manufacturer: Optional[str] = None
    default_unit_cost: Decimal
    minimum_stock: int
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WarehouseCreate(StrictIn):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    address: Optional[str] = Field("", max_length=1000)


class WarehouseOut(BaseModel):
    id: int
    code: str
    name: str
    address: Optional[str] = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
