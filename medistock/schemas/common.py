# FILE: medistock/schemas/common.py
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict


class StrictIn(BaseModel):
    """Base for request bodies: unknown fields are rejected at the boundary."""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class UserMini(BaseModel):
    id: int
    name: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class RemarksIn(StrictIn):
    remarks: Optional[str] = None


class RejectIn(StrictIn):
    # presence is checked in the service so a blank reason reports as a field error
    reason: Optional[str] = None
    remarks: Optional[str] = None
