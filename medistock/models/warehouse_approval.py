# FILE: medistock/models/warehouse_approval.py
from __future__ import annotations

import enum
from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, Numeric, ForeignKey, Text,
    Enum, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from medistock.db.base import Base, enum_values
from medistock.utils.timezone import now_local
from medistock.models.quality_control import MYSQL_OPTS


class WAStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class StorageStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    STORED = "stored"


class WAItemStatus(str, enum.Enum):
    PENDING = "pending"
    STORED = "stored"


class WarehouseApproval(Base):
    __tablename__ = "warehouse_approvals"
    __table_args__ = MYSQL_OPTS

    id = Column(Integer, primary_key=True, index=True)
    wa_number = Column(String(30), unique=True, nullable=False, index=True)

    quality_control_id = Column(Integer, ForeignKey("qc_records.id"), nullable=False, index=True)
    warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=False, index=True)

    status = Column(Enum(WAStatus, name="wa_status", values_callable=enum_values),
                    nullable=False, default=WAStatus.PENDING, index=True)
    inventory_created = Column(Boolean, nullable=False, default=False)

    assigned_to_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    submitted_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    submission_remarks = Column(Text, nullable=True)

    approved_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    approval_date = Column(DateTime, nullable=True)
    approval_remarks = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    updated_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=now_local, nullable=False)
    updated_at = Column(DateTime, default=now_local, onupdate=now_local, nullable=False)

    version = Column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    qc = relationship("QCRecord", back_populates="warehouse_approvals")
    warehouse = relationship("Warehouse")
    assigned_to = relationship("User", foreign_keys=[assigned_to_id])
    products = relationship(
        "WAProduct",
        back_populates="approval",
        cascade="all, delete-orphan",
        order_by="WAProduct.line_no",
    )


class WAProduct(Base):
    __tablename__ = "wa_products"
    __table_args__ = (
        UniqueConstraint("approval_id", "line_no", name="uq_wa_product_line"),
        MYSQL_OPTS,
    )

    id = Column(Integer, primary_key=True, index=True)
    approval_id = Column(Integer, ForeignKey("warehouse_approvals.id", ondelete="CASCADE"),
                         nullable=False, index=True)
    line_no = Column(Integer, nullable=False)
    qc_product_id = Column(Integer, ForeignKey("qc_products.id"), nullable=False)

    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    product_code = Column(String(100), default="")
    product_name = Column(String(255), default="")
    batch_no = Column(String(100), nullable=False)
    mfg_date = Column(Date, nullable=True)
    exp_date = Column(Date, nullable=True)
    unit_cost = Column(Numeric(14, 4), nullable=False, default=0)

    qc_passed_qty = Column(Integer, nullable=False, default=0)
    stored_qty = Column(Integer, nullable=False, default=0)
    storage_location = Column(String(120), nullable=True)
    storage_status = Column(Enum(StorageStatus, name="wa_storage_status", values_callable=enum_values),
                            nullable=False, default=StorageStatus.PENDING)

    inventory_id = Column(Integer, ForeignKey("inventory_records.id"), nullable=True)

    approval = relationship("WarehouseApproval", back_populates="products")
    items = relationship(
        "WAItem",
        back_populates="wa_product",
        cascade="all, delete-orphan",
        order_by="WAItem.item_number",
    )


class WAItem(Base):
    __tablename__ = "wa_items"
    __table_args__ = (
        UniqueConstraint("wa_product_id", "item_number", name="uq_wa_item_number"),
        MYSQL_OPTS,
    )

    id = Column(Integer, primary_key=True, index=True)
    wa_product_id = Column(Integer, ForeignKey("wa_products.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    item_number = Column(Integer, nullable=False)
    qc_item_id = Column(Integer, ForeignKey("qc_items.id"), nullable=True)

    status = Column(Enum(WAItemStatus, name="wa_item_status", values_callable=enum_values),
                    nullable=False, default=WAItemStatus.PENDING)
    storage_location = Column(String(120), nullable=True)
    remarks = Column(Text, nullable=True)

    stored_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    stored_at = Column(DateTime, nullable=True)

    wa_product = relationship("WAProduct", back_populates="items")
