# FILE: medistock/models/quality_control.py
from __future__ import annotations

import enum
from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Numeric, ForeignKey, Text,
    Enum, JSON, Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from medistock.db.base import Base, enum_values
from medistock.utils.timezone import now_local

MYSQL_OPTS = {
    "mysql_engine": "InnoDB",
    "mysql_charset": "utf8mb4",
    "mysql_collate": "utf8mb4_unicode_ci",
}


# -------------------------
# Enums
# -------------------------
class QCStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PENDING_APPROVAL = "pending_approval"
    COMPLETED = "completed"
    REJECTED = "rejected"


class QCType(str, enum.Enum):
    STANDARD = "standard"
    URGENT = "urgent"
    SPECIAL = "special"


class QCPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class QCResult(str, enum.Enum):
    """Used for both the per-product overall status and the record's overall result."""
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL_PASS = "partial_pass"


class ItemQCStatus(str, enum.Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


class QCReason(str, enum.Enum):
    RECEIVED_CORRECTLY = "received_correctly"
    DAMAGED_PACKAGING = "damaged_packaging"
    DAMAGED_PRODUCT = "damaged_product"
    EXPIRED = "expired"
    NEAR_EXPIRY = "near_expiry"
    WRONG_PRODUCT = "wrong_product"
    QUANTITY_MISMATCH = "quantity_mismatch"
    QUALITY_ISSUE = "quality_issue"
    LABELING_ISSUE = "labeling_issue"
    OTHER = "other"


class LightCondition(str, enum.Enum):
    NORMAL = "normal"
    BRIGHT = "bright"
    DIM = "dim"


# -------------------------
# QC record
# -------------------------
class QCRecord(Base):
    __tablename__ = "qc_records"
    __table_args__ = (
        Index("ix_qc_status_priority", "status", "priority"),
        MYSQL_OPTS,
    )

    id = Column(Integer, primary_key=True, index=True)
    qc_number = Column(String(30), unique=True, nullable=False, index=True)

    invoice_reference = Column(String(100), nullable=True, index=True)
    purchase_order_reference = Column(String(100), nullable=True)

    qc_type = Column(Enum(QCType, name="qc_type", values_callable=enum_values),
                     nullable=False, default=QCType.STANDARD)
    priority = Column(Enum(QCPriority, name="qc_priority", values_callable=enum_values),
                      nullable=False, default=QCPriority.MEDIUM)
    status = Column(Enum(QCStatus, name="qc_status", values_callable=enum_values),
                    nullable=False, default=QCStatus.PENDING, index=True)
    overall_result = Column(Enum(QCResult, name="qc_result", values_callable=enum_values),
                            nullable=False, default=QCResult.PENDING)

    assigned_to_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # inspection environment
    qc_temperature = Column(Numeric(5, 2), nullable=True)
    qc_humidity = Column(Numeric(5, 2), nullable=True)
    light_condition = Column(Enum(LightCondition, name="qc_light_condition", values_callable=enum_values),
                             nullable=True)

    qc_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    qc_date = Column(DateTime, nullable=True)
    qc_remarks = Column(Text, nullable=True)

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

    products = relationship(
        "QCProduct",
        back_populates="qc",
        cascade="all, delete-orphan",
        order_by="QCProduct.line_no",
    )
    assigned_to = relationship("User", foreign_keys=[assigned_to_id])
    warehouse_approvals = relationship("WarehouseApproval", back_populates="qc")


class QCProduct(Base):
    __tablename__ = "qc_products"
    __table_args__ = (
        UniqueConstraint("qc_id", "line_no", name="uq_qc_product_line"),
        MYSQL_OPTS,
    )

    id = Column(Integer, primary_key=True, index=True)
    qc_id = Column(Integer, ForeignKey("qc_records.id", ondelete="CASCADE"), nullable=False, index=True)
    line_no = Column(Integer, nullable=False)

    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    product_code = Column(String(100), default="")
    product_name = Column(String(255), default="")

    batch_no = Column(String(100), nullable=False)
    mfg_date = Column(Date, nullable=True)
    exp_date = Column(Date, nullable=True)
    received_qty = Column(Integer, nullable=False)
    unit_cost = Column(Numeric(14, 4), nullable=False, default=0)

    passed_qty = Column(Integer, nullable=False, default=0)
    failed_qty = Column(Integer, nullable=False, default=0)
    overall_status = Column(Enum(QCResult, name="qc_product_status", values_callable=enum_values),
                            nullable=False, default=QCResult.PENDING)
    qc_summary = Column(JSON, nullable=True)   # {reason: count}

    qc = relationship("QCRecord", back_populates="products")
    product = relationship("Product")
    items = relationship(
        "QCItem",
        back_populates="qc_product",
        cascade="all, delete-orphan",
        order_by="QCItem.item_number",
    )


class QCItem(Base):
    __tablename__ = "qc_items"
    __table_args__ = (
        UniqueConstraint("qc_product_id", "item_number", name="uq_qc_item_number"),
        MYSQL_OPTS,
    )

    id = Column(Integer, primary_key=True, index=True)
    qc_product_id = Column(Integer, ForeignKey("qc_products.id", ondelete="CASCADE"), nullable=False, index=True)
    item_number = Column(Integer, nullable=False)

    status = Column(Enum(ItemQCStatus, name="qc_item_status", values_callable=enum_values),
                    nullable=False, default=ItemQCStatus.PENDING)
    qc_reasons = Column(JSON, nullable=True)   # list of QCReason values
    remarks = Column(Text, nullable=True)

    qc_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    qc_date = Column(DateTime, nullable=True)

    qc_product = relationship("QCProduct", back_populates="items")
