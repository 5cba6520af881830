# FILE: medistock/models/inventory.py
from __future__ import annotations

import enum
from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Numeric, ForeignKey, Text,
    Enum, CheckConstraint, Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from medistock.db.base import Base, enum_values
from medistock.utils.timezone import now_local
from medistock.models.quality_control import MYSQL_OPTS

UnitCost = Numeric(14, 4)


# -------------------------
# Enums
# -------------------------
class InventoryStatus(str, enum.Enum):
    ACTIVE = "active"
    QUARANTINE = "quarantine"
    EXPIRED = "expired"


class AdjustmentReason(str, enum.Enum):
    STOCK_COUNT = "stock_count"
    DAMAGE = "damage"
    EXPIRY = "expiry"
    LOSS = "loss"
    FOUND = "found"
    RETURN = "return"
    CORRECTION = "correction"
    OTHER = "other"


class ReservedFor(str, enum.Enum):
    HOSPITAL_ORDER = "hospital_order"
    TRANSFER_ORDER = "transfer_order"
    MAINTENANCE = "maintenance"
    QUALITY_CHECK = "quality_check"


class ReservationStatus(str, enum.Enum):
    ACTIVE = "active"
    RELEASED = "released"


class MovementType(str, enum.Enum):
    INWARD = "inward"
    OUTWARD = "outward"
    ADJUSTMENT = "adjustment"
    RESERVE = "reserve"
    RELEASE = "release"
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"
    STATUS_CHANGE = "status_change"


# -------------------------
# Ledger
# -------------------------
class InventoryRecord(Base):
    """
    Stock of one batch of one product in one warehouse.

    available_quantity is stored (for cheap filtering / alerts) and always
    equals quantity - reserved_quantity; the ledger service is the only writer.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        UniqueConstraint("product_id", "warehouse_id", "batch_no", name="uq_inventory_product_wh_batch"),
        CheckConstraint("quantity >= 0", name="ck_inventory_qty_nonneg"),
        CheckConstraint("reserved_quantity >= 0", name="ck_inventory_reserved_nonneg"),
        CheckConstraint("reserved_quantity <= quantity", name="ck_inventory_reserved_le_qty"),
        CheckConstraint("available_quantity = quantity - reserved_quantity", name="ck_inventory_available"),
        Index("ix_inventory_wh_status", "warehouse_id", "status"),
        Index("ix_inventory_exp_date", "exp_date"),
        MYSQL_OPTS,
    )

    id = Column(Integer, primary_key=True, index=True)

    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=False, index=True)
    batch_no = Column(String(100), nullable=False)

    product_code = Column(String(100), default="")
    product_name = Column(String(255), default="")

    quantity = Column(Integer, nullable=False, default=0)
    reserved_quantity = Column(Integer, nullable=False, default=0)
    available_quantity = Column(Integer, nullable=False, default=0)

    unit_cost = Column(UnitCost, nullable=False, default=0)
    mfg_date = Column(Date, nullable=True)
    exp_date = Column(Date, nullable=True)
    storage_location = Column(String(120), nullable=True)

    status = Column(Enum(InventoryStatus, name="inventory_status", values_callable=enum_values),
                    nullable=False, default=InventoryStatus.ACTIVE)
    minimum_stock = Column(Integer, nullable=False, default=0)
    maximum_stock = Column(Integer, nullable=True)

    # where the stock came from: warehouse_approval | transfer | manual
    source_type = Column(String(30), nullable=False, default="manual")
    source_id = Column(Integer, nullable=True)
    remarks = Column(Text, nullable=True)

    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    updated_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=now_local, nullable=False)
    updated_at = Column(DateTime, default=now_local, onupdate=now_local, nullable=False)

    version = Column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    product = relationship("Product", back_populates="inventory")
    warehouse = relationship("Warehouse", back_populates="inventory")
    adjustments = relationship(
        "InventoryAdjustment",
        back_populates="inventory",
        order_by="InventoryAdjustment.id",
    )
    reservations = relationship(
        "InventoryReservation",
        back_populates="inventory",
        order_by="InventoryReservation.id",
    )
    movements = relationship(
        "StockMovement",
        back_populates="inventory",
        order_by="StockMovement.id",
    )
    utilizations = relationship(
        "InventoryUtilization",
        back_populates="inventory",
        order_by="InventoryUtilization.id",
    )


class InventoryAdjustment(Base):
    """Append-only."""
    __tablename__ = "inventory_adjustments"
    __table_args__ = MYSQL_OPTS

    id = Column(Integer, primary_key=True)
    inventory_id = Column(Integer, ForeignKey("inventory_records.id"), nullable=False, index=True)

    delta = Column(Integer, nullable=False)
    reason = Column(Enum(AdjustmentReason, name="inventory_adjustment_reason", values_callable=enum_values),
                    nullable=False)
    remarks = Column(Text, nullable=True)
    quantity_before = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)

    actor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=now_local, nullable=False)

    inventory = relationship("InventoryRecord", back_populates="adjustments")


class InventoryReservation(Base):
    __tablename__ = "inventory_reservations"
    __table_args__ = MYSQL_OPTS

    id = Column(Integer, primary_key=True)
    inventory_id = Column(Integer, ForeignKey("inventory_records.id"), nullable=False, index=True)

    quantity = Column(Integer, nullable=False)
    released_quantity = Column(Integer, nullable=False, default=0)
    reason = Column(String(255), nullable=False)
    reserved_for = Column(Enum(ReservedFor, name="inventory_reserved_for", values_callable=enum_values),
                          nullable=False)
    reference_number = Column(String(100), nullable=True)
    expiry_date = Column(Date, nullable=True)
    status = Column(Enum(ReservationStatus, name="inventory_reservation_status", values_callable=enum_values),
                    nullable=False, default=ReservationStatus.ACTIVE)

    actor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=now_local, nullable=False)
    released_at = Column(DateTime, nullable=True)

    inventory = relationship("InventoryRecord", back_populates="reservations")

    @property
    def outstanding_quantity(self) -> int:
        return int(self.quantity or 0) - int(self.released_quantity or 0)


class InventoryUtilization(Base):
    """Stock consumed by a hospital / case. Append-only; on-hand drops by quantity."""
    __tablename__ = "inventory_utilizations"
    __table_args__ = MYSQL_OPTS

    id = Column(Integer, primary_key=True)
    inventory_id = Column(Integer, ForeignKey("inventory_records.id"), nullable=False, index=True)

    quantity = Column(Integer, nullable=False)
    hospital_name = Column(String(255), nullable=True)
    case_number = Column(String(100), nullable=True, index=True)
    patient_name = Column(String(255), nullable=True)
    patient_ref = Column(String(100), nullable=True)
    doctor_name = Column(String(255), nullable=True)
    reason = Column(String(255), nullable=False, default="Patient utilization")
    remarks = Column(Text, nullable=True)
    quantity_after = Column(Integer, nullable=False)

    actor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=now_local, nullable=False)

    inventory = relationship("InventoryRecord", back_populates="utilizations")


class StockMovement(Base):
    """Audit trail: one row per quantity/status change of an inventory record."""
    __tablename__ = "stock_movements"
    __table_args__ = (
        Index("ix_stock_movement_ref", "ref_type", "ref_id"),
        MYSQL_OPTS,
    )

    id = Column(Integer, primary_key=True)
    inventory_id = Column(Integer, ForeignKey("inventory_records.id"), nullable=False, index=True)

    movement_type = Column(Enum(MovementType, name="stock_movement_type", values_callable=enum_values),
                           nullable=False)
    quantity = Column(Integer, nullable=False, default=0)   # signed change of on-hand
    quantity_after = Column(Integer, nullable=False)
    reserved_after = Column(Integer, nullable=False)

    ref_type = Column(String(30), nullable=True)   # warehouse_approval / transfer / reservation ...
    ref_id = Column(Integer, nullable=True)
    from_warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=True)
    to_warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=True)
    remark = Column(String(500), default="")

    actor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=now_local, nullable=False)

    inventory = relationship("InventoryRecord", back_populates="movements")
