# FILE: medistock/models/masters.py
from __future__ import annotations

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric
from sqlalchemy.orm import relationship

from medistock.db.base import Base
from medistock.utils.timezone import now_local


class Product(Base):
    __tablename__ = "products"
    __table_args__ = {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    generic_name = Column(String(255), default="")
    unit = Column(String(50), default="unit")
    manufacturer = Column(String(255), default="")

    default_unit_cost = Column(Numeric(14, 4), default=0)
    minimum_stock = Column(Integer, default=0, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=now_local, nullable=False)
    updated_at = Column(DateTime, default=now_local, onupdate=now_local, nullable=False)

    inventory = relationship("InventoryRecord", back_populates="product")


class Warehouse(Base):
    __tablename__ = "warehouses"
    __table_args__ = {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    address = Column(String(1000), default="")
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=now_local, nullable=False)
    updated_at = Column(DateTime, default=now_local, onupdate=now_local, nullable=False)

    inventory = relationship("InventoryRecord", back_populates="warehouse")
