# medistock/models/__init__.py
from .user import User, UserRole
from .role import Role, RolePermission
from .permission import Permission
from .masters import Product, Warehouse
from .number_series import DocNumberSeries
from .quality_control import QCRecord, QCProduct, QCItem
from .warehouse_approval import WarehouseApproval, WAProduct, WAItem
from .inventory import (
    InventoryRecord,
    InventoryAdjustment,
    InventoryReservation,
    InventoryUtilization,
    StockMovement,
)

__all__ = [
    "User",
    "UserRole",
    "Role",
    "RolePermission",
    "Permission",
    "Product",
    "Warehouse",
    "DocNumberSeries",
    "QCRecord",
    "QCProduct",
    "QCItem",
    "WarehouseApproval",
    "WAProduct",
    "WAItem",
    "InventoryRecord",
    "InventoryAdjustment",
    "InventoryReservation",
    "InventoryUtilization",
    "StockMovement",
]
