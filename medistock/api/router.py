# medistock/api/router.py
from fastapi import APIRouter
from medistock.api import (
    routes_masters,
    routes_quality_control,
    routes_warehouse_approval,
    routes_inventory,
)

api_router = APIRouter()

# ---- Masters
api_router.include_router(routes_masters.router)

# ---- Receiving: QC -> warehouse approval
api_router.include_router(routes_quality_control.router)
api_router.include_router(routes_warehouse_approval.router)

# ---- Stock
api_router.include_router(routes_inventory.router)
