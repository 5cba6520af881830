# FILE: medistock/api/routes_inventory.py
from __future__ import annotations

from datetime import date
from io import BytesIO
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from medistock.api.deps import get_db, current_user, get_authorizer
from medistock.api.response import ok, paged, bulk_result
from medistock.core.config import settings
from medistock.core.rbac import Authorizer, ensure_allowed
from medistock.models.user import User
from medistock.models.inventory import InventoryStatus
from medistock.schemas.inventory import (
    InventoryCreateIn,
    InventoryUpdateIn,
    AdjustIn,
    ReserveIn,
    ReleaseIn,
    TransferIn,
    UtilizeIn,
    InventoryBulkUpdateIn,
    InventoryOut,
    InventoryDetailOut,
    ReservationOut,
    MovementOut,
    TransferOut,
    UtilizationOut,
)
from medistock.services import inventory_ledger as ledger
from medistock.services.bulk_ops import BulkTarget, run_bulk
from medistock.services.excel_export import build_valuation_excel
from medistock.services.unit_of_work import run_in_transaction
from medistock.utils.timezone import today_local

router = APIRouter(prefix="/inventory", tags=["Inventory"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _inv_out(inv) -> dict:
    return InventoryOut.model_validate(inv).model_dump()


# =========================
# Collection
# =========================
@router.get("")
def list_inventory(
    warehouse_id: Optional[int] = Query(None),
    product_id: Optional[int] = Query(None),
    status: Optional[InventoryStatus] = Query(None),
    search: Optional[str] = Query(None),
    low_stock: bool = Query(False),
    near_expiry: bool = Query(False),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=settings.MAX_PAGE_SIZE),
    sort: str = Query("created_at"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, ledger.RESOURCE, "view")
    rows, total = ledger.list_inventory(
        db,
        warehouse_id=warehouse_id,
        product_id=product_id,
        status=status,
        search=search,
        low_stock=low_stock,
        near_expiry=near_expiry,
        page=page,
        limit=limit,
        sort=sort,
        order=order,
    )
    return paged(rows, InventoryOut, page=page, limit=limit, total=total)


@router.post("")
def create_inventory(
    payload: InventoryCreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    inv = run_in_transaction(db, lambda: ledger.create_inventory(db, payload, user=user, authz=authz))
    return ok(_inv_out(inv), status_code=201)


@router.get("/statistics")
def inventory_statistics(
    warehouse_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, ledger.RESOURCE, "view")
    return ok(ledger.inventory_statistics(db, warehouse_id=warehouse_id))


@router.get("/alerts")
def inventory_alerts(
    warehouse_id: Optional[int] = Query(None),
    alert_type: str = Query("all", pattern="^(all|low_stock|out_of_stock|near_expiry|expired)$"),
    days: Optional[int] = Query(None, ge=1, le=365),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, ledger.RESOURCE, "view")
    alerts = ledger.inventory_alerts(
        db, warehouse_id=warehouse_id, alert_type=alert_type, near_expiry_days=days)
    data = {k: [_inv_out(r) for r in rows] for k, rows in alerts.items()}
    counts = {k: len(v) for k, v in data.items()}
    counts["total"] = sum(counts.values())
    return ok(data, meta={"counts": counts})


@router.get("/valuation")
def inventory_valuation(
    warehouse_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, ledger.RESOURCE, "view")
    return ok(ledger.inventory_valuation(db, warehouse_id=warehouse_id))


@router.get("/valuation/export")
def export_valuation(
    warehouse_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, ledger.RESOURCE, "view")
    valuation = ledger.inventory_valuation(db, warehouse_id=warehouse_id)

    bio = BytesIO()
    build_valuation_excel(bio, valuation)
    bio.seek(0)

    filename = f"inventory_valuation_{today_local():%Y%m%d}.xlsx"
    return StreamingResponse(
        bio,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.put("/bulk-update")
def bulk_update(
    payload: InventoryBulkUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, ledger.RESOURCE, "update")
    target = BulkTarget(
        name="inventory.update",
        find_by_id=lambda s, rid: ledger.get_inventory(s, rid, lock=True),
        apply_update=lambda s, inv, p: ledger.bulk_update_fields(s, inv, p.update, user),
    )
    result = run_in_transaction(db, lambda: run_bulk(db, payload.ids, target, payload))
    return bulk_result(result)


@router.post("/mark-expired")
def mark_expired(
    as_of: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ids = run_in_transaction(db, lambda: ledger.mark_expired(db, user=user, authz=authz, as_of=as_of))
    return ok({"expired": len(ids), "ids": ids})


# =========================
# Single record
# =========================
@router.get("/{inventory_id}")
def get_inventory(
    inventory_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, ledger.RESOURCE, "view")
    inv = ledger.get_inventory_detail(db, inventory_id)
    return ok(InventoryDetailOut.model_validate(inv).model_dump())


@router.put("/{inventory_id}")
def update_inventory(
    inventory_id: int,
    payload: InventoryUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    inv = run_in_transaction(
        db, lambda: ledger.update_inventory(db, inventory_id, payload, user=user, authz=authz))
    return ok(_inv_out(inv))


@router.post("/{inventory_id}/adjust")
def adjust_inventory(
    inventory_id: int,
    payload: AdjustIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    inv = run_in_transaction(
        db,
        lambda: ledger.adjust_inventory(
            db, inventory_id, payload.delta, payload.reason, payload.remarks, user=user, authz=authz),
    )
    return ok(_inv_out(inv))


@router.post("/{inventory_id}/reserve")
def reserve_inventory(
    inventory_id: int,
    payload: ReserveIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    inv, res = run_in_transaction(
        db,
        lambda: ledger.reserve_inventory(
            db,
            inventory_id,
            payload.quantity,
            payload.reason,
            payload.reserved_for,
            payload.reference_number,
            payload.expiry_date,
            user=user,
            authz=authz,
        ),
    )
    return ok(_inv_out(inv), meta={"reservation": ReservationOut.model_validate(res).model_dump()})


@router.post("/{inventory_id}/release")
def release_inventory(
    inventory_id: int,
    payload: ReleaseIn = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    inv = run_in_transaction(
        db,
        lambda: ledger.release_inventory(
            db, inventory_id, payload.quantity, payload.reason, payload.reservation_id,
            user=user, authz=authz),
    )
    return ok(_inv_out(inv))


@router.post("/{inventory_id}/transfer")
def transfer_inventory(
    inventory_id: int,
    payload: TransferIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    src, dst = run_in_transaction(
        db,
        lambda: ledger.transfer_inventory(
            db, inventory_id, payload.target_warehouse_id, payload.quantity, payload.reason,
            payload.storage_location, user=user, authz=authz),
    )
    out = TransferOut(source=InventoryOut.model_validate(src), target=InventoryOut.model_validate(dst))
    return ok(out.model_dump())


@router.get("/{inventory_id}/movements")
def list_movements(
    inventory_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=settings.MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, ledger.RESOURCE, "view")
    rows, total = ledger.list_movements(db, inventory_id, page=page, limit=limit)
    return paged(rows, MovementOut, page=page, limit=limit, total=total)


@router.post("/{inventory_id}/utilize")
def utilize_inventory(
    inventory_id: int,
    payload: UtilizeIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    inv, util = run_in_transaction(
        db, lambda: ledger.utilize_inventory(db, inventory_id, payload, user=user, authz=authz))
    return ok(_inv_out(inv), meta={"utilization": UtilizationOut.model_validate(util).model_dump()})


@router.get("/{inventory_id}/utilizations")
def list_utilizations(
    inventory_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=settings.MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, ledger.RESOURCE, "view")
    rows, total = ledger.list_utilizations(db, inventory_id, page=page, limit=limit)
    return paged(rows, UtilizationOut, page=page, limit=limit, total=total)
