# FILE: medistock/api/routes_warehouse_approval.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from medistock.api.deps import get_db, current_user, get_authorizer
from medistock.api.response import ok, paged, bulk_result
from medistock.core.config import settings
from medistock.core.rbac import Authorizer, ensure_allowed
from medistock.models.user import User
from medistock.models.warehouse_approval import WAStatus
from medistock.schemas.common import RemarksIn, RejectIn
from medistock.schemas.warehouse_approval import (
    WACreateIn,
    WAUpdateIn,
    WAItemStorageIn,
    WAProductStorageIn,
    WABulkAssignIn,
    WAItemOut,
    WAProductOut,
    WAOut,
    WAListOut,
)
from medistock.services import warehouse_approval_service as svc
from medistock.services.bulk_ops import BulkTarget, run_bulk
from medistock.services.unit_of_work import run_in_transaction

router = APIRouter(prefix="/warehouse-approvals", tags=["Warehouse Approvals"])


def _wa_out(db: Session, wa_id: int) -> dict:
    return WAOut.model_validate(svc.load_approval(db, wa_id)).model_dump()


@router.get("/statistics")
def wa_statistics(
    warehouse_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, svc.RESOURCE, "view")
    return ok(svc.wa_statistics(db, warehouse_id=warehouse_id))


@router.get("/workload")
def wa_workload(
    active_only: bool = Query(True),
    warehouse_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, svc.RESOURCE, "view")
    return ok(svc.wa_workload(db, active_only=active_only, warehouse_id=warehouse_id))


@router.api_route("/bulk-assign", methods=["POST", "PUT"])
def bulk_assign(
    payload: WABulkAssignIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, svc.RESOURCE, "assign")
    svc.require_user(db, payload.assigned_to_id)

    target = BulkTarget(
        name="warehouse_approvals.assign",
        find_by_id=svc.find_approval_for_update,
        apply_update=lambda s, wa, p: svc.assign_approval(s, wa, p.assigned_to_id, user),
    )
    result = run_in_transaction(db, lambda: run_bulk(db, payload.ids, target, payload))
    return bulk_result(result)


@router.get("")
def list_approvals(
    status: Optional[WAStatus] = Query(None),
    warehouse_id: Optional[int] = Query(None),
    quality_control_id: Optional[int] = Query(None),
    assigned_to_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=settings.MAX_PAGE_SIZE),
    sort: str = Query("created_at"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, svc.RESOURCE, "view")
    rows, total = svc.list_approvals(
        db,
        status=status,
        warehouse_id=warehouse_id,
        quality_control_id=quality_control_id,
        assigned_to_id=assigned_to_id,
        search=search,
        page=page,
        limit=limit,
        sort=sort,
        order=order,
    )
    return paged(rows, WAListOut, page=page, limit=limit, total=total)


@router.post("")
def create_approval(
    payload: WACreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    wa = run_in_transaction(
        db,
        lambda: svc.create_approval(
            db,
            payload.quality_control_id,
            payload.warehouse_id,
            user=user,
            authz=authz,
            assigned_to_id=payload.assigned_to_id,
        ),
    )
    return ok(_wa_out(db, wa.id), status_code=201)


@router.get("/{wa_id}")
def get_approval(
    wa_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, svc.RESOURCE, "view")
    return ok(_wa_out(db, wa_id))


@router.put("/{wa_id}")
def update_approval(
    wa_id: int,
    payload: WAUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    run_in_transaction(db, lambda: svc.update_approval(db, wa_id, payload, user=user, authz=authz))
    return ok(_wa_out(db, wa_id))


# =========================
# Storage
# =========================
@router.put("/{wa_id}/products/{product_index}")
def assign_product_location(
    wa_id: int,
    product_index: int,
    payload: WAProductStorageIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    run_in_transaction(
        db,
        lambda: svc.assign_product_location(db, wa_id, product_index, payload, user=user, authz=authz),
    )
    return ok(_wa_out(db, wa_id))


@router.put("/{wa_id}/products/{product_index}/items/{item_index}")
def assign_item_location(
    wa_id: int,
    product_index: int,
    item_index: int,
    payload: WAItemStorageIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    wa, product, item = run_in_transaction(
        db,
        lambda: svc.assign_item_location(
            db, wa_id, product_index, item_index, payload, user=user, authz=authz),
    )
    return ok({
        "approval_id": wa.id,
        "status": wa.status.value,
        "product": WAProductOut.model_validate(product).model_dump(exclude={"items"}),
        "item": WAItemOut.model_validate(item).model_dump(),
    })


# =========================
# Workflow
# =========================
@router.post("/{wa_id}/submit")
def submit_approval(
    wa_id: int,
    payload: Optional[RemarksIn] = Body(None),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    remarks = payload.remarks if payload else None
    run_in_transaction(db, lambda: svc.submit_approval(db, wa_id, remarks, user=user, authz=authz))
    return ok(_wa_out(db, wa_id))


@router.post("/{wa_id}/approve")
def approve_approval(
    wa_id: int,
    payload: Optional[RemarksIn] = Body(None),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    remarks = payload.remarks if payload else None
    run_in_transaction(db, lambda: svc.approve_approval(db, wa_id, remarks, user=user, authz=authz))
    data = _wa_out(db, wa_id)
    inventory_ids = [p["inventory_id"] for p in data["products"] if p.get("inventory_id")]
    return ok(data, meta={"inventory_created": data["inventory_created"], "inventory_ids": inventory_ids})


@router.post("/{wa_id}/reject")
def reject_approval(
    wa_id: int,
    payload: RejectIn = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    run_in_transaction(
        db,
        lambda: svc.reject_approval(db, wa_id, payload.reason, payload.remarks, user=user, authz=authz),
    )
    return ok(_wa_out(db, wa_id))
