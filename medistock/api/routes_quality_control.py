# FILE: medistock/api/routes_quality_control.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from medistock.api.deps import get_db, current_user, get_authorizer
from medistock.api.response import ok, paged, bulk_result
from medistock.core.config import settings
from medistock.core.rbac import Authorizer, ensure_allowed
from medistock.models.user import User
from medistock.models.quality_control import QCStatus, QCType, QCPriority, QCResult
from medistock.schemas.common import RejectIn
from medistock.schemas.quality_control import (
    QCCreateIn,
    QCUpdateIn,
    QCItemResultIn,
    QCBulkItemsIn,
    QCSubmitIn,
    QCApproveIn,
    QCBulkAssignIn,
    QCItemOut,
    QCProductOut,
    QCOut,
    QCListOut,
)
from medistock.schemas.warehouse_approval import WAOut
from medistock.services import quality_control_service as svc
from medistock.services.bulk_ops import BulkTarget, run_bulk
from medistock.services.unit_of_work import run_in_transaction

router = APIRouter(prefix="/qc", tags=["Quality Control"])


def _qc_out(qc) -> dict:
    return QCOut.model_validate(qc).model_dump()


# =========================
# Dashboards (declared before /{qc_id})
# =========================
@router.get("/statistics")
def qc_statistics(
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, svc.RESOURCE, "view")
    return ok(svc.qc_statistics(db, date_from=date_from, date_to=date_to))


@router.get("/workload")
def qc_workload(
    active_only: bool = Query(True),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, svc.RESOURCE, "view")
    return ok(svc.qc_workload(db, active_only=active_only))


@router.api_route("/bulk-assign", methods=["POST", "PUT"])
def bulk_assign(
    payload: QCBulkAssignIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, svc.RESOURCE, "assign")
    svc.require_user(db, payload.assigned_to_id, "assigned_to_id")

    target = BulkTarget(
        name="qc.assign",
        find_by_id=svc.find_qc_for_update,
        apply_update=lambda s, qc, p: svc.assign_qc(s, qc, p.assigned_to_id, p.priority, user),
    )
    result = run_in_transaction(db, lambda: run_bulk(db, payload.ids, target, payload))
    return bulk_result(result)


# =========================
# Records
# =========================
@router.get("")
def list_qc(
    status: Optional[QCStatus] = Query(None),
    qc_type: Optional[QCType] = Query(None),
    priority: Optional[QCPriority] = Query(None),
    result: Optional[QCResult] = Query(None),
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
    rows, total = svc.list_qc(
        db,
        status=status,
        qc_type=qc_type,
        priority=priority,
        result=result,
        assigned_to_id=assigned_to_id,
        search=search,
        page=page,
        limit=limit,
        sort=sort,
        order=order,
    )
    return paged(rows, QCListOut, page=page, limit=limit, total=total)


@router.post("")
def create_qc(
    payload: QCCreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    qc = run_in_transaction(db, lambda: svc.create_qc(db, payload, user=user, authz=authz))
    return ok(_qc_out(svc.load_qc(db, qc.id)), status_code=201)


@router.get("/{qc_id}")
def get_qc(
    qc_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, svc.RESOURCE, "view")
    return ok(_qc_out(svc.load_qc(db, qc_id)))


@router.put("/{qc_id}")
def update_qc(
    qc_id: int,
    payload: QCUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    run_in_transaction(db, lambda: svc.update_qc(db, qc_id, payload, user=user, authz=authz))
    return ok(_qc_out(svc.load_qc(db, qc_id)))


# =========================
# Inspection
# =========================
@router.put("/{qc_id}/products/{product_index}/items/{item_index}")
def record_item_result(
    qc_id: int,
    product_index: int,
    item_index: int,
    payload: QCItemResultIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    qc, product, item = run_in_transaction(
        db,
        lambda: svc.record_item_result(
            db, qc_id, product_index, item_index, payload, user=user, authz=authz),
    )
    return ok({
        "qc_id": qc.id,
        "status": qc.status.value,
        "overall_result": qc.overall_result.value,
        "product": QCProductOut.model_validate(product).model_dump(exclude={"items"}),
        "item": QCItemOut.model_validate(item).model_dump(),
    })


@router.put("/{qc_id}/products/{product_index}/items")
def record_item_results(
    qc_id: int,
    product_index: int,
    payload: QCBulkItemsIn,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    run_in_transaction(
        db,
        lambda: svc.record_item_results(db, qc_id, product_index, payload, user=user, authz=authz),
    )
    return ok(_qc_out(svc.load_qc(db, qc_id)))


# =========================
# Workflow
# =========================
@router.post("/{qc_id}/submit")
def submit_qc(
    qc_id: int,
    payload: Optional[QCSubmitIn] = Body(None),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    payload = payload or QCSubmitIn()
    run_in_transaction(db, lambda: svc.submit_qc(db, qc_id, payload, user=user, authz=authz))
    return ok(_qc_out(svc.load_qc(db, qc_id)))


@router.post("/{qc_id}/approve")
def approve_qc(
    qc_id: int,
    payload: Optional[QCApproveIn] = Body(None),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    payload = payload or QCApproveIn()
    qc, wa = run_in_transaction(
        db, lambda: svc.approve_qc(db, qc_id, payload, user=user, authz=authz))
    data = _qc_out(svc.load_qc(db, qc.id))
    meta = None
    if wa is not None:
        meta = {"warehouse_approval": WAOut.model_validate(wa).model_dump()}
    return ok(data, meta=meta)


@router.post("/{qc_id}/reject")
def reject_qc(
    qc_id: int,
    payload: RejectIn = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    run_in_transaction(
        db,
        lambda: svc.reject_qc(db, qc_id, payload.reason, payload.remarks, user=user, authz=authz),
    )
    return ok(_qc_out(svc.load_qc(db, qc_id)))
