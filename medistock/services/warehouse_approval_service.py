# FILE: medistock/services/warehouse_approval_service.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session, selectinload

from medistock.core.rbac import Authorizer, ensure_allowed
from medistock.models.masters import Warehouse
from medistock.models.user import User
from medistock.models.quality_control import QCRecord, QCProduct, QCStatus, QCResult, ItemQCStatus
from medistock.models.warehouse_approval import (
    WarehouseApproval,
    WAProduct,
    WAItem,
    WAStatus,
    WAItemStatus,
)
from medistock.schemas.warehouse_approval import WAUpdateIn, WAItemStorageIn, WAProductStorageIn
from medistock.services import inventory_ledger
from medistock.services import status_rollup
from medistock.services.errors import (
    NotFoundError,
    ValidationError,
    InvalidStatusTransition,
    NotSubmitted,
    QCNotApproved,
    DuplicateApproval,
    IncompleteStorageInfo,
)
from medistock.services.number_series import next_document_number
from medistock.utils.timezone import now_local

logger = logging.getLogger(__name__)

RESOURCE = "warehouse_approvals"

EDITABLE_STATES = {WAStatus.PENDING, WAStatus.IN_PROGRESS}
ASSIGNABLE_STATES = {WAStatus.PENDING, WAStatus.IN_PROGRESS, WAStatus.SUBMITTED}
PASSING_RESULTS = {QCResult.PASSED, QCResult.PARTIAL_PASS}


def _uid(user) -> Optional[int]:
    return getattr(user, "id", None)


def _touch(wa: WarehouseApproval, user) -> None:
    wa.updated_by_id = _uid(user)
    wa.updated_at = now_local()


# =========================================================
# Loading
# =========================================================
def load_approval(db: Session, wa_id: int, *, lock: bool = False) -> WarehouseApproval:
    q = (
        db.query(WarehouseApproval)
        .options(
            selectinload(WarehouseApproval.products).selectinload(WAProduct.items),
            selectinload(WarehouseApproval.assigned_to),
        )
        .filter(WarehouseApproval.id == wa_id)
    )
    if lock:
        q = q.with_for_update()
    wa = q.first()
    if not wa:
        raise NotFoundError(f"Warehouse approval {wa_id} not found")
    return wa


def _locate_product(wa: WarehouseApproval, product_index: int) -> WAProduct:
    if product_index < 0 or product_index >= len(wa.products):
        raise NotFoundError(f"Product index {product_index} not found on {wa.wa_number}")
    return wa.products[product_index]


def _locate_item(wa: WarehouseApproval, product_index: int, item_index: int) -> Tuple[WAProduct, WAItem]:
    product = _locate_product(wa, product_index)
    if item_index < 0 or item_index >= len(product.items):
        raise NotFoundError(f"Item index {item_index} not found on product {product.product_code}")
    return product, product.items[item_index]


def _require_warehouse(db: Session, warehouse_id: int) -> Warehouse:
    w = db.get(Warehouse, warehouse_id)
    if not w or not w.is_active:
        raise ValidationError(f"Warehouse {warehouse_id} not found or inactive", field="warehouse_id")
    return w


def require_user(db: Session, user_id: int) -> User:
    u = db.get(User, user_id)
    if not u or not u.is_active:
        raise ValidationError(f"User {user_id} not found or inactive", field="assigned_to_id")
    return u


def _ensure_editable(wa: WarehouseApproval) -> None:
    if wa.status not in EDITABLE_STATES:
        raise InvalidStatusTransition(
            f"Storage cannot be assigned while warehouse approval is '{wa.status.value}'")


# =========================================================
# Create
# =========================================================
def create_approval(
    db: Session,
    qc_id: int,
    warehouse_id: int,
    *,
    user,
    authz: Authorizer,
    assigned_to_id: Optional[int] = None,
) -> WarehouseApproval:
    """
    Open the storage stage for a completed, passing QC record.
    The QC row stays locked until commit so two callers cannot both pass
    the duplicate check.
    """
    ensure_allowed(authz, user, RESOURCE, "create")

    qc = (
        db.query(QCRecord)
        .options(selectinload(QCRecord.products).selectinload(QCProduct.items))
        .filter(QCRecord.id == qc_id)
        .with_for_update()
        .first()
    )
    if not qc:
        raise NotFoundError(f"QC record {qc_id} not found")

    if qc.status != QCStatus.COMPLETED or qc.overall_result not in PASSING_RESULTS:
        raise QCNotApproved(
            f"QC record {qc.qc_number} must be completed with a passing result "
            f"(status={qc.status.value}, result={qc.overall_result.value})")

    active = (
        db.query(WarehouseApproval.id, WarehouseApproval.wa_number)
        .filter(
            WarehouseApproval.quality_control_id == qc.id,
            WarehouseApproval.status != WAStatus.REJECTED,
        )
        .first()
    )
    if active:
        raise DuplicateApproval(
            f"Warehouse approval {active.wa_number} already exists for QC record {qc.qc_number}")

    _require_warehouse(db, warehouse_id)
    if assigned_to_id is not None:
        require_user(db, assigned_to_id)

    passed_products = [p for p in qc.products if int(p.passed_qty or 0) > 0]
    if not passed_products:
        raise QCNotApproved(f"No products of {qc.qc_number} passed QC")

    wa = WarehouseApproval(
        wa_number=next_document_number(db, "WA"),
        quality_control_id=qc.id,
        warehouse_id=warehouse_id,
        status=WAStatus.PENDING,
        inventory_created=False,
        assigned_to_id=assigned_to_id,
        created_by_id=_uid(user),
        updated_by_id=_uid(user),
    )
    for line_no, qp in enumerate(passed_products, start=1):
        wp = WAProduct(
            line_no=line_no,
            qc_product_id=qp.id,
            product_id=qp.product_id,
            product_code=qp.product_code,
            product_name=qp.product_name,
            batch_no=qp.batch_no,
            mfg_date=qp.mfg_date,
            exp_date=qp.exp_date,
            unit_cost=qp.unit_cost,
            qc_passed_qty=qp.passed_qty,
        )
        wp.items = [
            WAItem(item_number=qi.item_number, qc_item_id=qi.id, status=WAItemStatus.PENDING)
            for qi in qp.items if qi.status == ItemQCStatus.PASSED
        ]
        wa.products.append(wp)

    status_rollup.refresh_wa_record(wa)
    db.add(wa)
    db.flush()
    logger.info("Warehouse approval %s created for QC %s", wa.wa_number, qc.qc_number)
    return wa


# =========================================================
# Storage assignment
# =========================================================
def assign_item_location(
    db: Session,
    wa_id: int,
    product_index: int,
    item_index: int,
    payload: WAItemStorageIn,
    *,
    user,
    authz: Authorizer,
) -> Tuple[WarehouseApproval, WAProduct, WAItem]:
    ensure_allowed(authz, user, RESOURCE, "store")
    wa = load_approval(db, wa_id, lock=True)
    _ensure_editable(wa)

    product, item = _locate_item(wa, product_index, item_index)
    item.storage_location = payload.storage_location
    item.status = WAItemStatus.STORED
    item.remarks = payload.remarks
    item.stored_by_id = _uid(user)
    item.stored_at = now_local()
    if not product.storage_location:
        product.storage_location = payload.storage_location

    status_rollup.refresh_wa_record(wa)
    status_rollup.advance_wa_on_entry(wa)
    _touch(wa, user)
    db.flush()
    return wa, product, item


def assign_product_location(
    db: Session,
    wa_id: int,
    product_index: int,
    payload: WAProductStorageIn,
    *,
    user,
    authz: Authorizer,
) -> WarehouseApproval:
    ensure_allowed(authz, user, RESOURCE, "store")
    wa = load_approval(db, wa_id, lock=True)
    _ensure_editable(wa)

    product = _locate_product(wa, product_index)
    product.storage_location = payload.storage_location
    if payload.apply_to_items:
        now = now_local()
        for item in product.items:
            if item.status == WAItemStatus.PENDING:
                item.storage_location = payload.storage_location
                item.status = WAItemStatus.STORED
                item.stored_by_id = _uid(user)
                item.stored_at = now

    status_rollup.refresh_wa_record(wa)
    status_rollup.advance_wa_on_entry(wa)
    _touch(wa, user)
    db.flush()
    return wa


# =========================================================
# Submit / approve / reject
# =========================================================
def submit_approval(db: Session, wa_id: int, remarks: Optional[str] = None, *, user,
                    authz: Authorizer) -> WarehouseApproval:
    ensure_allowed(authz, user, RESOURCE, "submit")
    wa = load_approval(db, wa_id, lock=True)

    if wa.status in (WAStatus.SUBMITTED, WAStatus.APPROVED):
        raise InvalidStatusTransition(f"Warehouse approval {wa.wa_number} is already submitted")
    if wa.status not in EDITABLE_STATES:
        raise InvalidStatusTransition(
            f"Cannot submit a warehouse approval in '{wa.status.value}' status")

    missing: Dict[str, Any] = {}
    for p in wa.products:
        if not (p.storage_location or "").strip():
            missing[f"products[{p.line_no - 1}].storage_location"] = "required"
        for idx, it in enumerate(p.items):
            if not (it.storage_location or "").strip():
                missing[f"products[{p.line_no - 1}].items[{idx}].storage_location"] = "required"
    if missing:
        raise IncompleteStorageInfo(
            "Every product and item needs a storage location before submission",
            details=missing,
        )

    status_rollup.refresh_wa_record(wa)
    wa.status = WAStatus.SUBMITTED
    wa.submitted_by_id = _uid(user)
    wa.submitted_at = now_local()
    wa.submission_remarks = remarks
    _touch(wa, user)
    db.flush()
    logger.info("Warehouse approval %s submitted", wa.wa_number)
    return wa


def approve_approval(db: Session, wa_id: int, remarks: Optional[str] = None, *, user,
                     authz: Authorizer) -> WarehouseApproval:
    """
    submitted -> approved, receiving every stored product into the ledger.
    Runs inside the caller's transaction: a ledger failure leaves nothing approved.
    """
    ensure_allowed(authz, user, RESOURCE, "approve")
    wa = load_approval(db, wa_id, lock=True)

    if wa.status == WAStatus.APPROVED or wa.inventory_created:
        raise NotSubmitted(f"Warehouse approval {wa.wa_number} is already approved")
    if wa.status != WAStatus.SUBMITTED:
        raise NotSubmitted(f"Warehouse approval {wa.wa_number} has not been submitted")

    status_rollup.refresh_wa_record(wa)
    for p in wa.products:
        if int(p.stored_qty or 0) <= 0:
            continue
        inv = inventory_ledger.receive_stock(
            db,
            product_id=p.product_id,
            warehouse_id=wa.warehouse_id,
            batch_no=p.batch_no,
            quantity=int(p.stored_qty),
            unit_cost=p.unit_cost,
            mfg_date=p.mfg_date,
            exp_date=p.exp_date,
            storage_location=p.storage_location,
            ref_type="warehouse_approval",
            ref_id=wa.id,
            user=user,
        )
        p.inventory_id = inv.id

    wa.inventory_created = True
    wa.status = WAStatus.APPROVED
    wa.approved_by_id = _uid(user)
    wa.approval_date = now_local()
    wa.approval_remarks = remarks
    _touch(wa, user)
    db.flush()
    logger.info("Warehouse approval %s approved; inventory received for %s product(s)",
                wa.wa_number, sum(1 for p in wa.products if p.inventory_id))
    return wa


def reject_approval(db: Session, wa_id: int, reason: Optional[str], remarks: Optional[str] = None,
                    *, user, authz: Authorizer) -> WarehouseApproval:
    ensure_allowed(authz, user, RESOURCE, "approve")
    if not (reason or "").strip():
        raise ValidationError("Rejection reason is required", field="reason")

    wa = load_approval(db, wa_id, lock=True)
    if wa.status != WAStatus.SUBMITTED:
        raise NotSubmitted(f"Warehouse approval {wa.wa_number} has not been submitted")

    wa.status = WAStatus.REJECTED
    wa.rejection_reason = reason.strip()
    wa.approval_remarks = remarks
    wa.approved_by_id = _uid(user)
    wa.approval_date = now_local()
    _touch(wa, user)
    db.flush()
    logger.info("Warehouse approval %s rejected: %s", wa.wa_number, wa.rejection_reason)
    return wa


# =========================================================
# Partial update (PUT)
# =========================================================
def update_approval(db: Session, wa_id: int, payload: WAUpdateIn, *, user, authz: Authorizer) -> WarehouseApproval:
    data = payload.model_dump(exclude_unset=True)
    target = data.pop("status", None)
    reason = data.pop("reason", None)

    wa = load_approval(db, wa_id, lock=True)

    if data:
        ensure_allowed(authz, user, RESOURCE, "update")
        if data.get("warehouse_id") is not None and data["warehouse_id"] != wa.warehouse_id:
            _ensure_editable(wa)
            _require_warehouse(db, data["warehouse_id"])
            wa.warehouse_id = data["warehouse_id"]
        if "assigned_to_id" in data:
            if data["assigned_to_id"] is not None:
                require_user(db, data["assigned_to_id"])
            wa.assigned_to_id = data["assigned_to_id"]
        _touch(wa, user)
        db.flush()

    if target is None:
        return wa
    if WAStatus(target) == wa.status:
        if wa.status in EDITABLE_STATES:
            return wa
        raise InvalidStatusTransition(
            f"Warehouse approval {wa.wa_number} is already '{wa.status.value}'")

    target = WAStatus(target)
    if target == WAStatus.IN_PROGRESS and wa.status == WAStatus.PENDING:
        ensure_allowed(authz, user, RESOURCE, "update")
        wa.status = WAStatus.IN_PROGRESS
        _touch(wa, user)
        db.flush()
        return wa
    if target == WAStatus.SUBMITTED:
        return submit_approval(db, wa_id, user=user, authz=authz)
    if target == WAStatus.APPROVED:
        return approve_approval(db, wa_id, user=user, authz=authz)
    if target == WAStatus.REJECTED:
        return reject_approval(db, wa_id, reason, user=user, authz=authz)

    raise InvalidStatusTransition(
        f"Cannot change warehouse approval status from '{wa.status.value}' to '{target.value}'")


# =========================================================
# Bulk assignment (per-record step)
# =========================================================
def find_approval_for_update(db: Session, wa_id: int) -> WarehouseApproval:
    wa = db.query(WarehouseApproval).filter(WarehouseApproval.id == wa_id).with_for_update().first()
    if not wa:
        raise NotFoundError(f"Warehouse approval {wa_id} not found")
    return wa


def assign_approval(db: Session, wa: WarehouseApproval, assignee_id: int, user) -> WarehouseApproval:
    if wa.status not in ASSIGNABLE_STATES:
        raise InvalidStatusTransition(
            f"Warehouse approval {wa.wa_number} is '{wa.status.value}' and can no longer be assigned")
    wa.assigned_to_id = assignee_id
    _touch(wa, user)
    db.flush()
    return wa


# =========================================================
# Queries
# =========================================================
SORTABLE = {
    "created_at": WarehouseApproval.created_at,
    "updated_at": WarehouseApproval.updated_at,
    "wa_number": WarehouseApproval.wa_number,
    "status": WarehouseApproval.status,
}


def list_approvals(
    db: Session,
    *,
    status: Optional[WAStatus] = None,
    warehouse_id: Optional[int] = None,
    quality_control_id: Optional[int] = None,
    assigned_to_id: Optional[int] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    sort: str = "created_at",
    order: str = "desc",
) -> Tuple[List[WarehouseApproval], int]:
    q = db.query(WarehouseApproval)
    if status:
        q = q.filter(WarehouseApproval.status == status)
    if warehouse_id:
        q = q.filter(WarehouseApproval.warehouse_id == warehouse_id)
    if quality_control_id:
        q = q.filter(WarehouseApproval.quality_control_id == quality_control_id)
    if assigned_to_id:
        q = q.filter(WarehouseApproval.assigned_to_id == assigned_to_id)
    if search:
        like = f"%{search.strip()}%"
        q = q.join(QCRecord, QCRecord.id == WarehouseApproval.quality_control_id).filter(or_(
            WarehouseApproval.wa_number.like(like),
            QCRecord.qc_number.like(like),
        ))

    total = q.count()
    col = SORTABLE.get(sort, WarehouseApproval.created_at)
    q = q.order_by(col.asc() if order == "asc" else col.desc(), WarehouseApproval.id.desc())
    rows = q.offset((page - 1) * limit).limit(limit).all()
    return rows, total


def wa_statistics(db: Session, *, warehouse_id: Optional[int] = None) -> Dict[str, Any]:
    filters = []
    if warehouse_id:
        filters.append(WarehouseApproval.warehouse_id == warehouse_id)

    by_status = (
        db.query(WarehouseApproval.status, func.count(WarehouseApproval.id))
        .filter(*filters)
        .group_by(WarehouseApproval.status)
        .all()
    )
    by_warehouse = (
        db.query(Warehouse.id, Warehouse.name, func.count(WarehouseApproval.id))
        .join(WarehouseApproval, WarehouseApproval.warehouse_id == Warehouse.id)
        .filter(*filters)
        .group_by(Warehouse.id, Warehouse.name)
        .order_by(Warehouse.name.asc())
        .all()
    )
    stored = (
        db.query(func.coalesce(func.sum(WAProduct.stored_qty), 0))
        .join(WarehouseApproval, WarehouseApproval.id == WAProduct.approval_id)
        .filter(WarehouseApproval.status == WAStatus.APPROVED, *filters)
        .scalar()
    )
    return {
        "total": sum(int(c) for _, c in by_status),
        "status_breakdown": [{"key": getattr(s, "value", s), "count": int(c)} for s, c in by_status],
        "warehouse_breakdown": [
            {"warehouse_id": wid, "warehouse_name": name, "count": int(c)} for wid, name, c in by_warehouse
        ],
        "units_received": int(stored or 0),
    }


def wa_workload(db: Session, *, active_only: bool = True,
                warehouse_id: Optional[int] = None) -> List[Dict[str, Any]]:
    """Open storage work per assignee; unassigned approvals group under 'Unassigned'."""
    q = (
        db.query(
            WarehouseApproval.assigned_to_id,
            User.name,
            User.email,
            func.count(WarehouseApproval.id),
            func.sum(case((WarehouseApproval.status == WAStatus.PENDING, 1), else_=0)),
            func.sum(case((WarehouseApproval.status == WAStatus.IN_PROGRESS, 1), else_=0)),
            func.sum(case((WarehouseApproval.status == WAStatus.SUBMITTED, 1), else_=0)),
        )
        .outerjoin(User, User.id == WarehouseApproval.assigned_to_id)
    )
    if active_only:
        q = q.filter(WarehouseApproval.status.in_(list(EDITABLE_STATES)))
    if warehouse_id:
        q = q.filter(WarehouseApproval.warehouse_id == warehouse_id)
    rows = q.group_by(WarehouseApproval.assigned_to_id, User.name, User.email).all()

    out = [
        {
            "assigned_to_id": uid,
            "user_name": name or "Unassigned",
            "user_email": email,
            "total": int(total or 0),
            "pending": int(pend or 0),
            "in_progress": int(inprog or 0),
            "submitted": int(sub or 0),
        }
        for uid, name, email, total, pend, inprog, sub in rows
    ]
    out.sort(key=lambda r: r["total"], reverse=True)
    return out
