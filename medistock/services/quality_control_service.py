# FILE: medistock/services/quality_control_service.py
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session, selectinload

from medistock.core.rbac import Authorizer, ensure_allowed
from medistock.models.masters import Product
from medistock.models.user import User
from medistock.models.quality_control import (
    QCRecord,
    QCProduct,
    QCItem,
    QCStatus,
    QCPriority,
    QCResult,
    ItemQCStatus,
)
from medistock.schemas.quality_control import (
    QCCreateIn,
    QCUpdateIn,
    QCItemResultIn,
    QCBulkItemsIn,
    QCSubmitIn,
    QCApproveIn,
)
from medistock.services import status_rollup
from medistock.services import warehouse_approval_service
from medistock.services.errors import (
    NotFoundError,
    ValidationError,
    InvalidStatusTransition,
    NotSubmitted,
    IncompleteInspection,
    BusinessRuleViolation,
)
from medistock.services.number_series import next_document_number
from medistock.utils.timezone import now_local

logger = logging.getLogger(__name__)

RESOURCE = "qc"

EDITABLE_STATES = {QCStatus.PENDING, QCStatus.IN_PROGRESS}
ASSIGNABLE_STATES = {QCStatus.PENDING, QCStatus.IN_PROGRESS}
PASSING_RESULTS = {QCResult.PASSED, QCResult.PARTIAL_PASS}


def _uid(user) -> Optional[int]:
    return getattr(user, "id", None)


def _touch(qc: QCRecord, user) -> None:
    # always dirty the parent row so its version counter moves with child edits
    qc.updated_by_id = _uid(user)
    qc.updated_at = now_local()


# =========================================================
# Loading
# =========================================================
def _qc_query(db: Session):
    return db.query(QCRecord).options(
        selectinload(QCRecord.products).selectinload(QCProduct.items),
        selectinload(QCRecord.assigned_to),
    )


def load_qc(db: Session, qc_id: int, *, lock: bool = False) -> QCRecord:
    q = _qc_query(db).filter(QCRecord.id == qc_id)
    if lock:
        q = q.with_for_update()
    qc = q.first()
    if not qc:
        raise NotFoundError(f"QC record {qc_id} not found")
    return qc


def _locate_item(qc: QCRecord, product_index: int, item_index: int) -> Tuple[QCProduct, QCItem]:
    if product_index < 0 or product_index >= len(qc.products):
        raise NotFoundError(f"Product index {product_index} not found on {qc.qc_number}")
    product = qc.products[product_index]
    if item_index < 0 or item_index >= len(product.items):
        raise NotFoundError(f"Item index {item_index} not found on product {product.product_code}")
    return product, product.items[item_index]


def require_user(db: Session, user_id: int, field: str) -> User:
    u = db.get(User, user_id)
    if not u or not u.is_active:
        raise ValidationError(f"User {user_id} not found or inactive", field=field)
    return u


# =========================================================
# Create / update
# =========================================================
def create_qc(db: Session, payload: QCCreateIn, *, user, authz: Authorizer) -> QCRecord:
    ensure_allowed(authz, user, RESOURCE, "create")

    ids = {p.product_id for p in payload.products}
    found = {p.id: p for p in db.query(Product).filter(Product.id.in_(ids)).all()}
    missing = {
        f"products[{i}].product_id": f"Product {p.product_id} not found"
        for i, p in enumerate(payload.products) if p.product_id not in found
    }
    if missing:
        raise ValidationError("One or more products do not exist", details=missing)

    if payload.assigned_to_id is not None:
        require_user(db, payload.assigned_to_id, "assigned_to_id")

    now = now_local()
    qc = QCRecord(
        qc_number=next_document_number(db, "QC"),
        invoice_reference=payload.invoice_reference,
        purchase_order_reference=payload.purchase_order_reference,
        qc_type=payload.qc_type,
        priority=payload.priority,
        status=QCStatus.PENDING,
        overall_result=QCResult.PENDING,
        assigned_to_id=payload.assigned_to_id,
        qc_remarks=payload.qc_remarks,
        created_by_id=_uid(user),
        updated_by_id=_uid(user),
    )

    for line_no, p in enumerate(payload.products, start=1):
        prod = found[p.product_id]
        qp = QCProduct(
            line_no=line_no,
            product_id=prod.id,
            product_code=prod.code,
            product_name=prod.name,
            batch_no=p.batch_no.strip(),
            mfg_date=p.mfg_date,
            exp_date=p.exp_date,
            received_qty=p.received_qty,
            unit_cost=p.unit_cost if p.unit_cost is not None else (prod.default_unit_cost or Decimal("0")),
        )
        if p.items is None:
            qp.items = [QCItem(item_number=n, status=ItemQCStatus.PENDING, qc_reasons=[])
                        for n in range(1, p.received_qty + 1)]
        else:
            for it in sorted(p.items, key=lambda x: x.item_number):
                decided = it.status != ItemQCStatus.PENDING
                qp.items.append(QCItem(
                    item_number=it.item_number,
                    status=it.status,
                    qc_reasons=[r.value for r in it.qc_reasons],
                    remarks=it.remarks,
                    qc_by_id=_uid(user) if decided else None,
                    qc_date=now if decided else None,
                ))
        qc.products.append(qp)

    status_rollup.refresh_qc_record(qc)
    if any(i.status != ItemQCStatus.PENDING for p in qc.products for i in p.items):
        status_rollup.advance_qc_on_entry(qc)

    db.add(qc)
    db.flush()
    logger.info("QC %s created with %s product(s)", qc.qc_number, len(qc.products))
    return qc


def update_qc(db: Session, qc_id: int, payload: QCUpdateIn, *, user, authz: Authorizer):
    """
    Partial update. A `status` value is not written directly: it is routed to
    the matching transition (start / submit / approve / reject).
    """
    data = payload.model_dump(exclude_unset=True)
    target = data.pop("status", None)
    reason = data.pop("reason", None)

    qc = load_qc(db, qc_id, lock=True)

    if data:
        ensure_allowed(authz, user, RESOURCE, "update")
        if qc.status in (QCStatus.COMPLETED, QCStatus.REJECTED):
            raise BusinessRuleViolation(f"Cannot edit a {qc.status.value} QC record")
        if data.get("assigned_to_id") is not None:
            require_user(db, data["assigned_to_id"], "assigned_to_id")
        for k, v in data.items():
            setattr(qc, k, v)
        _touch(qc, user)
        db.flush()

    if target is None:
        return qc
    if QCStatus(target) == qc.status:
        # re-stating an open status is a no-op; repeating submit/approve/reject is not
        if qc.status in EDITABLE_STATES:
            return qc
        raise InvalidStatusTransition(f"QC record {qc.qc_number} is already '{qc.status.value}'")

    target = QCStatus(target)
    if target == QCStatus.IN_PROGRESS and qc.status == QCStatus.PENDING:
        ensure_allowed(authz, user, RESOURCE, "update")
        qc.status = QCStatus.IN_PROGRESS
        _touch(qc, user)
        db.flush()
        return qc
    if target == QCStatus.PENDING_APPROVAL:
        return submit_qc(db, qc_id, QCSubmitIn(), user=user, authz=authz)
    if target == QCStatus.COMPLETED:
        qc, _wa = approve_qc(db, qc_id, QCApproveIn(), user=user, authz=authz)
        return qc
    if target == QCStatus.REJECTED:
        return reject_qc(db, qc_id, reason, None, user=user, authz=authz)

    raise InvalidStatusTransition(
        f"Cannot change QC status from '{qc.status.value}' to '{target.value}'")


# =========================================================
# Item-level QC
# =========================================================
def _ensure_editable(qc: QCRecord) -> None:
    if qc.status not in EDITABLE_STATES:
        raise InvalidStatusTransition(
            f"Item results cannot be recorded while QC is '{qc.status.value}'")


def _apply_item(item: QCItem, data: QCItemResultIn, user, now: datetime) -> None:
    item.status = data.status
    item.qc_reasons = [r.value for r in data.qc_reasons]
    item.remarks = data.remarks
    if data.status == ItemQCStatus.PENDING:
        item.qc_by_id = None
        item.qc_date = None
    else:
        item.qc_by_id = _uid(user)
        item.qc_date = now


def record_item_result(
    db: Session,
    qc_id: int,
    product_index: int,
    item_index: int,
    payload: QCItemResultIn,
    *,
    user,
    authz: Authorizer,
) -> Tuple[QCRecord, QCProduct, QCItem]:
    ensure_allowed(authz, user, RESOURCE, "inspect")
    qc = load_qc(db, qc_id, lock=True)
    _ensure_editable(qc)

    product, item = _locate_item(qc, product_index, item_index)
    _apply_item(item, payload, user, now_local())

    status_rollup.refresh_qc_record(qc)
    status_rollup.advance_qc_on_entry(qc)
    _touch(qc, user)
    db.flush()
    return qc, product, item


def record_item_results(
    db: Session,
    qc_id: int,
    product_index: int,
    payload: QCBulkItemsIn,
    *,
    user,
    authz: Authorizer,
) -> QCRecord:
    """Several items of one product in one call; all or nothing."""
    ensure_allowed(authz, user, RESOURCE, "inspect")
    qc = load_qc(db, qc_id, lock=True)
    _ensure_editable(qc)

    now = now_local()
    for row in payload.items:
        _product, item = _locate_item(qc, product_index, row.item_index)
        _apply_item(item, row, user, now)

    status_rollup.refresh_qc_record(qc)
    status_rollup.advance_qc_on_entry(qc)
    _touch(qc, user)
    db.flush()
    return qc


# =========================================================
# Submit / approve / reject
# =========================================================
def submit_qc(db: Session, qc_id: int, payload: QCSubmitIn, *, user, authz: Authorizer) -> QCRecord:
    ensure_allowed(authz, user, RESOURCE, "submit")
    qc = load_qc(db, qc_id, lock=True)

    if qc.status in (QCStatus.PENDING_APPROVAL, QCStatus.COMPLETED):
        raise InvalidStatusTransition(f"QC record {qc.qc_number} is already submitted")

    incomplete = [
        p.line_no for p in qc.products
        if not status_rollup.is_inspection_complete(i.status for i in p.items)
    ]
    if incomplete:
        raise IncompleteInspection(
            "All items must be inspected before submitting for approval",
            details={"products": incomplete},
        )

    # rejected -> pending_approval is the explicit re-submission path
    if qc.status not in (QCStatus.IN_PROGRESS, QCStatus.REJECTED):
        raise InvalidStatusTransition(
            f"Cannot submit a QC record in '{qc.status.value}' status")

    status_rollup.refresh_qc_record(qc)
    qc.status = QCStatus.PENDING_APPROVAL
    qc.qc_by_id = _uid(user)
    qc.qc_date = now_local()
    if payload.remarks is not None:
        qc.qc_remarks = payload.remarks
    env = payload.environment
    if env is not None:
        qc.qc_temperature = env.temperature
        qc.qc_humidity = env.humidity
        qc.light_condition = env.light_condition
    _touch(qc, user)
    db.flush()
    logger.info("QC %s submitted for approval (result=%s)", qc.qc_number, qc.overall_result.value)
    return qc


def approve_qc(db: Session, qc_id: int, payload: QCApproveIn, *, user, authz: Authorizer):
    """Returns (qc, warehouse_approval or None)."""
    ensure_allowed(authz, user, RESOURCE, "approve")
    qc = load_qc(db, qc_id, lock=True)

    if qc.status == QCStatus.COMPLETED:
        raise NotSubmitted(f"QC record {qc.qc_number} is already approved")
    if qc.status != QCStatus.PENDING_APPROVAL:
        raise NotSubmitted(f"QC record {qc.qc_number} has not been submitted for approval")

    status_rollup.refresh_qc_record(qc)
    qc.status = QCStatus.COMPLETED
    qc.approved_by_id = _uid(user)
    qc.approval_date = now_local()
    qc.approval_remarks = payload.remarks
    _touch(qc, user)
    db.flush()
    logger.info("QC %s approved (result=%s)", qc.qc_number, qc.overall_result.value)

    wa = None
    if payload.warehouse_id is not None and qc.overall_result in PASSING_RESULTS:
        wa = warehouse_approval_service.create_approval(
            db, qc.id, payload.warehouse_id, user=user, authz=authz)
    return qc, wa


def reject_qc(db: Session, qc_id: int, reason: Optional[str], remarks: Optional[str] = None,
              *, user, authz: Authorizer) -> QCRecord:
    ensure_allowed(authz, user, RESOURCE, "approve")
    if not (reason or "").strip():
        raise ValidationError("Rejection reason is required", field="reason")

    qc = load_qc(db, qc_id, lock=True)
    if qc.status != QCStatus.PENDING_APPROVAL:
        raise NotSubmitted(f"QC record {qc.qc_number} has not been submitted for approval")

    qc.status = QCStatus.REJECTED
    qc.rejection_reason = reason.strip()
    qc.approval_remarks = remarks
    qc.approved_by_id = _uid(user)
    qc.approval_date = now_local()
    _touch(qc, user)
    db.flush()
    logger.info("QC %s rejected: %s", qc.qc_number, qc.rejection_reason)
    return qc


# =========================================================
# Bulk assignment (per-record step)
# =========================================================
def find_qc_for_update(db: Session, qc_id: int) -> QCRecord:
    qc = db.query(QCRecord).filter(QCRecord.id == qc_id).with_for_update().first()
    if not qc:
        raise NotFoundError(f"QC record {qc_id} not found")
    return qc


def assign_qc(db: Session, qc: QCRecord, assignee_id: int, priority: Optional[QCPriority], user) -> QCRecord:
    if qc.status not in ASSIGNABLE_STATES:
        raise InvalidStatusTransition(
            f"QC record {qc.qc_number} is '{qc.status.value}'; only pending or in-progress records can be assigned")
    qc.assigned_to_id = assignee_id
    if priority is not None:
        qc.priority = priority
    _touch(qc, user)
    db.flush()
    return qc


# =========================================================
# Queries
# =========================================================
SORTABLE = {
    "created_at": QCRecord.created_at,
    "updated_at": QCRecord.updated_at,
    "qc_number": QCRecord.qc_number,
    "priority": QCRecord.priority,
    "status": QCRecord.status,
}


def list_qc(
    db: Session,
    *,
    status: Optional[QCStatus] = None,
    qc_type=None,
    priority=None,
    assigned_to_id: Optional[int] = None,
    result: Optional[QCResult] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    sort: str = "created_at",
    order: str = "desc",
) -> Tuple[List[QCRecord], int]:
    q = db.query(QCRecord)
    if status:
        q = q.filter(QCRecord.status == status)
    if qc_type:
        q = q.filter(QCRecord.qc_type == qc_type)
    if priority:
        q = q.filter(QCRecord.priority == priority)
    if assigned_to_id:
        q = q.filter(QCRecord.assigned_to_id == assigned_to_id)
    if result:
        q = q.filter(QCRecord.overall_result == result)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            QCRecord.qc_number.like(like),
            QCRecord.invoice_reference.like(like),
            QCRecord.purchase_order_reference.like(like),
        ))

    total = q.count()
    col = SORTABLE.get(sort, QCRecord.created_at)
    q = q.order_by(col.asc() if order == "asc" else col.desc(), QCRecord.id.desc())
    rows = q.offset((page - 1) * limit).limit(limit).all()
    return rows, total


def _breakdown(db: Session, col, *filters) -> List[Dict[str, Any]]:
    rows = db.query(col, func.count(QCRecord.id)).filter(*filters).group_by(col).all()
    return [{"key": getattr(k, "value", k), "count": int(c)} for k, c in rows]


def qc_statistics(db: Session, *, date_from: Optional[datetime] = None,
                  date_to: Optional[datetime] = None) -> Dict[str, Any]:
    filters = []
    if date_from:
        filters.append(QCRecord.created_at >= date_from)
    if date_to:
        filters.append(QCRecord.created_at <= date_to)

    completed = (
        db.query(QCRecord.created_at, QCRecord.qc_date)
        .filter(QCRecord.status == QCStatus.COMPLETED, QCRecord.qc_date.isnot(None), *filters)
        .all()
    )
    hours = [max((qd - ca).total_seconds(), 0) / 3600.0 for ca, qd in completed]

    return {
        "total": int(db.query(func.count(QCRecord.id)).filter(*filters).scalar() or 0),
        "status_breakdown": _breakdown(db, QCRecord.status, *filters),
        "result_breakdown": _breakdown(db, QCRecord.overall_result,
                                       QCRecord.status == QCStatus.COMPLETED, *filters),
        "type_breakdown": _breakdown(db, QCRecord.qc_type, *filters),
        "processing_time": {
            "avg_hours": round(sum(hours) / len(hours), 2) if hours else 0,
            "min_hours": round(min(hours), 2) if hours else 0,
            "max_hours": round(max(hours), 2) if hours else 0,
        },
    }


def qc_workload(db: Session, *, active_only: bool = True) -> List[Dict[str, Any]]:
    q = (
        db.query(
            QCRecord.assigned_to_id,
            User.name,
            User.email,
            func.count(QCRecord.id),
            func.sum(case((QCRecord.status == QCStatus.PENDING, 1), else_=0)),
            func.sum(case((QCRecord.status == QCStatus.IN_PROGRESS, 1), else_=0)),
            func.sum(case((QCRecord.priority == QCPriority.HIGH, 1), else_=0)),
            func.sum(case((QCRecord.priority == QCPriority.URGENT, 1), else_=0)),
        )
        .outerjoin(User, User.id == QCRecord.assigned_to_id)
    )
    if active_only:
        q = q.filter(QCRecord.status.in_([QCStatus.PENDING, QCStatus.IN_PROGRESS]))
    rows = q.group_by(QCRecord.assigned_to_id, User.name, User.email).all()

    out = [
        {
            "assigned_to_id": uid,
            "user_name": name or "Unassigned",
            "user_email": email,
            "total": int(total or 0),
            "pending": int(pend or 0),
            "in_progress": int(inprog or 0),
            "high_priority": int(high or 0),
            "urgent": int(urgent or 0),
        }
        for uid, name, email, total, pend, inprog, high, urgent in rows
    ]
    out.sort(key=lambda r: r["total"], reverse=True)
    return out
