# FILE: medistock/services/inventory_ledger.py
from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from medistock.core.config import settings
from medistock.core.rbac import Authorizer, ensure_allowed
from medistock.models.masters import Product, Warehouse
from medistock.models.inventory import (
    InventoryRecord,
    InventoryAdjustment,
    InventoryReservation,
    InventoryUtilization,
    StockMovement,
    InventoryStatus,
    AdjustmentReason,
    ReservationStatus,
    MovementType,
)
from medistock.schemas.inventory import (
    InventoryCreateIn,
    InventoryUpdateIn,
    InventoryBulkFields,
    UtilizeIn,
)
from medistock.services.errors import (
    NotFoundError,
    ValidationError,
    DuplicateBatch,
    NegativeQuantity,
    BelowReserved,
    InsufficientAvailable,
    ExceedsReserved,
    SameWarehouse,
    ImmutableField,
    BatchNotActive,
)
from medistock.utils.timezone import now_local, today_local

logger = logging.getLogger(__name__)

RESOURCE = "inventory"

IDENTITY_FIELDS = ("product_id", "warehouse_id", "batch_no")
COMPUTED_FIELDS = ("reserved_quantity", "available_quantity")
BULK_FIELDS = ("minimum_stock", "maximum_stock", "storage_location")
NOT_NULL_FIELDS = ("quantity", "unit_cost", "status", "minimum_stock")


def D(v, default="0") -> Decimal:
    if v is None:
        return Decimal(default)
    if isinstance(v, Decimal):
        return v
    return Decimal(str(v))


def _uid(user) -> Optional[int]:
    return getattr(user, "id", None)


# =========================================================
# Loading / locking
# =========================================================
def get_inventory(db: Session, inventory_id: int, *, lock: bool = False) -> InventoryRecord:
    q = db.query(InventoryRecord).filter(InventoryRecord.id == inventory_id)
    if lock:
        q = q.with_for_update()
    inv = q.first()
    if not inv:
        raise NotFoundError(f"Inventory record {inventory_id} not found")
    return inv


def _find_batch(db: Session, product_id: int, warehouse_id: int, batch_no: str, *, lock: bool = True):
    q = db.query(InventoryRecord).filter(
        InventoryRecord.product_id == product_id,
        InventoryRecord.warehouse_id == warehouse_id,
        InventoryRecord.batch_no == batch_no,
    )
    if lock:
        q = q.with_for_update()
    return q.first()


def _require_product(db: Session, product_id: int) -> Product:
    p = db.get(Product, product_id)
    if not p:
        raise ValidationError(f"Product {product_id} not found", field="product_id")
    return p


def _require_warehouse(db: Session, warehouse_id: int, field: str = "warehouse_id") -> Warehouse:
    w = db.get(Warehouse, warehouse_id)
    if not w:
        raise ValidationError(f"Warehouse {warehouse_id} not found", field=field)
    return w


# =========================================================
# Invariant keepers
# =========================================================
def _apply_quantities(inv: InventoryRecord, *, quantity: int, reserved: int) -> None:
    """Single writer of the three quantity columns."""
    if quantity < 0:
        raise NegativeQuantity(f"Quantity cannot go below zero (would be {quantity})")
    if reserved < 0:
        raise ExceedsReserved("Reserved quantity cannot go below zero")
    if reserved > quantity:
        raise BelowReserved(
            f"Quantity {quantity} would be below reserved quantity {reserved}")
    inv.quantity = quantity
    inv.reserved_quantity = reserved
    inv.available_quantity = quantity - reserved


def _movement(
    db: Session,
    inv: InventoryRecord,
    movement_type: MovementType,
    qty: int,
    *,
    user=None,
    ref_type: Optional[str] = None,
    ref_id: Optional[int] = None,
    from_warehouse_id: Optional[int] = None,
    to_warehouse_id: Optional[int] = None,
    remark: str = "",
) -> StockMovement:
    m = StockMovement(
        inventory_id=inv.id,
        movement_type=movement_type,
        quantity=int(qty),
        quantity_after=int(inv.quantity),
        reserved_after=int(inv.reserved_quantity),
        ref_type=ref_type,
        ref_id=ref_id,
        from_warehouse_id=from_warehouse_id,
        to_warehouse_id=to_warehouse_id,
        remark=(remark or "")[:500],
        actor_id=_uid(user),
        created_at=now_local(),
    )
    db.add(m)
    return m


def _log_adjustment(db: Session, inv: InventoryRecord, before: int, reason: AdjustmentReason,
                    remarks: Optional[str], user) -> InventoryAdjustment:
    adj = InventoryAdjustment(
        inventory_id=inv.id,
        delta=int(inv.quantity) - int(before),
        reason=reason,
        remarks=remarks,
        quantity_before=int(before),
        quantity_after=int(inv.quantity),
        actor_id=_uid(user),
        created_at=now_local(),
    )
    db.add(adj)
    return adj


# =========================================================
# Create / receive
# =========================================================
def _new_record(
    db: Session,
    *,
    product: Product,
    warehouse_id: int,
    batch_no: str,
    quantity: int,
    unit_cost,
    mfg_date: Optional[date],
    exp_date: Optional[date],
    storage_location: Optional[str],
    status: InventoryStatus = InventoryStatus.ACTIVE,
    minimum_stock: Optional[int] = None,
    maximum_stock: Optional[int] = None,
    source_type: str = "manual",
    source_id: Optional[int] = None,
    remarks: Optional[str] = None,
    user=None,
) -> InventoryRecord:
    inv = InventoryRecord(
        product_id=product.id,
        warehouse_id=warehouse_id,
        batch_no=batch_no,
        product_code=product.code,
        product_name=product.name,
        unit_cost=D(unit_cost),
        mfg_date=mfg_date,
        exp_date=exp_date,
        storage_location=storage_location,
        status=status,
        minimum_stock=int(product.minimum_stock or 0) if minimum_stock is None else minimum_stock,
        maximum_stock=maximum_stock,
        source_type=source_type,
        source_id=source_id,
        remarks=remarks,
        created_by_id=_uid(user),
        updated_by_id=_uid(user),
    )
    _apply_quantities(inv, quantity=int(quantity), reserved=0)
    db.add(inv)
    db.flush()
    return inv


def create_inventory(db: Session, payload: InventoryCreateIn, *, user, authz: Authorizer) -> InventoryRecord:
    ensure_allowed(authz, user, RESOURCE, "create")

    product = _require_product(db, payload.product_id)
    _require_warehouse(db, payload.warehouse_id)
    batch_no = payload.batch_no.strip()

    if _find_batch(db, payload.product_id, payload.warehouse_id, batch_no):
        raise DuplicateBatch(
            f"Batch '{batch_no}' of product {product.code} already exists in this warehouse")

    inv = _new_record(
        db,
        product=product,
        warehouse_id=payload.warehouse_id,
        batch_no=batch_no,
        quantity=payload.quantity,
        unit_cost=payload.unit_cost,
        mfg_date=payload.mfg_date,
        exp_date=payload.exp_date,
        storage_location=payload.storage_location,
        status=payload.status,
        minimum_stock=payload.minimum_stock,
        maximum_stock=payload.maximum_stock,
        remarks=payload.remarks,
        user=user,
    )
    if inv.quantity:
        _movement(db, inv, MovementType.INWARD, inv.quantity, user=user,
                  ref_type="manual", remark="Manual stock entry")
    db.flush()
    logger.info("Inventory %s created: product=%s wh=%s batch=%s qty=%s",
                inv.id, inv.product_id, inv.warehouse_id, inv.batch_no, inv.quantity)
    return inv


def receive_stock(
    db: Session,
    *,
    product_id: int,
    warehouse_id: int,
    batch_no: str,
    quantity: int,
    unit_cost=None,
    mfg_date: Optional[date] = None,
    exp_date: Optional[date] = None,
    storage_location: Optional[str] = None,
    ref_type: str = "manual",
    ref_id: Optional[int] = None,
    user=None,
) -> InventoryRecord:
    """
    Create the batch record, or increment it when it already exists.
    Callers authorize the enclosing operation.
    """
    if int(quantity) <= 0:
        raise ValidationError("Received quantity must be positive", field="quantity")

    inv = _find_batch(db, product_id, warehouse_id, batch_no)
    if inv is None:
        product = _require_product(db, product_id)
        inv = _new_record(
            db,
            product=product,
            warehouse_id=warehouse_id,
            batch_no=batch_no,
            quantity=int(quantity),
            unit_cost=unit_cost,
            mfg_date=mfg_date,
            exp_date=exp_date,
            storage_location=storage_location,
            source_type=ref_type,
            source_id=ref_id,
            user=user,
        )
    else:
        if inv.status != InventoryStatus.ACTIVE:
            raise BatchNotActive(
                f"Batch {batch_no} is {inv.status.value} in this warehouse; cannot receive more stock into it")
        _apply_quantities(inv, quantity=int(inv.quantity) + int(quantity), reserved=int(inv.reserved_quantity))
        if storage_location and not inv.storage_location:
            inv.storage_location = storage_location
        inv.updated_by_id = _uid(user)

    _movement(db, inv, MovementType.INWARD, int(quantity), user=user,
              ref_type=ref_type, ref_id=ref_id, to_warehouse_id=warehouse_id)
    db.flush()
    return inv


# =========================================================
# Adjust / reserve / release / transfer
# =========================================================
def adjust_inventory(
    db: Session,
    inventory_id: int,
    delta: int,
    reason: AdjustmentReason,
    remarks: Optional[str] = None,
    *,
    user,
    authz: Authorizer,
) -> InventoryRecord:
    ensure_allowed(authz, user, RESOURCE, "adjust")
    if int(delta) == 0:
        raise ValidationError("Adjustment delta must not be zero", field="delta")

    inv = get_inventory(db, inventory_id, lock=True)
    before = int(inv.quantity)
    new_qty = before + int(delta)
    if new_qty < 0:
        raise NegativeQuantity(
            f"Adjustment of {delta} would make quantity negative (current {before})")

    _apply_quantities(inv, quantity=new_qty, reserved=int(inv.reserved_quantity))
    inv.updated_by_id = _uid(user)

    _log_adjustment(db, inv, before, AdjustmentReason(reason), remarks, user)
    _movement(db, inv, MovementType.ADJUSTMENT, int(delta), user=user,
              ref_type="adjustment", remark=f"{AdjustmentReason(reason).value}: {remarks or ''}".strip())
    db.flush()
    logger.info("Inventory %s adjusted by %s (%s)", inv.id, delta, AdjustmentReason(reason).value)
    return inv


def reserve_inventory(
    db: Session,
    inventory_id: int,
    quantity: int,
    reason: str,
    reserved_for,
    reference_number: Optional[str] = None,
    expiry_date: Optional[date] = None,
    *,
    user,
    authz: Authorizer,
) -> Tuple[InventoryRecord, InventoryReservation]:
    ensure_allowed(authz, user, RESOURCE, "reserve")
    if int(quantity) <= 0:
        raise ValidationError("Reserve quantity must be positive", field="quantity")

    inv = get_inventory(db, inventory_id, lock=True)
    if int(quantity) > int(inv.available_quantity):
        raise InsufficientAvailable(
            f"Insufficient available quantity: requested {quantity}, available {inv.available_quantity}")

    _apply_quantities(inv, quantity=int(inv.quantity), reserved=int(inv.reserved_quantity) + int(quantity))
    inv.updated_by_id = _uid(user)

    res = InventoryReservation(
        inventory_id=inv.id,
        quantity=int(quantity),
        released_quantity=0,
        reason=reason,
        reserved_for=reserved_for,
        reference_number=reference_number,
        expiry_date=expiry_date,
        status=ReservationStatus.ACTIVE,
        actor_id=_uid(user),
        created_at=now_local(),
    )
    db.add(res)
    db.flush()
    _movement(db, inv, MovementType.RESERVE, 0, user=user,
              ref_type="reservation", ref_id=res.id, remark=reason)
    db.flush()
    return inv, res


def _release_from(res: InventoryReservation, qty: int) -> int:
    take = min(qty, res.outstanding_quantity)
    res.released_quantity = int(res.released_quantity or 0) + take
    if res.outstanding_quantity <= 0:
        res.status = ReservationStatus.RELEASED
        res.released_at = now_local()
    return take


def release_inventory(
    db: Session,
    inventory_id: int,
    quantity: int,
    reason: str,
    reservation_id: Optional[int] = None,
    *,
    user,
    authz: Authorizer,
) -> InventoryRecord:
    """
    With reservation_id, releases against that reservation only.
    Without it, active reservations are drawn down oldest first.
    """
    ensure_allowed(authz, user, RESOURCE, "release")
    qty = int(quantity)
    if qty <= 0:
        raise ValidationError("Release quantity must be positive", field="quantity")

    inv = get_inventory(db, inventory_id, lock=True)
    if qty > int(inv.reserved_quantity):
        raise ExceedsReserved(
            f"Cannot release {qty}: only {inv.reserved_quantity} reserved")

    active = (
        db.query(InventoryReservation)
        .filter(
            InventoryReservation.inventory_id == inv.id,
            InventoryReservation.status == ReservationStatus.ACTIVE,
        )
        .order_by(InventoryReservation.id.asc())
        .with_for_update()
        .all()
    )

    if reservation_id is not None:
        target = next((r for r in active if r.id == reservation_id), None)
        if target is None:
            raise NotFoundError(f"Active reservation {reservation_id} not found on this record")
        if qty > target.outstanding_quantity:
            raise ExceedsReserved(
                f"Cannot release {qty}: reservation {reservation_id} holds {target.outstanding_quantity}")
        _release_from(target, qty)
    else:
        remaining = qty
        for r in active:
            if remaining <= 0:
                break
            remaining -= _release_from(r, remaining)

    _apply_quantities(inv, quantity=int(inv.quantity), reserved=int(inv.reserved_quantity) - qty)
    inv.updated_by_id = _uid(user)
    _movement(db, inv, MovementType.RELEASE, 0, user=user,
              ref_type="reservation", ref_id=reservation_id, remark=reason)
    db.flush()
    return inv


def transfer_inventory(
    db: Session,
    inventory_id: int,
    target_warehouse_id: int,
    quantity: int,
    reason: str,
    storage_location: Optional[str] = None,
    *,
    user,
    authz: Authorizer,
) -> Tuple[InventoryRecord, InventoryRecord]:
    ensure_allowed(authz, user, RESOURCE, "transfer")
    qty = int(quantity)
    if qty <= 0:
        raise ValidationError("Transfer quantity must be positive", field="quantity")

    src = get_inventory(db, inventory_id, lock=True)
    if int(src.warehouse_id) == int(target_warehouse_id):
        raise SameWarehouse("Target warehouse must differ from the source warehouse")
    _require_warehouse(db, target_warehouse_id, "target_warehouse_id")

    if qty > int(src.available_quantity):
        raise InsufficientAvailable(
            f"Insufficient available quantity: requested {qty}, available {src.available_quantity}")

    _apply_quantities(src, quantity=int(src.quantity) - qty, reserved=int(src.reserved_quantity))
    src.updated_by_id = _uid(user)
    _movement(db, src, MovementType.TRANSFER_OUT, -qty, user=user, ref_type="transfer",
              from_warehouse_id=src.warehouse_id, to_warehouse_id=target_warehouse_id, remark=reason)

    dst = _find_batch(db, src.product_id, target_warehouse_id, src.batch_no)
    if dst is None:
        product = _require_product(db, src.product_id)
        dst = _new_record(
            db,
            product=product,
            warehouse_id=target_warehouse_id,
            batch_no=src.batch_no,
            quantity=qty,
            unit_cost=src.unit_cost,
            mfg_date=src.mfg_date,
            exp_date=src.exp_date,
            storage_location=storage_location,
            status=src.status,
            minimum_stock=src.minimum_stock,
            source_type="transfer",
            source_id=src.id,
            user=user,
        )
    else:
        _apply_quantities(dst, quantity=int(dst.quantity) + qty, reserved=int(dst.reserved_quantity))
        if storage_location:
            dst.storage_location = storage_location
        dst.updated_by_id = _uid(user)

    _movement(db, dst, MovementType.TRANSFER_IN, qty, user=user, ref_type="transfer", ref_id=src.id,
              from_warehouse_id=src.warehouse_id, to_warehouse_id=target_warehouse_id, remark=reason)
    db.flush()
    logger.info("Transferred %s of inventory %s to warehouse %s (record %s)",
                qty, src.id, target_warehouse_id, dst.id)
    return src, dst


# =========================================================
# Utilization (stock out to a hospital / case)
# =========================================================
def utilize_inventory(
    db: Session,
    inventory_id: int,
    payload: UtilizeIn,
    *,
    user,
    authz: Authorizer,
) -> Tuple[InventoryRecord, InventoryUtilization]:
    """
    Consume unreserved stock. Reserved units stay untouched; release them
    first to hand reserved stock out.
    """
    ensure_allowed(authz, user, RESOURCE, "utilize")
    qty = int(payload.quantity)
    if qty <= 0:
        raise ValidationError("Utilized quantity must be positive", field="quantity")

    inv = get_inventory(db, inventory_id, lock=True)
    if inv.status != InventoryStatus.ACTIVE:
        raise BatchNotActive(
            f"Batch {inv.batch_no} is {inv.status.value}; only active stock can be utilized")
    if qty > int(inv.available_quantity):
        raise InsufficientAvailable(
            f"Insufficient available quantity: requested {qty}, available {inv.available_quantity}")

    _apply_quantities(inv, quantity=int(inv.quantity) - qty, reserved=int(inv.reserved_quantity))
    inv.updated_by_id = _uid(user)

    util = InventoryUtilization(
        inventory_id=inv.id,
        quantity=qty,
        hospital_name=payload.hospital_name,
        case_number=payload.case_number,
        patient_name=payload.patient_name,
        patient_ref=payload.patient_ref,
        doctor_name=payload.doctor_name,
        reason=payload.reason,
        remarks=payload.remarks,
        quantity_after=int(inv.quantity),
        actor_id=_uid(user),
        created_at=now_local(),
    )
    db.add(util)
    db.flush()
    _movement(db, inv, MovementType.OUTWARD, -qty, user=user, ref_type="utilization", ref_id=util.id,
              from_warehouse_id=inv.warehouse_id, remark=payload.reason)
    db.flush()
    logger.info("Inventory %s: %s utilized (case=%s), %s left",
                inv.id, qty, payload.case_number, inv.quantity)
    return inv, util


def list_utilizations(db: Session, inventory_id: int, *, page: int = 1, limit: int = 20):
    get_inventory(db, inventory_id)
    q = db.query(InventoryUtilization).filter(InventoryUtilization.inventory_id == inventory_id)
    total = q.count()
    rows = q.order_by(InventoryUtilization.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return rows, total


# =========================================================
# Update
# =========================================================
def _apply_field_updates(db: Session, inv: InventoryRecord, data: Dict[str, Any], user) -> None:
    for f in NOT_NULL_FIELDS:
        if f in data and data[f] is None:
            raise ValidationError(f"'{f}' cannot be null", field=f)
    for f in IDENTITY_FIELDS:
        if f in data and data[f] is not None and data[f] != getattr(inv, f):
            raise ImmutableField(f"'{f}' cannot be changed after creation", details={f: "immutable"})
    for f in COMPUTED_FIELDS:
        if f in data and data[f] is not None and data[f] != getattr(inv, f):
            raise ImmutableField(
                f"'{f}' is maintained by reserve/release and cannot be set directly",
                details={f: "read-only"})

    if data.get("quantity") is not None and int(data["quantity"]) != int(inv.quantity):
        new_qty = int(data["quantity"])
        if new_qty < 0:
            raise NegativeQuantity("Quantity cannot be negative")
        if new_qty < int(inv.reserved_quantity):
            raise BelowReserved(
                f"Quantity {new_qty} would be below reserved quantity {inv.reserved_quantity}")
        before = int(inv.quantity)
        _apply_quantities(inv, quantity=new_qty, reserved=int(inv.reserved_quantity))
        _log_adjustment(db, inv, before, AdjustmentReason.CORRECTION, data.get("remarks"), user)
        _movement(db, inv, MovementType.ADJUSTMENT, new_qty - before, user=user,
                  ref_type="update", remark="Quantity corrected")

    if data.get("status") is not None and InventoryStatus(data["status"]) != inv.status:
        old = getattr(inv.status, "value", inv.status)
        inv.status = InventoryStatus(data["status"])
        _movement(db, inv, MovementType.STATUS_CHANGE, 0, user=user,
                  ref_type="update", remark=f"{old} -> {inv.status.value}")

    for f in ("unit_cost", "mfg_date", "exp_date", "storage_location",
              "minimum_stock", "maximum_stock", "remarks"):
        if f in data:
            setattr(inv, f, D(data[f]) if f == "unit_cost" and data[f] is not None else data[f])

    inv.updated_by_id = _uid(user)


def update_inventory(db: Session, inventory_id: int, payload: InventoryUpdateIn, *, user,
                     authz: Authorizer) -> InventoryRecord:
    ensure_allowed(authz, user, RESOURCE, "update")
    data = payload.model_dump(exclude_unset=True)
    inv = get_inventory(db, inventory_id, lock=True)
    _apply_field_updates(db, inv, data, user)
    db.flush()
    return inv


def bulk_update_fields(db: Session, inv: InventoryRecord, fields: InventoryBulkFields, user) -> None:
    """Per-record step of PUT /inventory/bulk-update (planning fields only)."""
    data = fields.model_dump(exclude_unset=True)
    data = {k: v for k, v in data.items() if k in BULK_FIELDS}
    if not data:
        raise ValidationError("No valid fields to update", field="update")
    _apply_field_updates(db, inv, data, user)
    db.flush()


def mark_expired(db: Session, *, user, authz: Authorizer, as_of: Optional[date] = None) -> List[int]:
    """Move past-expiry batches to status=expired; returns touched ids."""
    ensure_allowed(authz, user, RESOURCE, "update")
    today = as_of or today_local()
    rows = (
        db.query(InventoryRecord)
        .filter(
            InventoryRecord.exp_date.isnot(None),
            InventoryRecord.exp_date < today,
            InventoryRecord.status != InventoryStatus.EXPIRED,
        )
        .order_by(InventoryRecord.id.asc())
        .with_for_update()
        .all()
    )
    for inv in rows:
        old = inv.status.value
        inv.status = InventoryStatus.EXPIRED
        inv.updated_by_id = _uid(user)
        _movement(db, inv, MovementType.STATUS_CHANGE, 0, user=user,
                  ref_type="expiry_sweep", remark=f"{old} -> expired")
    db.flush()
    if rows:
        logger.info("Marked %s inventory records expired as of %s", len(rows), today)
    return [r.id for r in rows]


# =========================================================
# Queries
# =========================================================
SORTABLE = {
    "created_at": InventoryRecord.created_at,
    "updated_at": InventoryRecord.updated_at,
    "exp_date": InventoryRecord.exp_date,
    "quantity": InventoryRecord.quantity,
    "available_quantity": InventoryRecord.available_quantity,
    "product_name": InventoryRecord.product_name,
    "batch_no": InventoryRecord.batch_no,
}


def list_inventory(
    db: Session,
    *,
    warehouse_id: Optional[int] = None,
    product_id: Optional[int] = None,
    status: Optional[InventoryStatus] = None,
    search: Optional[str] = None,
    low_stock: bool = False,
    near_expiry: bool = False,
    page: int = 1,
    limit: int = 20,
    sort: str = "created_at",
    order: str = "desc",
) -> Tuple[List[InventoryRecord], int]:
    q = db.query(InventoryRecord)
    if warehouse_id:
        q = q.filter(InventoryRecord.warehouse_id == warehouse_id)
    if product_id:
        q = q.filter(InventoryRecord.product_id == product_id)
    if status:
        q = q.filter(InventoryRecord.status == status)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            InventoryRecord.product_name.like(like),
            InventoryRecord.product_code.like(like),
            InventoryRecord.batch_no.like(like),
        ))
    if low_stock:
        q = q.filter(InventoryRecord.available_quantity <= InventoryRecord.minimum_stock)
    if near_expiry:
        today = today_local()
        q = q.filter(
            InventoryRecord.exp_date >= today,
            InventoryRecord.exp_date <= today + timedelta(days=settings.NEAR_EXPIRY_DAYS),
        )

    total = q.count()
    col = SORTABLE.get(sort, InventoryRecord.created_at)
    q = q.order_by(col.asc() if order == "asc" else col.desc(), InventoryRecord.id.desc())
    rows = q.offset((page - 1) * limit).limit(limit).all()
    return rows, total


def get_inventory_detail(db: Session, inventory_id: int) -> InventoryRecord:
    inv = (
        db.query(InventoryRecord)
        .options(
            selectinload(InventoryRecord.adjustments),
            selectinload(InventoryRecord.reservations),
            selectinload(InventoryRecord.utilizations),
        )
        .filter(InventoryRecord.id == inventory_id)
        .first()
    )
    if not inv:
        raise NotFoundError(f"Inventory record {inventory_id} not found")
    return inv


def list_movements(db: Session, inventory_id: int, *, page: int = 1, limit: int = 20):
    get_inventory(db, inventory_id)
    q = db.query(StockMovement).filter(StockMovement.inventory_id == inventory_id)
    total = q.count()
    rows = q.order_by(StockMovement.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return rows, total


def _value_expr(col):
    return func.coalesce(func.sum(col * InventoryRecord.unit_cost), 0)


def inventory_statistics(db: Session, *, warehouse_id: Optional[int] = None) -> Dict[str, Any]:
    base = db.query(InventoryRecord)
    if warehouse_id:
        base = base.filter(InventoryRecord.warehouse_id == warehouse_id)

    overview = base.with_entities(
        func.count(InventoryRecord.id),
        func.coalesce(func.sum(InventoryRecord.quantity), 0),
        func.coalesce(func.sum(InventoryRecord.reserved_quantity), 0),
        func.coalesce(func.sum(InventoryRecord.available_quantity), 0),
        _value_expr(InventoryRecord.quantity),
    ).one()

    by_status = base.with_entities(
        InventoryRecord.status,
        func.count(InventoryRecord.id),
        func.coalesce(func.sum(InventoryRecord.quantity), 0),
    ).group_by(InventoryRecord.status).all()

    by_warehouse = (
        base.join(Warehouse, Warehouse.id == InventoryRecord.warehouse_id)
        .with_entities(
            Warehouse.id,
            Warehouse.name,
            func.count(InventoryRecord.id),
            func.coalesce(func.sum(InventoryRecord.quantity), 0),
            _value_expr(InventoryRecord.quantity),
        )
        .group_by(Warehouse.id, Warehouse.name)
        .order_by(Warehouse.name.asc())
        .all()
    )

    counts = alert_counts(db, warehouse_id=warehouse_id)

    return {
        "overview": {
            "total_records": int(overview[0] or 0),
            "total_quantity": int(overview[1] or 0),
            "total_reserved": int(overview[2] or 0),
            "total_available": int(overview[3] or 0),
            "total_value": D(overview[4]).quantize(Decimal("0.01")),
        },
        "status_breakdown": [
            {"status": getattr(s, "value", s), "count": int(c), "quantity": int(q)}
            for s, c, q in by_status
        ],
        "warehouse_breakdown": [
            {"warehouse_id": wid, "warehouse_name": name, "records": int(c),
             "quantity": int(q), "value": D(v).quantize(Decimal("0.01"))}
            for wid, name, c, q, v in by_warehouse
        ],
        "alerts": counts,
    }


def inventory_alerts(
    db: Session,
    *,
    warehouse_id: Optional[int] = None,
    alert_type: str = "all",
    near_expiry_days: Optional[int] = None,
) -> Dict[str, List[InventoryRecord]]:
    """
    low_stock    : 0 < available <= minimum_stock
    out_of_stock : available == 0
    near_expiry  : expires within N days, stock still available
    expired      : past expiry, stock still available
    """
    today = today_local()
    horizon = today + timedelta(days=near_expiry_days or settings.NEAR_EXPIRY_DAYS)

    base = db.query(InventoryRecord)
    if warehouse_id:
        base = base.filter(InventoryRecord.warehouse_id == warehouse_id)

    out: Dict[str, List[InventoryRecord]] = {
        "low_stock": [], "out_of_stock": [], "near_expiry": [], "expired": [],
    }
    if alert_type in ("all", "low_stock"):
        out["low_stock"] = base.filter(
            InventoryRecord.available_quantity > 0,
            InventoryRecord.available_quantity <= InventoryRecord.minimum_stock,
        ).order_by(InventoryRecord.available_quantity.asc()).all()
    if alert_type in ("all", "out_of_stock"):
        out["out_of_stock"] = base.filter(
            InventoryRecord.available_quantity == 0,
        ).order_by(InventoryRecord.updated_at.desc()).all()
    if alert_type in ("all", "near_expiry"):
        out["near_expiry"] = base.filter(
            InventoryRecord.exp_date >= today,
            InventoryRecord.exp_date <= horizon,
            InventoryRecord.available_quantity > 0,
        ).order_by(InventoryRecord.exp_date.asc()).all()
    if alert_type in ("all", "expired"):
        out["expired"] = base.filter(
            InventoryRecord.exp_date < today,
            InventoryRecord.available_quantity > 0,
        ).order_by(InventoryRecord.exp_date.asc()).all()
    return out


def alert_counts(db: Session, *, warehouse_id: Optional[int] = None) -> Dict[str, int]:
    alerts = inventory_alerts(db, warehouse_id=warehouse_id)
    counts = {k: len(v) for k, v in alerts.items()}
    counts["total"] = sum(counts.values())
    return counts


def inventory_valuation(db: Session, *, warehouse_id: Optional[int] = None) -> Dict[str, Any]:
    q = (
        db.query(
            Warehouse.id,
            Warehouse.name,
            func.count(InventoryRecord.id),
            func.coalesce(func.sum(InventoryRecord.quantity), 0),
            _value_expr(InventoryRecord.quantity),
            _value_expr(InventoryRecord.available_quantity),
            _value_expr(InventoryRecord.reserved_quantity),
        )
        .join(InventoryRecord, InventoryRecord.warehouse_id == Warehouse.id)
        .filter(InventoryRecord.status != InventoryStatus.EXPIRED)
    )
    if warehouse_id:
        q = q.filter(Warehouse.id == warehouse_id)
    rows = q.group_by(Warehouse.id, Warehouse.name).order_by(Warehouse.name.asc()).all()

    q2 = Decimal("0.01")
    warehouses = [
        {
            "warehouse_id": wid,
            "warehouse_name": name,
            "records": int(c),
            "quantity": int(qty),
            "total_value": D(tv).quantize(q2),
            "available_value": D(av).quantize(q2),
            "reserved_value": D(rv).quantize(q2),
        }
        for wid, name, c, qty, tv, av, rv in rows
    ]
    totals = {
        "records": sum(w["records"] for w in warehouses),
        "quantity": sum(w["quantity"] for w in warehouses),
        "total_value": sum((w["total_value"] for w in warehouses), Decimal("0.00")),
        "available_value": sum((w["available_value"] for w in warehouses), Decimal("0.00")),
        "reserved_value": sum((w["reserved_value"] for w in warehouses), Decimal("0.00")),
    }
    return {"warehouses": warehouses, "totals": totals}
