# FILE: medistock/services/masters_service.py
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from medistock.core.rbac import Authorizer, ensure_allowed
from medistock.models.masters import Product, Warehouse
from medistock.schemas.masters import ProductCreate, WarehouseCreate
from medistock.services.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

RESOURCE = "masters"


def _search(q, model, search: Optional[str]):
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(model.code.like(like), model.name.like(like)))
    return q


# ---------------- products ----------------
def create_product(db: Session, payload: ProductCreate, *, user, authz: Authorizer) -> Product:
    ensure_allowed(authz, user, RESOURCE, "manage")
    code = payload.code.strip().upper()
    if db.query(Product.id).filter(Product.code == code).first():
        raise ValidationError(f"Product code '{code}' already exists", field="code")

    data = payload.model_dump()
    data["code"] = code
    p = Product(**data)
    db.add(p)
    db.flush()
    logger.info("Product %s created (%s)", p.id, p.code)
    return p


def list_products(db: Session, *, search: Optional[str] = None, active: Optional[bool] = True,
                  page: int = 1, limit: int = 50) -> Tuple[List[Product], int]:
    q = _search(db.query(Product), Product, search)
    if active is not None:
        q = q.filter(Product.is_active == active)
    total = q.count()
    rows = q.order_by(Product.name.asc()).offset((page - 1) * limit).limit(limit).all()
    return rows, total


def get_product(db: Session, product_id: int) -> Product:
    p = db.get(Product, product_id)
    if not p:
        raise NotFoundError(f"Product {product_id} not found")
    return p


# ---------------- warehouses ----------------
def create_warehouse(db: Session, payload: WarehouseCreate, *, user, authz: Authorizer) -> Warehouse:
    ensure_allowed(authz, user, RESOURCE, "manage")
    code = payload.code.strip().upper()
    if db.query(Warehouse.id).filter(Warehouse.code == code).first():
        raise ValidationError(f"Warehouse code '{code}' already exists", field="code")

    w = Warehouse(code=code, name=payload.name, address=payload.address or "")
    db.add(w)
    db.flush()
    logger.info("Warehouse %s created (%s)", w.id, w.code)
    return w


def list_warehouses(db: Session, *, search: Optional[str] = None,
                    active: Optional[bool] = True) -> List[Warehouse]:
    q = _search(db.query(Warehouse), Warehouse, search)
    if active is not None:
        q = q.filter(Warehouse.is_active == active)
    return q.order_by(Warehouse.name.asc()).all()


def get_warehouse(db: Session, warehouse_id: int) -> Warehouse:
    w = db.get(Warehouse, warehouse_id)
    if not w:
        raise NotFoundError(f"Warehouse {warehouse_id} not found")
    return w
