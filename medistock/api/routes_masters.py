# FILE: medistock/api/routes_masters.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from medistock.api.deps import get_db, current_user, get_authorizer
from medistock.api.response import ok, paged
from medistock.core.config import settings
from medistock.core.rbac import Authorizer, ensure_allowed
from medistock.models.user import User
from medistock.schemas.masters import ProductCreate, ProductOut, WarehouseCreate, WarehouseOut
from medistock.services import masters_service as svc
from medistock.services.unit_of_work import run_in_transaction

router = APIRouter(prefix="/masters", tags=["Masters"])


# ----------- PRODUCTS -----------
@router.get("/products")
def list_products(
    search: Optional[str] = Query(None),
    active: Optional[bool] = Query(True),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=settings.MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, svc.RESOURCE, "view")
    rows, total = svc.list_products(db, search=search, active=active, page=page, limit=limit)
    return paged(rows, ProductOut, page=page, limit=limit, total=total)


@router.post("/products")
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    p = run_in_transaction(db, lambda: svc.create_product(db, payload, user=user, authz=authz))
    return ok(ProductOut.model_validate(p).model_dump(), status_code=201)


@router.get("/products/{product_id}")
def get_product(
    product_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, svc.RESOURCE, "view")
    return ok(ProductOut.model_validate(svc.get_product(db, product_id)).model_dump())


# ----------- WAREHOUSES -----------
@router.get("/warehouses")
def list_warehouses(
    search: Optional[str] = Query(None),
    active: Optional[bool] = Query(True),
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, svc.RESOURCE, "view")
    rows = svc.list_warehouses(db, search=search, active=active)
    return ok([WarehouseOut.model_validate(w).model_dump() for w in rows])


@router.post("/warehouses")
def create_warehouse(
    payload: WarehouseCreate,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    w = run_in_transaction(db, lambda: svc.create_warehouse(db, payload, user=user, authz=authz))
    return ok(WarehouseOut.model_validate(w).model_dump(), status_code=201)


@router.get("/warehouses/{warehouse_id}")
def get_warehouse(
    warehouse_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
    authz: Authorizer = Depends(get_authorizer),
):
    ensure_allowed(authz, user, svc.RESOURCE, "view")
    return ok(WarehouseOut.model_validate(svc.get_warehouse(db, warehouse_id)).model_dump())
