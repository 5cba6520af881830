import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

from datetime import date, timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from jose import jwt  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from medistock.api.deps import get_db  # noqa: E402
from medistock.core.config import settings  # noqa: E402
from medistock.core.rbac import ALLOW_ALL  # noqa: E402
from medistock.db.base import Base  # noqa: E402
from medistock.db.session import enable_sqlite_savepoints  # noqa: E402
from medistock.main import app  # noqa: E402
from medistock.models import Permission, Product, Role, User, Warehouse  # noqa: E402
from medistock.models.quality_control import ItemQCStatus, QCType  # noqa: E402
from medistock.schemas.quality_control import (  # noqa: E402
    QCApproveIn,
    QCCreateIn,
    QCItemIn,
    QCProductIn,
    QCSubmitIn,
)
from medistock.schemas.warehouse_approval import WAProductStorageIn  # noqa: E402
from medistock.services import quality_control_service as qc_svc  # noqa: E402
from medistock.services import warehouse_approval_service as wa_svc  # noqa: E402
from medistock.services.unit_of_work import run_in_transaction  # noqa: E402


@pytest.fixture
def engine():
    eng = enable_sqlite_savepoints(create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    ))
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    yield s
    s.close()


# -------------------------
# Seed data
# -------------------------
@pytest.fixture
def admin(db):
    u = User(name="Admin", email="admin@example.com", is_admin=True)
    db.add(u)
    db.commit()
    return u


@pytest.fixture
def inspector(db):
    u = User(name="Inspector", email="inspector@example.com")
    db.add(u)
    db.commit()
    return u


def grant(db, user, *codes):
    """Give user a role holding the listed permission codes."""
    role = Role(name=f"role-{user.id}-{len(codes)}")
    for code in codes:
        perm = db.query(Permission).filter(Permission.code == code).first()
        if perm is None:
            module = code.rsplit(".", 1)[0]
            perm = Permission(code=code, label=code, module=module)
        role.permissions.append(perm)
    user.roles.append(role)
    db.commit()
    return role


@pytest.fixture
def product(db):
    p = Product(code="PARA500", name="Paracetamol 500mg", unit="strip",
                default_unit_cost=Decimal("12.50"), minimum_stock=10)
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def product2(db):
    p = Product(code="AMOX250", name="Amoxicillin 250mg", unit="strip",
                default_unit_cost=Decimal("30.00"))
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def warehouse(db):
    w = Warehouse(code="WH-MAIN", name="Main Warehouse")
    db.add(w)
    db.commit()
    return w


@pytest.fixture
def warehouse2(db):
    w = Warehouse(code="WH-NORTH", name="North Depot")
    db.add(w)
    db.commit()
    return w


# -------------------------
# Workflow helpers
# -------------------------
def item_rows(passed, failed=0, pending=0, reasons=("damaged_packaging",)):
    rows = []
    n = 1
    for _ in range(passed):
        rows.append(QCItemIn(item_number=n, status=ItemQCStatus.PASSED))
        n += 1
    for _ in range(failed):
        rows.append(QCItemIn(item_number=n, status=ItemQCStatus.FAILED, qc_reasons=list(reasons)))
        n += 1
    for _ in range(pending):
        rows.append(QCItemIn(item_number=n))
        n += 1
    return rows


def make_qc(db, user, product, *, passed=3, failed=0, pending=0, batch_no="B-001", **extra):
    payload = QCCreateIn(
        qc_type=QCType.STANDARD,
        invoice_reference="INV-1001",
        products=[QCProductIn(
            product_id=product.id,
            batch_no=batch_no,
            received_qty=passed + failed + pending,
            unit_cost=Decimal("10.00"),
            exp_date=date.today() + timedelta(days=365),
            items=item_rows(passed, failed, pending),
        )],
        **extra,
    )
    return run_in_transaction(db, lambda: qc_svc.create_qc(db, payload, user=user, authz=ALLOW_ALL))


def approved_qc(db, user, product, **kw):
    qc = make_qc(db, user, product, **kw)
    run_in_transaction(db, lambda: qc_svc.submit_qc(db, qc.id, QCSubmitIn(), user=user, authz=ALLOW_ALL))
    qc, _ = run_in_transaction(
        db, lambda: qc_svc.approve_qc(db, qc.id, QCApproveIn(), user=user, authz=ALLOW_ALL))
    return qc


def stored_approval(db, user, product, warehouse, location="A-01", **kw):
    """A warehouse approval whose every product is placed, ready to submit."""
    qc = approved_qc(db, user, product, **kw)
    wa = run_in_transaction(
        db, lambda: wa_svc.create_approval(db, qc.id, warehouse.id, user=user, authz=ALLOW_ALL))
    for idx in range(len(wa.products)):
        run_in_transaction(db, lambda: wa_svc.assign_product_location(
            db, wa.id, idx, WAProductStorageIn(storage_location=location), user=user, authz=ALLOW_ALL))
    return wa


# -------------------------
# API
# -------------------------
def token_for(user) -> str:
    return jwt.encode({"sub": user.email}, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {token_for(user)}"}


@pytest.fixture
def client(session_factory):
    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
