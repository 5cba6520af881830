from types import SimpleNamespace

import pytest

from medistock.core.config import settings
from medistock.core.rbac import ALLOW_ALL, RbacAuthorizer, ensure_allowed, has_perm
from medistock.db.init_db import MODULES, seed_permissions
from medistock.models import Permission
from medistock.services.errors import PermissionDenied

from conftest import grant


def _user(*codes, is_admin=False):
    role = SimpleNamespace(permissions=[SimpleNamespace(code=c) for c in codes])
    return SimpleNamespace(id=7, is_admin=is_admin, roles=[role])


def test_has_perm():
    u = _user("qc.view", "inventory.reserve")
    assert has_perm(u, "qc.view")
    assert not has_perm(u, "qc.approve")
    assert not has_perm(u, "")
    assert has_perm(_user(is_admin=True), "anything.at_all")
    assert not has_perm(None, "qc.view")


def test_admin_bypass_can_be_switched_off(monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_ALL_ACCESS", False)
    assert not has_perm(_user(is_admin=True), "qc.view")
    assert has_perm(_user("qc.view", is_admin=True), "qc.view")


def test_rbac_authorizer_joins_resource_and_action():
    authz = RbacAuthorizer()
    u = _user("warehouse_approvals.store")
    assert authz.authorize(u, "warehouse_approvals", "store")
    assert not authz.authorize(u, "warehouse_approvals", "approve")
    assert not authz.authorize(None, "qc", "view")


def test_ensure_allowed():
    ensure_allowed(ALLOW_ALL, None, "qc", "approve")
    with pytest.raises(PermissionDenied) as ei:
        ensure_allowed(RbacAuthorizer(), _user("qc.view"), "qc", "approve")
    assert ei.value.status_code == 403
    assert "qc.approve" in ei.value.message


def test_roles_loaded_from_database(db, inspector):
    grant(db, inspector, "inventory.view", "inventory.adjust")
    db.refresh(inspector)
    authz = RbacAuthorizer()
    assert authz.authorize(inspector, "inventory", "adjust")
    assert not authz.authorize(inspector, "inventory", "transfer")


def test_seed_permissions_is_idempotent(db):
    expected = sum(len(actions) for _, actions in MODULES)
    assert seed_permissions(db) == expected
    db.commit()
    assert seed_permissions(db) == 0
    assert db.query(Permission).count() == expected

    perm = db.query(Permission).filter(Permission.code == "warehouse_approvals.store").one()
    assert perm.module == "warehouse_approvals"
    assert perm.label == "Warehouse Approvals - Store"
