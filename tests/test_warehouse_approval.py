import re

import pytest

from medistock.core.rbac import ALLOW_ALL
from medistock.models import InventoryRecord, StockMovement
from medistock.models.inventory import MovementType
from medistock.models.warehouse_approval import StorageStatus, WAItemStatus, WAStatus
from medistock.schemas.warehouse_approval import WAItemStorageIn, WAProductStorageIn, WAUpdateIn
from medistock.services import inventory_ledger
from medistock.services import warehouse_approval_service as svc
from medistock.services.errors import (
    DuplicateApproval,
    IncompleteStorageInfo,
    InvalidStatusTransition,
    NotSubmitted,
    QCNotApproved,
    ValidationError,
)
from medistock.services.unit_of_work import run_in_transaction

from conftest import approved_qc, make_qc, stored_approval


def _create(db, user, qc_id, warehouse_id):
    return run_in_transaction(db, lambda: svc.create_approval(
        db, qc_id, warehouse_id, user=user, authz=ALLOW_ALL))


def _submit(db, user, wa_id):
    return run_in_transaction(db, lambda: svc.submit_approval(db, wa_id, "placed", user=user, authz=ALLOW_ALL))


def _approve(db, user, wa_id):
    return run_in_transaction(db, lambda: svc.approve_approval(db, wa_id, user=user, authz=ALLOW_ALL))


def test_create_requires_completed_passing_qc(db, admin, product, warehouse):
    open_qc = make_qc(db, admin, product, passed=2)
    with pytest.raises(QCNotApproved):
        _create(db, admin, open_qc.id, warehouse.id)

    failed_qc = approved_qc(db, admin, product, passed=0, failed=2, batch_no="B-F")
    with pytest.raises(QCNotApproved):
        _create(db, admin, failed_qc.id, warehouse.id)


def test_create_copies_only_passed_items(db, admin, product, warehouse):
    qc = approved_qc(db, admin, product, passed=2, failed=1)
    wa = _create(db, admin, qc.id, warehouse.id)

    assert re.fullmatch(r"WA-\d{6}-0001", wa.wa_number)
    assert wa.status == WAStatus.PENDING
    assert wa.inventory_created is False
    line = wa.products[0]
    assert line.qc_passed_qty == 2
    assert line.stored_qty == 0
    assert line.storage_status == StorageStatus.PENDING
    assert [i.item_number for i in line.items] == [1, 2]


def test_second_approval_for_same_qc_is_refused(db, admin, product, warehouse):
    qc = approved_qc(db, admin, product, passed=1)
    _create(db, admin, qc.id, warehouse.id)
    with pytest.raises(DuplicateApproval):
        _create(db, admin, qc.id, warehouse.id)


def test_unknown_warehouse_is_field_error(db, admin, product):
    qc = approved_qc(db, admin, product, passed=1)
    with pytest.raises(ValidationError) as ei:
        _create(db, admin, qc.id, 999)
    assert "warehouse_id" in ei.value.details


def test_item_storage_rolls_up(db, admin, product, warehouse):
    qc = approved_qc(db, admin, product, passed=2)
    wa = _create(db, admin, qc.id, warehouse.id)

    wa, line, item = run_in_transaction(db, lambda: svc.assign_item_location(
        db, wa.id, 0, 0, WAItemStorageIn(storage_location="A-01-03"), user=admin, authz=ALLOW_ALL))
    assert wa.status == WAStatus.IN_PROGRESS
    assert item.status == WAItemStatus.STORED
    assert item.stored_by_id == admin.id
    assert line.storage_location == "A-01-03"
    assert line.stored_qty == 1
    assert line.storage_status == StorageStatus.PARTIAL


def test_submit_lists_missing_locations(db, admin, product, warehouse):
    qc = approved_qc(db, admin, product, passed=2)
    wa = _create(db, admin, qc.id, warehouse.id)
    run_in_transaction(db, lambda: svc.assign_item_location(
        db, wa.id, 0, 0, WAItemStorageIn(storage_location="A-1"), user=admin, authz=ALLOW_ALL))

    with pytest.raises(IncompleteStorageInfo) as ei:
        _submit(db, admin, wa.id)
    assert ei.value.details == {"products[0].items[1].storage_location": "required"}


def test_full_flow_receives_inventory(db, admin, product, warehouse):
    wa = stored_approval(db, admin, product, warehouse, location="C-07", passed=3, failed=1)
    assert wa.products[0].storage_status == StorageStatus.STORED

    wa = _submit(db, admin, wa.id)
    assert wa.status == WAStatus.SUBMITTED
    assert wa.submission_remarks == "placed"

    wa = _approve(db, admin, wa.id)
    assert wa.status == WAStatus.APPROVED
    assert wa.inventory_created is True

    inv = db.get(InventoryRecord, wa.products[0].inventory_id)
    assert (inv.quantity, inv.reserved_quantity, inv.available_quantity) == (3, 0, 3)
    assert inv.warehouse_id == warehouse.id
    assert inv.batch_no == "B-001"
    assert inv.storage_location == "C-07"
    assert inv.source_type == "warehouse_approval"
    assert inv.source_id == wa.id

    move = db.query(StockMovement).filter_by(inventory_id=inv.id).one()
    assert move.movement_type == MovementType.INWARD
    assert move.ref_id == wa.id


def test_second_receipt_of_same_batch_increments(db, admin, product, warehouse):
    first = stored_approval(db, admin, product, warehouse, passed=2)
    _submit(db, admin, first.id)
    _approve(db, admin, first.id)

    second = stored_approval(db, admin, product, warehouse, passed=5)
    _submit(db, admin, second.id)
    _approve(db, admin, second.id)

    rows = db.query(InventoryRecord).all()
    assert len(rows) == 1
    assert rows[0].quantity == 7


def test_approve_twice_is_refused(db, admin, product, warehouse):
    wa = stored_approval(db, admin, product, warehouse, passed=1)
    with pytest.raises(NotSubmitted, match="not been submitted"):
        _approve(db, admin, wa.id)
    _submit(db, admin, wa.id)
    _approve(db, admin, wa.id)
    with pytest.raises(NotSubmitted, match="already approved"):
        _approve(db, admin, wa.id)
    assert db.query(InventoryRecord).one().quantity == 1


def test_storage_frozen_after_submit(db, admin, product, warehouse):
    wa = stored_approval(db, admin, product, warehouse, passed=1)
    _submit(db, admin, wa.id)
    with pytest.raises(InvalidStatusTransition):
        svc.assign_product_location(db, wa.id, 0, WAProductStorageIn(storage_location="Z"),
                                    user=admin, authz=ALLOW_ALL)


def test_reject_is_terminal_and_frees_the_qc(db, admin, product, warehouse):
    wa = stored_approval(db, admin, product, warehouse, passed=1)
    _submit(db, admin, wa.id)

    with pytest.raises(ValidationError):
        run_in_transaction(db, lambda: svc.reject_approval(db, wa.id, "", user=admin, authz=ALLOW_ALL))

    wa = run_in_transaction(db, lambda: svc.reject_approval(
        db, wa.id, "Wrong bay", user=admin, authz=ALLOW_ALL))
    assert wa.status == WAStatus.REJECTED
    assert wa.inventory_created is False
    assert db.query(InventoryRecord).count() == 0

    with pytest.raises(InvalidStatusTransition):
        _submit(db, admin, wa.id)

    again = _create(db, admin, wa.quality_control_id, warehouse.id)
    assert again.id != wa.id


def test_update_status_dispatch(db, admin, inspector, product, warehouse, warehouse2):
    qc = approved_qc(db, admin, product, passed=1)
    wa = _create(db, admin, qc.id, warehouse.id)

    wa = run_in_transaction(db, lambda: svc.update_approval(
        db, wa.id, WAUpdateIn(warehouse_id=warehouse2.id, assigned_to_id=inspector.id,
                              status=WAStatus.IN_PROGRESS),
        user=admin, authz=ALLOW_ALL))
    assert wa.warehouse_id == warehouse2.id
    assert wa.assigned_to_id == inspector.id
    assert wa.status == WAStatus.IN_PROGRESS

    with pytest.raises(IncompleteStorageInfo):
        run_in_transaction(db, lambda: svc.update_approval(
            db, wa.id, WAUpdateIn(status=WAStatus.SUBMITTED), user=admin, authz=ALLOW_ALL))

    with pytest.raises(InvalidStatusTransition):
        run_in_transaction(db, lambda: svc.update_approval(
            db, wa.id, WAUpdateIn(status=WAStatus.PENDING), user=admin, authz=ALLOW_ALL))


def test_restating_approved_status_is_refused(db, admin, product, warehouse):
    wa = stored_approval(db, admin, product, warehouse, passed=2)
    _submit(db, admin, wa.id)
    _approve(db, admin, wa.id)

    with pytest.raises(InvalidStatusTransition, match="already 'approved'"):
        run_in_transaction(db, lambda: svc.update_approval(
            db, wa.id, WAUpdateIn(status=WAStatus.APPROVED), user=admin, authz=ALLOW_ALL))
    assert db.query(InventoryRecord).one().quantity == 2


def test_restating_rejected_status_is_refused(db, admin, product, warehouse):
    wa = stored_approval(db, admin, product, warehouse, passed=1)
    _submit(db, admin, wa.id)
    run_in_transaction(db, lambda: svc.reject_approval(db, wa.id, "Wrong bay", user=admin, authz=ALLOW_ALL))

    with pytest.raises(InvalidStatusTransition, match="already 'rejected'"):
        run_in_transaction(db, lambda: svc.update_approval(
            db, wa.id, WAUpdateIn(status=WAStatus.REJECTED, reason="again"), user=admin, authz=ALLOW_ALL))


def test_approval_receipt_is_all_or_nothing(db, admin, product, warehouse, monkeypatch):
    wa = stored_approval(db, admin, product, warehouse, passed=2)
    _submit(db, admin, wa.id)

    real_receive = inventory_ledger.receive_stock

    def receive_then_fail(db_, **kw):
        real_receive(db_, **kw)
        db_.flush()
        raise RuntimeError("ledger write failed")

    monkeypatch.setattr(inventory_ledger, "receive_stock", receive_then_fail)
    with pytest.raises(RuntimeError, match="ledger write failed"):
        _approve(db, admin, wa.id)

    db.expire_all()
    wa = svc.load_approval(db, wa.id)
    assert wa.status == WAStatus.SUBMITTED
    assert wa.inventory_created is False
    assert wa.products[0].inventory_id is None
    assert db.query(InventoryRecord).count() == 0
    assert db.query(StockMovement).count() == 0

    monkeypatch.setattr(inventory_ledger, "receive_stock", real_receive)
    wa = _approve(db, admin, wa.id)
    assert wa.inventory_created is True
    assert db.query(InventoryRecord).one().quantity == 2


def test_list_and_statistics(db, admin, product, warehouse, warehouse2):
    done = stored_approval(db, admin, product, warehouse, passed=4)
    _submit(db, admin, done.id)
    _approve(db, admin, done.id)
    qc = approved_qc(db, admin, product, passed=1, batch_no="B-2")
    _create(db, admin, qc.id, warehouse2.id)

    rows, total = svc.list_approvals(db, warehouse_id=warehouse2.id)
    assert total == 1 and rows[0].quality_control_id == qc.id

    rows, total = svc.list_approvals(db, search=qc.qc_number)
    assert total == 1

    stats = svc.wa_statistics(db)
    assert stats["total"] == 2
    assert stats["units_received"] == 4
    assert {"key": "approved", "count": 1} in stats["status_breakdown"]


def test_workload_groups_open_approvals_by_assignee(db, admin, inspector, product, warehouse):
    mine = [_create(db, admin, approved_qc(db, admin, product, passed=1, batch_no=f"W-{n}").id, warehouse.id)
            for n in range(2)]
    for wa in mine:
        run_in_transaction(db, lambda: svc.update_approval(
            db, wa.id, WAUpdateIn(assigned_to_id=inspector.id), user=admin, authz=ALLOW_ALL))
    run_in_transaction(db, lambda: svc.update_approval(
        db, mine[0].id, WAUpdateIn(status=WAStatus.IN_PROGRESS), user=admin, authz=ALLOW_ALL))

    _create(db, admin, approved_qc(db, admin, product, passed=1, batch_no="W-U").id, warehouse.id)

    done = stored_approval(db, admin, product, warehouse, passed=1, batch_no="W-D")
    _submit(db, admin, done.id)

    rows = svc.wa_workload(db)
    assert rows[0] == {
        "assigned_to_id": inspector.id,
        "user_name": "Inspector",
        "user_email": "inspector@example.com",
        "total": 2,
        "pending": 1,
        "in_progress": 1,
        "submitted": 0,
    }
    assert rows[1]["user_name"] == "Unassigned"
    assert rows[1]["total"] == 1

    everything = {r["user_name"]: r for r in svc.wa_workload(db, active_only=False)}
    assert everything["Unassigned"]["total"] == 2
    assert everything["Unassigned"]["submitted"] == 1
