import re
from decimal import Decimal

import pytest

from medistock.core.rbac import ALLOW_ALL
from medistock.models.quality_control import (
    ItemQCStatus,
    QCPriority,
    QCReason,
    QCResult,
    QCStatus,
    QCType,
)
from medistock.models.warehouse_approval import WAStatus
from medistock.schemas.quality_control import (
    QCApproveIn,
    QCBulkItemRow,
    QCBulkItemsIn,
    QCCreateIn,
    QCEnvironmentIn,
    QCItemResultIn,
    QCProductIn,
    QCSubmitIn,
    QCUpdateIn,
)
from medistock.services import quality_control_service as svc
from medistock.services.errors import (
    BusinessRuleViolation,
    IncompleteInspection,
    InvalidStatusTransition,
    NotFoundError,
    NotSubmitted,
    ValidationError,
)
from medistock.services.unit_of_work import run_in_transaction

from conftest import approved_qc, make_qc


def _submit(db, user, qc_id, payload=None):
    return run_in_transaction(db, lambda: svc.submit_qc(
        db, qc_id, payload or QCSubmitIn(), user=user, authz=ALLOW_ALL))


def _approve(db, user, qc_id, payload=None):
    return run_in_transaction(db, lambda: svc.approve_qc(
        db, qc_id, payload or QCApproveIn(), user=user, authz=ALLOW_ALL))


def _reject(db, user, qc_id, reason="Cold chain broken"):
    return run_in_transaction(db, lambda: svc.reject_qc(
        db, qc_id, reason, user=user, authz=ALLOW_ALL))


def test_create_generates_pending_items_and_number(db, admin, product):
    payload = QCCreateIn(
        qc_type=QCType.URGENT,
        products=[QCProductIn(product_id=product.id, batch_no=" B-9 ", received_qty=4)],
    )
    qc = run_in_transaction(db, lambda: svc.create_qc(db, payload, user=admin, authz=ALLOW_ALL))

    assert re.fullmatch(r"QC-\d{6}-0001", qc.qc_number)
    assert qc.status == QCStatus.PENDING
    assert qc.overall_result == QCResult.PENDING
    assert qc.priority == QCPriority.MEDIUM

    line = qc.products[0]
    assert line.batch_no == "B-9"
    assert line.unit_cost == Decimal("12.50")
    assert [i.item_number for i in line.items] == [1, 2, 3, 4]
    assert all(i.status == ItemQCStatus.PENDING for i in line.items)


def test_numbers_are_sequential(db, admin, product):
    first = make_qc(db, admin, product)
    second = make_qc(db, admin, product)
    assert first.qc_number.endswith("-0001")
    assert second.qc_number.endswith("-0002")


def test_create_with_decided_items_starts_in_progress(db, admin, product):
    qc = make_qc(db, admin, product, passed=2, failed=1)
    assert qc.status == QCStatus.IN_PROGRESS
    line = qc.products[0]
    assert (line.passed_qty, line.failed_qty) == (2, 1)
    assert line.overall_status == QCResult.PARTIAL_PASS
    assert line.qc_summary == {"damaged_packaging": 1, "received_correctly": 2}


def test_create_unknown_product_reports_line(db, admin, product):
    payload = QCCreateIn(
        qc_type=QCType.STANDARD,
        products=[
            QCProductIn(product_id=product.id, batch_no="A", received_qty=1),
            QCProductIn(product_id=777, batch_no="B", received_qty=1),
        ],
    )
    with pytest.raises(ValidationError) as ei:
        svc.create_qc(db, payload, user=admin, authz=ALLOW_ALL)
    assert list(ei.value.details) == ["products[1].product_id"]


def test_item_count_must_match_received_qty(product):
    with pytest.raises(ValueError):
        QCProductIn(product_id=product.id, batch_no="A", received_qty=3,
                    items=[{"item_number": 1}, {"item_number": 2}])


def test_record_item_moves_to_in_progress_and_rolls_up(db, admin, product):
    qc = make_qc(db, admin, product, passed=0, pending=2)
    assert qc.status == QCStatus.PENDING

    qc, line, item = run_in_transaction(db, lambda: svc.record_item_result(
        db, qc.id, 0, 1,
        QCItemResultIn(status=ItemQCStatus.FAILED, qc_reasons=[QCReason.EXPIRED]),
        user=admin, authz=ALLOW_ALL))
    assert qc.status == QCStatus.IN_PROGRESS
    assert item.qc_by_id == admin.id
    assert item.qc_date is not None
    assert line.failed_qty == 1
    assert line.overall_status == QCResult.PARTIAL_PASS
    assert qc.overall_result == QCResult.PARTIAL_PASS


def test_record_item_bad_index(db, admin, product):
    qc = make_qc(db, admin, product, passed=1)
    with pytest.raises(NotFoundError):
        svc.record_item_result(db, qc.id, 0, 5, QCItemResultIn(status=ItemQCStatus.PASSED),
                               user=admin, authz=ALLOW_ALL)
    with pytest.raises(NotFoundError):
        svc.record_item_result(db, qc.id, 3, 0, QCItemResultIn(status=ItemQCStatus.PASSED),
                               user=admin, authz=ALLOW_ALL)


def test_record_item_results_batch(db, admin, product):
    qc = make_qc(db, admin, product, passed=0, pending=3)
    payload = QCBulkItemsIn(items=[
        QCBulkItemRow(item_index=0, status=ItemQCStatus.PASSED),
        QCBulkItemRow(item_index=1, status=ItemQCStatus.PASSED),
        QCBulkItemRow(item_index=2, status=ItemQCStatus.PASSED),
    ])
    qc = run_in_transaction(db, lambda: svc.record_item_results(
        db, qc.id, 0, payload, user=admin, authz=ALLOW_ALL))
    assert qc.products[0].overall_status == QCResult.PASSED
    assert qc.overall_result == QCResult.PASSED


def test_submit_requires_every_item_inspected(db, admin, product):
    qc = make_qc(db, admin, product, passed=2, pending=1)
    with pytest.raises(IncompleteInspection) as ei:
        _submit(db, admin, qc.id)
    assert ei.value.details == {"products": [1]}
    db.refresh(qc)
    assert qc.status == QCStatus.IN_PROGRESS


def test_submit_from_pending_is_refused(db, admin, product):
    qc = make_qc(db, admin, product, passed=0, pending=1)
    with pytest.raises(IncompleteInspection):
        _submit(db, admin, qc.id)


def test_submit_stamps_inspector_and_environment(db, admin, product):
    qc = make_qc(db, admin, product, passed=2)
    env = QCEnvironmentIn(temperature=Decimal("22.5"), humidity=Decimal("45"), light_condition="normal")
    qc = _submit(db, admin, qc.id, QCSubmitIn(remarks="all good", environment=env))
    assert qc.status == QCStatus.PENDING_APPROVAL
    assert qc.qc_by_id == admin.id
    assert qc.qc_remarks == "all good"
    assert qc.qc_humidity == Decimal("45")

    with pytest.raises(InvalidStatusTransition, match="already submitted"):
        _submit(db, admin, qc.id)


def test_items_frozen_after_submit(db, admin, product):
    qc = make_qc(db, admin, product, passed=1)
    _submit(db, admin, qc.id)
    with pytest.raises(InvalidStatusTransition):
        svc.record_item_result(db, qc.id, 0, 0, QCItemResultIn(status=ItemQCStatus.FAILED),
                               user=admin, authz=ALLOW_ALL)


def test_approve_requires_submission(db, admin, product):
    qc = make_qc(db, admin, product, passed=1)
    with pytest.raises(NotSubmitted):
        _approve(db, admin, qc.id)


def test_approve_and_double_approve(db, admin, product):
    qc = make_qc(db, admin, product, passed=1)
    _submit(db, admin, qc.id)
    qc, wa = _approve(db, admin, qc.id, QCApproveIn(remarks="ok"))
    assert wa is None
    assert qc.status == QCStatus.COMPLETED
    assert qc.approved_by_id == admin.id
    assert qc.approval_date is not None

    with pytest.raises(NotSubmitted, match="already approved"):
        _approve(db, admin, qc.id)


def test_approve_with_warehouse_opens_storage_stage(db, admin, product, warehouse):
    qc = make_qc(db, admin, product, passed=2, failed=1)
    _submit(db, admin, qc.id)
    qc, wa = _approve(db, admin, qc.id, QCApproveIn(warehouse_id=warehouse.id))
    assert wa is not None
    assert wa.status == WAStatus.PENDING
    assert wa.quality_control_id == qc.id
    assert len(wa.products[0].items) == 2


def test_reject_requires_reason_and_allows_resubmission(db, admin, product):
    qc = make_qc(db, admin, product, passed=1)
    _submit(db, admin, qc.id)

    with pytest.raises(ValidationError) as ei:
        _reject(db, admin, qc.id, reason="  ")
    assert "reason" in ei.value.details

    qc = _reject(db, admin, qc.id)
    assert qc.status == QCStatus.REJECTED
    assert qc.rejection_reason == "Cold chain broken"

    qc = _submit(db, admin, qc.id)
    assert qc.status == QCStatus.PENDING_APPROVAL


def test_reject_only_when_pending_approval(db, admin, product):
    qc = make_qc(db, admin, product, passed=1)
    with pytest.raises(NotSubmitted):
        _reject(db, admin, qc.id)


def test_update_routes_status_through_transitions(db, admin, product):
    qc = make_qc(db, admin, product, passed=0, pending=1)
    qc = run_in_transaction(db, lambda: svc.update_qc(
        db, qc.id, QCUpdateIn(status=QCStatus.IN_PROGRESS, priority=QCPriority.HIGH),
        user=admin, authz=ALLOW_ALL))
    assert qc.status == QCStatus.IN_PROGRESS
    assert qc.priority == QCPriority.HIGH

    with pytest.raises(IncompleteInspection):
        run_in_transaction(db, lambda: svc.update_qc(
            db, qc.id, QCUpdateIn(status=QCStatus.PENDING_APPROVAL), user=admin, authz=ALLOW_ALL))

    with pytest.raises(InvalidStatusTransition):
        run_in_transaction(db, lambda: svc.update_qc(
            db, qc.id, QCUpdateIn(status=QCStatus.PENDING), user=admin, authz=ALLOW_ALL))


def test_update_refused_on_completed_record(db, admin, product):
    qc = make_qc(db, admin, product, passed=1)
    _submit(db, admin, qc.id)
    _approve(db, admin, qc.id)
    with pytest.raises(BusinessRuleViolation):
        run_in_transaction(db, lambda: svc.update_qc(
            db, qc.id, QCUpdateIn(qc_remarks="late edit"), user=admin, authz=ALLOW_ALL))


def test_restating_terminal_status_is_refused(db, admin, product):
    qc = approved_qc(db, admin, product, passed=1)
    with pytest.raises(InvalidStatusTransition, match="already 'completed'"):
        run_in_transaction(db, lambda: svc.update_qc(
            db, qc.id, QCUpdateIn(status=QCStatus.COMPLETED), user=admin, authz=ALLOW_ALL))
    db.refresh(qc)
    assert qc.status == QCStatus.COMPLETED


def test_restating_open_status_is_a_no_op(db, admin, product):
    qc = make_qc(db, admin, product, passed=1, pending=1)
    qc = run_in_transaction(db, lambda: svc.update_qc(
        db, qc.id, QCUpdateIn(status=QCStatus.IN_PROGRESS), user=admin, authz=ALLOW_ALL))
    assert qc.status == QCStatus.IN_PROGRESS
    qc = run_in_transaction(db, lambda: svc.update_qc(
        db, qc.id, QCUpdateIn(status=QCStatus.IN_PROGRESS), user=admin, authz=ALLOW_ALL))
    assert qc.status == QCStatus.IN_PROGRESS


def test_version_moves_with_every_write(db, admin, product):
    qc = make_qc(db, admin, product, passed=0, pending=1)
    v0 = qc.version
    run_in_transaction(db, lambda: svc.record_item_result(
        db, qc.id, 0, 0, QCItemResultIn(status=ItemQCStatus.PASSED), user=admin, authz=ALLOW_ALL))
    db.refresh(qc)
    assert qc.version > v0


def test_assign_only_open_records(db, admin, inspector, product):
    qc = make_qc(db, admin, product, passed=1)
    svc.assign_qc(db, qc, inspector.id, QCPriority.URGENT, admin)
    assert qc.assigned_to_id == inspector.id
    assert qc.priority == QCPriority.URGENT
    db.commit()

    _submit(db, admin, qc.id)
    with pytest.raises(InvalidStatusTransition):
        svc.assign_qc(db, qc, inspector.id, None, admin)


def test_list_statistics_and_workload(db, admin, inspector, product):
    make_qc(db, admin, product, passed=1, assigned_to_id=inspector.id)
    make_qc(db, admin, product, passed=0, pending=1, priority=QCPriority.HIGH)
    done = make_qc(db, admin, product, passed=1)
    _submit(db, admin, done.id)
    _approve(db, admin, done.id)

    rows, total = svc.list_qc(db, status=QCStatus.COMPLETED)
    assert total == 1 and rows[0].id == done.id

    rows, total = svc.list_qc(db, search="INV-10", limit=2)
    assert total == 3 and len(rows) == 2

    stats = svc.qc_statistics(db)
    assert stats["total"] == 3
    assert {"key": "completed", "count": 1} in stats["status_breakdown"]
    assert stats["result_breakdown"] == [{"key": "passed", "count": 1}]

    load = {r["assigned_to_id"]: r for r in svc.qc_workload(db)}
    assert load[inspector.id]["in_progress"] == 1
    assert load[None]["user_name"] == "Unassigned"
    assert load[None]["high_priority"] == 1
