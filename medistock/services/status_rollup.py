# FILE: medistock/services/status_rollup.py
"""
Pure derivations for QC / warehouse-approval aggregates.

Every mutation of an item calls into here; nothing else writes
passed_qty / failed_qty / overall_status / overall_result / storage_status.
"""
from __future__ import annotations

from collections import Counter
from typing import Dict, Iterable, List, Optional, Tuple

from medistock.models.quality_control import QCResult, ItemQCStatus, QCStatus, QCReason
from medistock.models.warehouse_approval import StorageStatus, WAItemStatus, WAStatus


def _val(x) -> str:
    return getattr(x, "value", x)


def derive_product_status(item_statuses: Iterable) -> QCResult:
    """
    pending      -> no item decided yet
    passed       -> every item passed
    failed       -> every item failed
    partial_pass -> anything else (mixed, or some still pending)
    """
    statuses = [_val(s) for s in item_statuses]
    decided = [s for s in statuses if s != ItemQCStatus.PENDING.value]
    if not decided:
        return QCResult.PENDING
    if len(decided) == len(statuses):
        if all(s == ItemQCStatus.PASSED.value for s in statuses):
            return QCResult.PASSED
        if all(s == ItemQCStatus.FAILED.value for s in statuses):
            return QCResult.FAILED
    return QCResult.PARTIAL_PASS


def count_item_results(item_statuses: Iterable) -> Tuple[int, int]:
    """(passed, failed)"""
    c = Counter(_val(s) for s in item_statuses)
    return c[ItemQCStatus.PASSED.value], c[ItemQCStatus.FAILED.value]


def summarize_reasons(items: Iterable[Tuple[object, Optional[List[str]]]]) -> Dict[str, int]:
    """
    qc_summary for one product: decided items only. A passed item, or a
    failed one without reasons, counts as received_correctly.
    """
    c: Counter = Counter()
    for status, reasons in items:
        s = _val(status)
        if s == ItemQCStatus.PENDING.value:
            continue
        if s == ItemQCStatus.PASSED.value or not reasons:
            c[QCReason.RECEIVED_CORRECTLY.value] += 1
            continue
        for r in reasons:
            c[_val(r)] += 1
    return dict(sorted(c.items()))


def derive_overall_result(product_statuses: Iterable) -> QCResult:
    statuses = [_val(s) for s in product_statuses]
    if not statuses or any(s == QCResult.PENDING.value for s in statuses):
        return QCResult.PENDING
    if all(s == QCResult.PASSED.value for s in statuses):
        return QCResult.PASSED
    if all(s == QCResult.FAILED.value for s in statuses):
        return QCResult.FAILED
    return QCResult.PARTIAL_PASS


def is_inspection_complete(item_statuses: Iterable) -> bool:
    return all(_val(s) != ItemQCStatus.PENDING.value for s in item_statuses)


def derive_storage_status(item_statuses: Iterable) -> StorageStatus:
    statuses = [_val(s) for s in item_statuses]
    stored = sum(1 for s in statuses if s == WAItemStatus.STORED.value)
    if statuses and stored == len(statuses):
        return StorageStatus.STORED
    if stored:
        return StorageStatus.PARTIAL
    return StorageStatus.PENDING


# -------------------------
# ORM-level refreshers
# -------------------------
def refresh_qc_product(p) -> None:
    statuses = [i.status for i in p.items]
    p.passed_qty, p.failed_qty = count_item_results(statuses)
    p.overall_status = derive_product_status(statuses)
    p.qc_summary = summarize_reasons((i.status, i.qc_reasons) for i in p.items)


def refresh_qc_record(qc) -> None:
    for p in qc.products:
        refresh_qc_product(p)
    qc.overall_result = derive_overall_result(p.overall_status for p in qc.products)


def advance_qc_on_entry(qc) -> None:
    if _val(qc.status) == QCStatus.PENDING.value:
        qc.status = QCStatus.IN_PROGRESS


def refresh_wa_product(p) -> None:
    statuses = [i.status for i in p.items]
    p.stored_qty = sum(1 for s in statuses if _val(s) == WAItemStatus.STORED.value)
    p.storage_status = derive_storage_status(statuses)


def refresh_wa_record(wa) -> None:
    for p in wa.products:
        refresh_wa_product(p)


def advance_wa_on_entry(wa) -> None:
    if _val(wa.status) == WAStatus.PENDING.value:
        wa.status = WAStatus.IN_PROGRESS
