from medistock.models.quality_control import ItemQCStatus, QCResult
from medistock.models.warehouse_approval import StorageStatus, WAItemStatus
from medistock.services import status_rollup as r

P, F, N = ItemQCStatus.PASSED, ItemQCStatus.FAILED, ItemQCStatus.PENDING


def test_product_status_pending_until_first_decision():
    assert r.derive_product_status([N, N, N]) == QCResult.PENDING


def test_product_status_all_passed_and_all_failed():
    assert r.derive_product_status([P, P]) == QCResult.PASSED
    assert r.derive_product_status([F, F]) == QCResult.FAILED


def test_product_status_mixed_or_partly_decided_is_partial_pass():
    assert r.derive_product_status([P, F]) == QCResult.PARTIAL_PASS
    assert r.derive_product_status([P, N]) == QCResult.PARTIAL_PASS
    assert r.derive_product_status([F, N]) == QCResult.PARTIAL_PASS


def test_product_status_accepts_raw_values():
    assert r.derive_product_status(["passed", "passed"]) == QCResult.PASSED


def test_count_item_results():
    assert r.count_item_results([P, P, F, N]) == (2, 1)


def test_summarize_reasons_counts_decided_items_only():
    summary = r.summarize_reasons([
        (P, []),
        (F, ["damaged_packaging", "expired"]),
        (F, ["damaged_packaging"]),
        (F, []),
        (N, ["other"]),
    ])
    assert summary == {
        "damaged_packaging": 2,
        "expired": 1,
        "received_correctly": 2,
    }


def test_overall_result():
    assert r.derive_overall_result([]) == QCResult.PENDING
    assert r.derive_overall_result([QCResult.PASSED, QCResult.PENDING]) == QCResult.PENDING
    assert r.derive_overall_result([QCResult.PASSED, QCResult.PASSED]) == QCResult.PASSED
    assert r.derive_overall_result([QCResult.FAILED, QCResult.FAILED]) == QCResult.FAILED
    assert r.derive_overall_result([QCResult.PASSED, QCResult.FAILED]) == QCResult.PARTIAL_PASS
    assert r.derive_overall_result([QCResult.PARTIAL_PASS]) == QCResult.PARTIAL_PASS


def test_inspection_complete():
    assert r.is_inspection_complete([P, F])
    assert not r.is_inspection_complete([P, N])


def test_storage_status():
    S, W = WAItemStatus.STORED, WAItemStatus.PENDING
    assert r.derive_storage_status([]) == StorageStatus.PENDING
    assert r.derive_storage_status([W, W]) == StorageStatus.PENDING
    assert r.derive_storage_status([S, W]) == StorageStatus.PARTIAL
    assert r.derive_storage_status([S, S]) == StorageStatus.STORED
