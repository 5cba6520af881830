# FILE: medistock/services/bulk_ops.py
"""
Apply one update to many records, each in its own savepoint.

There is no cross-record atomicity: a failing id is rolled back to its
savepoint and reported, the rest go through. The caller commits once.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from medistock.services.errors import WorkflowError, EmptyIdList

logger = logging.getLogger(__name__)


class BulkTarget(NamedTuple):
    """find_by_id(db, id) -> record; apply_update(db, record, payload) -> None"""
    name: str
    find_by_id: Callable[[Session, int], Any]
    apply_update: Callable[[Session, Any, Any], Any]


def _unique(ids: Iterable[int]) -> List[int]:
    seen = set()
    out = []
    for i in ids:
        if i not in seen:
            seen.add(i)
            out.append(i)
    return out


def run_bulk(db: Session, ids: Optional[Iterable[int]], target: BulkTarget, payload: Any) -> Dict[str, Any]:
    ids = _unique(ids or [])
    if not ids:
        raise EmptyIdList("At least one id is required")

    results: List[Dict[str, Any]] = []
    for rid in ids:
        try:
            with db.begin_nested():
                record = target.find_by_id(db, rid)
                target.apply_update(db, record, payload)
            results.append({"id": rid, "success": True})
        except WorkflowError as e:
            results.append({"id": rid, "success": False, "error": e.message})
        except (IntegrityError, StaleDataError) as e:
            logger.warning("Bulk %s: id=%s failed on write: %s", target.name, rid, e)
            results.append({"id": rid, "success": False, "error": "Concurrent or conflicting update; retry"})

    updated = sum(1 for r in results if r["success"])
    failed = len(results) - updated
    logger.info("Bulk %s: %s updated, %s failed", target.name, updated, failed)
    return {"updated": updated, "failed": failed, "results": results}


def bulk_status_code(result: Dict[str, Any]) -> int:
    """200 all succeeded, 207 mixed, 400 all failed."""
    if result["failed"] == 0:
        return 200
    if result["updated"] == 0:
        return 400
    return 207
