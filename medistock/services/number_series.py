# FILE: medistock/services/number_series.py
from __future__ import annotations

from datetime import date
from typing import Optional

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from medistock.models.number_series import DocNumberSeries
from medistock.utils.timezone import period_key


def _lock_series(db: Session, key: str, pk: str) -> Optional[DocNumberSeries]:
    return (
        db.query(DocNumberSeries)
        .filter(DocNumberSeries.key == key, DocNumberSeries.period_key == pk)
        .with_for_update()
        .first()
    )


def next_document_number(
    db: Session,
    key: str,            # "QC", "WA"
    doc_date: Optional[date] = None,
    pad: int = 4,
) -> str:
    """
    Concurrency-safe monthly sequence.

    Example: QC-202501-0001
    """
    pk = period_key(doc_date)

    row = _lock_series(db, key, pk)
    if not row:
        # Two first-of-month writers race on the insert; the loser re-reads the winner's row.
        try:
            with db.begin_nested():
                row = DocNumberSeries(key=key, period_key=pk, next_seq=1)
                db.add(row)
                db.flush()
        except IntegrityError:
            row = _lock_series(db, key, pk)
            if not row:
                raise

    seq = int(row.next_seq or 1)
    row.next_seq = seq + 1
    db.flush()

    return f"{key}-{pk}-{seq:0{pad}d}"
