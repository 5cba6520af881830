# medistock/models/number_series.py
from sqlalchemy import Column, Integer, String, UniqueConstraint

from medistock.db.base import Base


class DocNumberSeries(Base):
    """One counter row per (document key, YYYYMM); rows are locked while numbering."""
    __tablename__ = "doc_number_series"
    __table_args__ = (
        UniqueConstraint("key", "period_key", name="uq_doc_series_key_period"),
        {
            "mysql_engine": "InnoDB",
            "mysql_charset": "utf8mb4",
            "mysql_collate": "utf8mb4_unicode_ci",
        },
    )

    id = Column(Integer, primary_key=True)
    key = Column(String(20), nullable=False)
    period_key = Column(String(6), nullable=False)
    next_seq = Column(Integer, nullable=False, default=1)
