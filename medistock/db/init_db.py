# medistock/db/init_db.py
from __future__ import annotations

import argparse
import logging

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medistock.core.log_config import configure_logging
from medistock.db.session import engine
from medistock.db.base import Base
from medistock.models.permission import Permission

logger = logging.getLogger(__name__)

MODULES = [
    ("masters", ["view", "manage"]),
    ("qc", ["view", "create", "update", "inspect", "submit", "approve", "assign"]),
    ("warehouse_approvals", ["view", "create", "update", "store", "submit", "approve", "assign"]),
    ("inventory", ["view", "create", "update", "adjust", "reserve", "release", "transfer", "utilize"]),
]


def seed_permissions(db: Session) -> int:
    """
    Seed ONLY missing permission codes; safe to run multiple times.
    Returns the number of codes inserted.
    """
    existing = {c for (c,) in db.query(Permission.code).all()}
    added = 0
    for module, actions in MODULES:
        for action in actions:
            code = f"{module}.{action}"
            if code in existing:
                continue
            existing.add(code)
            label = f"{module.replace('_', ' ').title()} - {action.title()}"
            db.add(Permission(code=code, label=label, module=module))
            added += 1
    db.flush()
    return added


def run(fresh: bool = False, bind=None) -> None:
    bind = bind or engine
    if fresh:
        logger.warning("Dropping ALL tables (dev only)")
        Base.metadata.drop_all(bind=bind)

    logger.info("Creating all missing tables")
    Base.metadata.create_all(bind=bind)
    logger.info("Tables: %s", sorted(inspect(bind).get_table_names()))

    try:
        with Session(bind) as db:
            added = seed_permissions(db)
            db.commit()
            logger.info("Permissions seeded (%s new codes)", added)
    except SQLAlchemyError:
        logger.exception("Seeding failed")
        raise


if __name__ == "__main__":
    configure_logging()
    parser = argparse.ArgumentParser(
        description="Initialize DB (create tables, seed permissions).")
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Drop & recreate all tables (DEV ONLY).",
    )
    args = parser.parse_args()
    run(fresh=args.fresh)
