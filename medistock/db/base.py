# medistock/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All MediStock tables (masters, QC, warehouse approvals, inventory) inherit from this."""
    pass


def enum_values(enum_cls):
    """Persist str-enums by value ("in_progress"), not by member name."""
    return [m.value for m in enum_cls]


# Import all models so metadata is complete for create_all()
from medistock.models import (  # noqa: F401,E402
    user,
    role,
    permission,
    masters,
    number_series,
    quality_control,
    warehouse_approval,
    inventory,
)
