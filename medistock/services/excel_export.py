from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter


def _money(x) -> float:
    return float(Decimal(str(x or "0")))


def build_valuation_excel(fp, valuation: Dict[str, Any]) -> None:
    """Inventory valuation by warehouse (output of inventory_ledger.inventory_valuation)."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Valuation"

    headers = [
        "Warehouse ID", "Warehouse", "Records", "Quantity",
        "Total Value", "Available Value", "Reserved Value",
    ]
    ws.append(headers)
    for c in ws[1]:
        c.font = Font(bold=True)

    for w in valuation.get("warehouses", []):
        ws.append([
            w.get("warehouse_id"),
            w.get("warehouse_name") or "",
            w.get("records", 0),
            w.get("quantity", 0),
            _money(w.get("total_value")),
            _money(w.get("available_value")),
            _money(w.get("reserved_value")),
        ])

    t = valuation.get("totals") or {}
    ws.append([
        "", "TOTAL", t.get("records", 0), t.get("quantity", 0),
        _money(t.get("total_value")), _money(t.get("available_value")), _money(t.get("reserved_value")),
    ])
    for c in ws[ws.max_row]:
        c.font = Font(bold=True)

    for col in range(1, len(headers) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 18

    wb.save(fp)
