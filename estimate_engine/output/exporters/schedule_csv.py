from __future__ import annotations

import csv
import io
from typing import Any, List


def _total_row(label: str, value: float) -> List[Any]:
    # value sits under the "Total Cost" column
    return [label, "", "", "", "", "", round(value, 2)]


def render_csv(bundle) -> bytes:
    """CSV export: title, header, rows, then a total per non-empty schedule."""
    buf = io.StringIO()
    w = csv.writer(buf, lineterminator="\n")
    summary = bundle.summary

    if bundle.materials:
        w.writerow(["MATERIAL SCHEDULE"])
        w.writerow(["Code", "Name", "Unit", "Quantity", "Wastage %", "Rate", "Total Cost"])
        for m in bundle.materials:
            w.writerow([
                m.material_code,
                m.material_name,
                m.material_unit,
                round(m.total_quantity_with_wastage, 3),
                round((m.wastage_factor - 1) * 100.0, 2),
                m.unit_rate_market,
                round(m.total_amount_market, 2),
            ])
        w.writerow([])
        w.writerow(_total_row("Total Material Cost:", summary.materials.total_cost))
        w.writerow([])

    if bundle.labour:
        w.writerow(["LABOUR SCHEDULE"])
        w.writerow(["Code", "Name", "Trade", "Hours", "Productivity", "Rate", "Total Cost"])
        for row in bundle.labour:
            w.writerow([
                row.labour_code,
                row.labour_name,
                row.labour_trade or "",
                round(row.adjusted_hours, 2),
                row.productivity_factor,
                row.rate_standard,
                round(row.total_amount_standard, 2),
            ])
        w.writerow([])
        w.writerow(_total_row("Total Labour Cost:", summary.labour.total_cost))
        w.writerow([])

    if bundle.equipment:
        w.writerow(["EQUIPMENT SCHEDULE"])
        w.writerow(["Code", "Name", "Type", "Hours", "Utilization", "Rate", "Total Cost"])
        for row in bundle.equipment:
            w.writerow([
                row.equipment_code,
                row.equipment_name,
                row.equipment_category or "",
                round(row.billable_hours, 2),
                row.utilization_factor,
                row.rate_rental,
                round(row.total_amount_rental, 2),
            ])
        w.writerow([])
        w.writerow(_total_row("Total Equipment Cost:", summary.equipment.total_cost))
        w.writerow([])

    if bundle.schedule_type == "all":
        w.writerow(_total_row("GRAND TOTAL:", summary.grand_total))

    return buf.getvalue().encode("utf-8")
