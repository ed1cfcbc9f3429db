from __future__ import annotations

import io
from typing import Any, List, Sequence

from openpyxl import Workbook
from openpyxl.styles import Font


_BOLD = Font(bold=True)


def _sheet(wb: Workbook, title: str, headers: Sequence[str], rows: List[List[Any]], total_label: str, total: float):
    ws = wb.create_sheet(title)
    ws.append(list(headers))
    for cell in ws[1]:
        cell.font = _BOLD
    for r in rows:
        ws.append(r)
    ws.append([])
    ws.append([total_label] + [None] * (len(headers) - 2) + [round(total, 2)])
    ws.cell(row=ws.max_row, column=1).font = _BOLD
    for col, header in zip(ws.columns, headers):
        width = max([len(str(header))] + [len(str(c.value)) for c in col if c.value is not None])
        ws.column_dimensions[col[0].column_letter].width = min(width + 2, 60)
    ws.freeze_panes = "A2"
    return ws


def render_xlsx(bundle) -> bytes:
    """One worksheet per included schedule plus a Summary sheet."""
    wb = Workbook()
    summary_ws = wb.active
    summary_ws.title = "Summary"
    summary = bundle.summary

    if bundle.materials:
        _sheet(
            wb,
            "Materials",
            ["Code", "Name", "Category", "Unit", "Base Qty", "Wastage %", "Qty incl. Wastage", "Rate", "Total Cost"],
            [
                [
                    m.material_code,
                    m.material_name,
                    m.material_category or "",
                    m.material_unit,
                    round(m.base_quantity, 3),
                    round((m.wastage_factor - 1) * 100.0, 2),
                    round(m.total_quantity_with_wastage, 3),
                    m.unit_rate_market,
                    round(m.total_amount_market, 2),
                ]
                for m in bundle.materials
            ],
            "Total Material Cost",
            summary.materials.total_cost,
        )
    if bundle.labour:
        _sheet(
            wb,
            "Labour",
            ["Code", "Name", "Trade", "Skill", "Raw Hours", "Productivity", "Adjusted Hours", "Days", "Rate", "Total Cost"],
            [
                [
                    r.labour_code,
                    r.labour_name,
                    r.labour_trade or "",
                    r.skill_level or "",
                    round(r.total_hours_raw, 2),
                    r.productivity_factor,
                    round(r.adjusted_hours, 2),
                    r.total_days,
                    r.rate_standard,
                    round(r.total_amount_standard, 2),
                ]
                for r in bundle.labour
            ],
            "Total Labour Cost",
            summary.labour.total_cost,
        )
    if bundle.equipment:
        _sheet(
            wb,
            "Equipment",
            ["Code", "Name", "Category", "Capacity", "Base Hours", "Utilization", "Billable Hours", "Days", "Rate", "Total Cost"],
            [
                [
                    r.equipment_code,
                    r.equipment_name,
                    r.equipment_category or "",
                    r.capacity or "",
                    round(r.base_hours, 2),
                    r.utilization_factor,
                    round(r.billable_hours, 2),
                    r.total_days,
                    r.rate_rental,
                    round(r.total_amount_rental, 2),
                ]
                for r in bundle.equipment
            ],
            "Total Equipment Cost",
            summary.equipment.total_cost,
        )

    summary_ws.append(["Project", bundle.project_id])
    summary_ws.append([])
    summary_ws.append(["Category", "Total Cost"])
    for cell in summary_ws[3]:
        cell.font = _BOLD
    summary_ws.append(["Materials", round(summary.materials.total_cost, 2)])
    summary_ws.append(["Labour", round(summary.labour.total_cost, 2)])
    summary_ws.append(["Equipment", round(summary.equipment.total_cost, 2)])
    summary_ws.append(["Grand Total", round(summary.grand_total, 2)])
    summary_ws.cell(row=summary_ws.max_row, column=1).font = _BOLD
    summary_ws.column_dimensions["A"].width = 18
    summary_ws.column_dimensions["B"].width = 18

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
