from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

import pandas as pd

from ..models import EquipmentScheduleItem, LabourScheduleItem, MaterialScheduleItem, Settings


def _library_lines(store, project_id: str, structure_id: Optional[str], label_length: int) -> List[Dict[str, Any]]:
    """Estimate detail lines that came from the library, optionally for one structure."""
    elements = {e.id: e for e in store.rows("estimate_elements")}
    lines: List[Dict[str, Any]] = []
    for d in store.rows("estimate_detail_items"):
        if d.project_id != project_id or not d.is_from_library or not d.library_item_id:
            continue
        if structure_id:
            el = elements.get(d.element_id)
            if el is None or el.structure_id != structure_id:
                continue
        lines.append(
            {
                "detail_id": d.id,
                "library_item_id": d.library_item_id,
                "quantity": float(d.quantity or 0.0),
                "label": f"{d.library_code or ''} - {(d.name or '')[:label_length]}",
            }
        )
    return lines


def _group(rows: List[Dict[str, Any]], key: str, sums: List[str], mean: str) -> pd.DataFrame:
    df = pd.DataFrame(rows)
    agg = {f"{c}_sum": (c, "sum") for c in sums}
    agg[f"{mean}_mean"] = (mean, "mean")
    agg["source_item_count"] = ("detail_id", "nunique")
    grouped = df.groupby(key, sort=False).agg(**agg)
    grouped["source_items"] = df.groupby(key, sort=False)["label"].unique().map(lambda v: sorted(set(v)))
    return grouped


def _days(hours: float, hours_per_day: float) -> int:
    if hours <= 0 or hours_per_day <= 0:
        return 0
    return int(math.ceil(hours / hours_per_day))


def material_schedule(
    store, project_id: str, structure_id: Optional[str] = None, settings: Optional[Settings] = None
) -> List[MaterialScheduleItem]:
    """Project material quantities summed over every library-sourced estimate line.

    Wastage is applied per factor; ``wastage_factor`` reports the average
    wastage across contributing factors as a multiplier.
    """
    settings = settings or Settings()
    rows: List[Dict[str, Any]] = []
    catalogue: Dict[str, Any] = {}
    for line in _library_lines(store, project_id, structure_id, settings.source_label_length):
        for factor, mat in store.material_factors(line["library_item_id"]):
            if mat is None:
                continue
            catalogue[mat.id] = mat
            wastage = float(factor.wastage_percentage or 0.0)
            base = line["quantity"] * float(factor.quantity_per_unit or 0.0)
            rows.append(
                {
                    "material_id": mat.id,
                    "detail_id": line["detail_id"],
                    "label": line["label"],
                    "base": base,
                    "with_wastage": base * (1 + wastage / 100.0),
                    "wastage": wastage,
                }
            )
    if not rows:
        return []

    grouped = _group(rows, "material_id", ["base", "with_wastage"], "wastage")
    project_name = store.project_name(project_id)
    out: List[MaterialScheduleItem] = []
    for material_id, agg in grouped.iterrows():
        total_qty = float(agg["with_wastage_sum"])
        if total_qty <= 0:
            continue
        mat = catalogue[material_id]
        out.append(
            MaterialScheduleItem(
                project_id=project_id,
                project_name=project_name,
                material_id=mat.id,
                material_code=mat.code,
                material_name=mat.name,
                material_unit=mat.unit,
                material_category=mat.category,
                base_quantity=float(agg["base_sum"]),
                wastage_factor=1 + float(agg["wastage_mean"]) / 100.0,
                total_quantity_with_wastage=total_qty,
                unit_rate_market=mat.rate,
                total_amount_market=mat.rate * total_qty,
                source_items=list(agg["source_items"]),
                source_item_count=int(agg["source_item_count"]),
            )
        )
    out.sort(key=lambda i: (i.material_category or "", i.material_name))
    return out


def labour_schedule(
    store, project_id: str, structure_id: Optional[str] = None, settings: Optional[Settings] = None
) -> List[LabourScheduleItem]:
    settings = settings or Settings()
    rows: List[Dict[str, Any]] = []
    catalogue: Dict[str, Any] = {}
    for line in _library_lines(store, project_id, structure_id, settings.source_label_length):
        for factor, lab in store.labour_factors(line["library_item_id"]):
            if lab is None:
                continue
            catalogue[lab.id] = lab
            pf = factor.productivity_factor
            rows.append(
                {
                    "labour_id": lab.id,
                    "detail_id": line["detail_id"],
                    "label": line["label"],
                    "hours": line["quantity"] * float(factor.hours_per_unit or 0.0),
                    "productivity": float(pf if pf is not None else settings.default_productivity_factor),
                }
            )
    if not rows:
        return []

    grouped = _group(rows, "labour_id", ["hours"], "productivity")
    project_name = store.project_name(project_id)
    out: List[LabourScheduleItem] = []
    for labour_id, agg in grouped.iterrows():
        raw = float(agg["hours_sum"])
        if raw <= 0:
            continue
        lab = catalogue[labour_id]
        pf = float(agg["productivity_mean"])
        adjusted = raw / pf if pf > 0 else raw
        out.append(
            LabourScheduleItem(
                project_id=project_id,
                project_name=project_name,
                labour_id=lab.id,
                labour_code=lab.code,
                labour_name=lab.name,
                labour_trade=lab.trade,
                skill_level=lab.skill_level,
                total_hours_raw=raw,
                productivity_factor=pf,
                adjusted_hours=adjusted,
                rate_standard=lab.rate,
                total_amount_standard=adjusted * lab.rate,
                total_days=_days(adjusted, settings.hours_per_day),
                source_items=list(agg["source_items"]),
                source_item_count=int(agg["source_item_count"]),
            )
        )
    # trade ascending, skill level descending (missing first), then name
    out.sort(key=lambda i: i.labour_name)
    out.sort(key=lambda i: (i.skill_level is None, i.skill_level or ""), reverse=True)
    out.sort(key=lambda i: i.labour_trade or "")
    return out


def equipment_schedule(
    store, project_id: str, structure_id: Optional[str] = None, settings: Optional[Settings] = None
) -> List[EquipmentScheduleItem]:
    settings = settings or Settings()
    rows: List[Dict[str, Any]] = []
    catalogue: Dict[str, Any] = {}
    for line in _library_lines(store, project_id, structure_id, settings.source_label_length):
        for factor, eq in store.equipment_factors(line["library_item_id"]):
            if eq is None:
                continue
            catalogue[eq.id] = eq
            uf = factor.utilization_factor
            rows.append(
                {
                    "equipment_id": eq.id,
                    "detail_id": line["detail_id"],
                    "label": line["label"],
                    "hours": line["quantity"] * float(factor.hours_per_unit or 0.0),
                    "utilization": float(uf if uf is not None else settings.default_utilization_factor),
                }
            )
    if not rows:
        return []

    grouped = _group(rows, "equipment_id", ["hours"], "utilization")
    project_name = store.project_name(project_id)
    out: List[EquipmentScheduleItem] = []
    for equipment_id, agg in grouped.iterrows():
        base = float(agg["hours_sum"])
        if base <= 0:
            continue
        eq = catalogue[equipment_id]
        uf = float(agg["utilization_mean"])
        billable = base / uf if uf > 0 else base
        out.append(
            EquipmentScheduleItem(
                project_id=project_id,
                project_name=project_name,
                equipment_id=eq.id,
                equipment_code=eq.code,
                equipment_name=eq.name,
                equipment_category=eq.category,
                capacity=eq.capacity,
                base_hours=base,
                utilization_factor=uf,
                billable_hours=billable,
                rate_rental=eq.rate,
                total_amount_rental=billable * eq.rate,
                total_days=_days(billable, settings.hours_per_day),
                source_items=list(agg["source_items"]),
                source_item_count=int(agg["source_item_count"]),
            )
        )
    out.sort(key=lambda i: (i.equipment_category or "", i.equipment_name))
    return out
