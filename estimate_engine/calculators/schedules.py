from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..cache import CacheManager, cache_keys
from ..errors import EstimateEngineError, ExportFormatError
from ..logic import schedule_views
from ..models import (
    EquipmentCategoryTotal,
    EquipmentScheduleItem,
    EquipmentSummary,
    LabourScheduleItem,
    LabourSummary,
    MaterialCategoryTotal,
    MaterialScheduleItem,
    MaterialSummary,
    ScheduleSummary,
    Settings,
    TradeTotal,
)


logger = logging.getLogger(__name__)

SCHEDULE_TYPES = ("material", "labour", "equipment", "all")


@dataclass
class ScheduleExport:
    content: bytes
    media_type: str
    filename: str


@dataclass
class ScheduleBundle:
    """Schedules selected for an export plus the project summary."""

    project_id: str
    schedule_type: str
    materials: List[MaterialScheduleItem]
    labour: List[LabourScheduleItem]
    equipment: List[EquipmentScheduleItem]
    summary: ScheduleSummary


class ScheduleAggregator:
    def __init__(self, store, cache: Optional[CacheManager] = None, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or Settings()
        self.cache = cache or CacheManager(default_ttl=self.settings.default_cache_ttl_seconds)

    def _cached(self, kind: str, project_id: str, structure_id: Optional[str], view: Callable) -> list:
        key = cache_keys.project_schedules(project_id, f"{kind}:{structure_id or 'all'}")
        cached = self.cache.get(key)
        if cached is not None:
            return list(cached)
        try:
            rows = view(self.store, project_id, structure_id, self.settings)
        except EstimateEngineError:
            logger.exception("Error getting %s schedule for project %s", kind, project_id)
            return []
        self.cache.set(key, tuple(rows), self.settings.schedule_cache_ttl_seconds)
        return rows

    def get_material_schedule(self, project_id: str, structure_id: Optional[str] = None) -> List[MaterialScheduleItem]:
        return self._cached("materials", project_id, structure_id, schedule_views.material_schedule)

    def get_labour_schedule(self, project_id: str, structure_id: Optional[str] = None) -> List[LabourScheduleItem]:
        return self._cached("labour", project_id, structure_id, schedule_views.labour_schedule)

    def get_equipment_schedule(
        self, project_id: str, structure_id: Optional[str] = None
    ) -> List[EquipmentScheduleItem]:
        return self._cached("equipment", project_id, structure_id, schedule_views.equipment_schedule)

    def get_schedule_summary(self, project_id: str, structure_id: Optional[str] = None) -> ScheduleSummary:
        materials = self.get_material_schedule(project_id, structure_id)
        labour = self.get_labour_schedule(project_id, structure_id)
        equipment = self.get_equipment_schedule(project_id, structure_id)

        mat = MaterialSummary(total_items=len(materials))
        for m in materials:
            bucket = mat.by_category.setdefault(m.material_category or "Uncategorized", MaterialCategoryTotal())
            bucket.items += 1
            bucket.cost += m.total_amount_market
            mat.total_cost += m.total_amount_market

        lab = LabourSummary()
        for row in labour:
            bucket = lab.by_trade.setdefault(row.labour_trade or "General", TradeTotal())
            bucket.hours += row.adjusted_hours
            bucket.cost += row.total_amount_standard
            bucket.workers += 1
            lab.total_hours += row.adjusted_hours
            lab.total_days += row.total_days
            lab.total_cost += row.total_amount_standard

        eq = EquipmentSummary()
        for row in equipment:
            bucket = eq.by_category.setdefault(row.equipment_category or "General", EquipmentCategoryTotal())
            bucket.hours += row.billable_hours
            bucket.cost += row.total_amount_rental
            bucket.units += 1
            eq.total_hours += row.billable_hours
            eq.total_days += row.total_days
            eq.total_cost += row.total_amount_rental

        return ScheduleSummary(
            materials=mat,
            labour=lab,
            equipment=eq,
            grand_total=mat.total_cost + lab.total_cost + eq.total_cost,
        )

    def collect(self, project_id: str, schedule_type: str = "all") -> ScheduleBundle:
        if schedule_type not in SCHEDULE_TYPES:
            raise ValueError(f"Unsupported schedule type: {schedule_type}")
        wants = lambda kind: schedule_type in (kind, "all")  # noqa: E731
        return ScheduleBundle(
            project_id=project_id,
            schedule_type=schedule_type,
            materials=self.get_material_schedule(project_id) if wants("material") else [],
            labour=self.get_labour_schedule(project_id) if wants("labour") else [],
            equipment=self.get_equipment_schedule(project_id) if wants("equipment") else [],
            summary=self.get_schedule_summary(project_id),
        )

    def export_schedule(self, project_id: str, fmt: str, schedule_type: str = "all") -> ScheduleExport:
        # Lazy imports per format (openpyxl, jinja2)
        if fmt == "csv":
            from ..output.exporters.schedule_csv import render_csv

            content, media_type, ext = render_csv(self.collect(project_id, schedule_type)), "text/csv", "csv"
        elif fmt == "excel":
            from ..output.exporters.schedule_xlsx import render_xlsx

            content = render_xlsx(self.collect(project_id, schedule_type))
            media_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
            ext = "xlsx"
        elif fmt == "pdf":
            from ..output.exporters.schedule_text import render_summary_text

            content = render_summary_text(self.get_schedule_summary(project_id))
            media_type, ext = "application/pdf", "pdf"
        elif fmt == "html":
            from ..output.exporters.html import render_schedule_html

            content = render_schedule_html(self.collect(project_id, schedule_type), self.settings)
            media_type, ext = "text/html", "html"
        else:
            raise ExportFormatError(f"Unsupported export format: {fmt}")
        filename = f"{project_id}-{schedule_type}-schedule.{ext}"
        return ScheduleExport(content=content, media_type=media_type, filename=filename)

    def refresh_schedule_cache(self, project_id: str) -> int:
        dropped = self.cache.clear_pattern(cache_keys.project_schedules_pattern(project_id))
        logger.info("Refreshed schedule cache for project %s (%d entries dropped)", project_id, dropped)
        return dropped
