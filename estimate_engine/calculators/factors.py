from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import EstimateEngineError
from ..models import (
    BulkItemRequest,
    EquipmentCost,
    EquipmentFactorLine,
    FactorCalculationOptions,
    FactorCalculationResult,
    LabourCost,
    LabourFactorLine,
    MaterialCost,
    MaterialFactorLine,
    ProjectRates,
    RateSource,
)
from ..utils import safe_divide
from .rates import ProjectRatesService


logger = logging.getLogger(__name__)


def resolve_rate(overrides: Dict[str, float], code: str, catalogue_id: str, default: Optional[float]) -> Tuple[float, RateSource]:
    """Project override (by code, then catalogue id) else catalogue default else 0."""
    for key in (code, catalogue_id):
        if key and overrides.get(key) is not None:
            return float(overrides[key]), "project"
    if default is not None:
        return float(default), "catalog"
    return 0.0, "default"


def _round(value: float, places: Optional[int]) -> float:
    return round(value, places) if places is not None else value


class FactorCalculator:
    """Prices a library item from its material, labour and equipment factors.

    A failed library item lookup propagates. Rates and factor rows only
    enrich the result: failures there are logged and fall back to empty
    overrides or a zero-cost category.
    """

    def __init__(self, store, rates: Optional[ProjectRatesService] = None):
        self.store = store
        self.rates = rates or ProjectRatesService(store)

    def calculate_item_cost(
        self,
        library_item_id: str,
        project_id: str,
        quantity: float = 1,
        options: Optional[FactorCalculationOptions] = None,
    ) -> FactorCalculationResult:
        opts = options or FactorCalculationOptions()
        try:
            item = self.store.get_library_item(library_item_id)
        except EstimateEngineError:
            logger.exception("Error calculating item cost for %s", library_item_id)
            raise

        rates = self._project_rates(project_id) if opts.use_project_rates else ProjectRates(project_id=project_id)
        materials = self._material_cost(library_item_id, quantity, rates, opts)
        labour = self._labour_cost(library_item_id, quantity, rates, opts)
        equipment = self._equipment_cost(library_item_id, quantity, rates, opts)

        total = materials.total + labour.total + equipment.total
        return FactorCalculationResult(
            library_item_id=library_item_id,
            library_item_code=item.code,
            library_item_name=item.name,
            quantity=quantity,
            unit=item.unit,
            materials=materials,
            labour=labour,
            equipment=equipment,
            total_cost=total,
            rate_per_unit=_round(safe_divide(total, quantity), opts.round_to_decimals),
        )

    def calculate_bulk_item_costs(
        self, items: Iterable[BulkItemRequest], project_id: str
    ) -> List[FactorCalculationResult]:
        return [self.calculate_item_cost(i.library_item_id, project_id, i.quantity) for i in items]

    def preview_calculation(
        self,
        library_item_id: str,
        project_id: str,
        quantity: float = 1,
        options: Optional[FactorCalculationOptions] = None,
    ) -> FactorCalculationResult:
        return self.calculate_item_cost(library_item_id, project_id, quantity, options)

    def _project_rates(self, project_id: str) -> ProjectRates:
        try:
            return self.rates.get_current_rates(project_id)
        except EstimateEngineError:
            logger.exception("Error getting project rates for %s", project_id)
            return ProjectRates(project_id=project_id)

    def _material_cost(
        self, item_id: str, quantity: float, rates: ProjectRates, opts: FactorCalculationOptions
    ) -> MaterialCost:
        try:
            rows = self.store.material_factors(item_id)
        except EstimateEngineError:
            logger.exception("Error calculating material cost for %s", item_id)
            return MaterialCost()

        out = MaterialCost()
        for factor, mat in rows:
            wastage = float(factor.wastage_percentage or 0.0)
            multiplier = 1 + wastage / 100.0 if opts.include_wastage else 1.0
            effective = quantity * float(factor.quantity_per_unit or 0.0) * multiplier
            code = mat.code if mat else ""
            rate, source = resolve_rate(rates.materials, code, factor.material_catalogue_id, mat.rate if mat else None)
            cost = _round(effective * rate, opts.round_to_decimals)
            out.factors.append(
                MaterialFactorLine(
                    material_id=factor.material_catalogue_id,
                    material_code=code,
                    material_name=mat.name if mat else "",
                    quantity=float(factor.quantity_per_unit or 0.0),
                    wastage_percentage=wastage,
                    effective_quantity=effective,
                    rate=rate,
                    rate_source=source,
                    cost=cost,
                    unit=factor.unit or (mat.unit if mat else ""),
                )
            )
            out.total += cost
        return out

    def _labour_cost(
        self, item_id: str, quantity: float, rates: ProjectRates, opts: FactorCalculationOptions
    ) -> LabourCost:
        try:
            rows = self.store.labour_factors(item_id)
        except EstimateEngineError:
            logger.exception("Error calculating labour cost for %s", item_id)
            return LabourCost()

        out = LabourCost()
        for factor, lab in rows:
            productivity = 1.0
            if opts.include_productivity and factor.productivity_factor:
                productivity = float(factor.productivity_factor)
            hours = float(factor.hours_per_unit or 0.0)
            effective = quantity * hours / productivity
            code = lab.code if lab else ""
            rate, source = resolve_rate(rates.labour, code, factor.labour_catalogue_id, lab.rate if lab else None)
            cost = _round(effective * rate, opts.round_to_decimals)
            out.factors.append(
                LabourFactorLine(
                    labour_id=factor.labour_catalogue_id,
                    labour_code=code,
                    labour_name=lab.name if lab else "",
                    hours=hours,
                    productivity_factor=productivity,
                    effective_hours=effective,
                    rate=rate,
                    rate_source=source,
                    cost=cost,
                )
            )
            out.total += cost
        return out

    def _equipment_cost(
        self, item_id: str, quantity: float, rates: ProjectRates, opts: FactorCalculationOptions
    ) -> EquipmentCost:
        try:
            rows = self.store.equipment_factors(item_id)
        except EstimateEngineError:
            logger.exception("Error calculating equipment cost for %s", item_id)
            return EquipmentCost()

        out = EquipmentCost()
        for factor, eq in rows:
            utilization = 1.0
            if opts.include_utilization and factor.utilization_factor:
                utilization = float(factor.utilization_factor)
            hours = float(factor.hours_per_unit or 0.0)
            effective = quantity * hours / utilization
            code = eq.code if eq else ""
            rate, source = resolve_rate(
                rates.equipment, code, factor.equipment_catalogue_id, eq.rate if eq else None
            )
            cost = _round(effective * rate, opts.round_to_decimals)
            out.factors.append(
                EquipmentFactorLine(
                    equipment_id=factor.equipment_catalogue_id,
                    equipment_code=code,
                    equipment_name=eq.name if eq else "",
                    hours=hours,
                    utilization_factor=utilization,
                    effective_hours=effective,
                    rate=rate,
                    rate_source=source,
                    cost=cost,
                )
            )
            out.total += cost
        return out
