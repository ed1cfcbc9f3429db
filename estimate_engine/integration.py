from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from .cache import CacheManager, cache_keys
from .calculators.factors import FactorCalculator
from .errors import EstimateEngineError, IntegrationError, LibraryStatusError
from .logic.hierarchy import Hierarchy, build_hierarchy
from .models import (
    DetailItemLink,
    EstimateCreationError,
    EstimateCreationResult,
    EstimateDetailItem,
    EstimateElement,
    LibraryItem,
    LibraryItemPath,
    LibraryItemSelection,
    LibraryUsageRecord,
)
from .normalize.library import match_library_items


logger = logging.getLogger(__name__)

DIVISION_LEVEL = 2
SECTION_LEVEL = 3
ASSEMBLY_LEVEL = 4


class LibraryIntegrationService:
    """Turns library selections into estimate elements and priced detail lines."""

    def __init__(self, store, calculator: Optional[FactorCalculator] = None, cache: Optional[CacheManager] = None):
        self.store = store
        self.calculator = calculator or FactorCalculator(store)
        self.cache = cache or CacheManager()

    def create_estimate_from_library_items(
        self,
        project_id: str,
        structure_id: str,
        selections: Iterable[LibraryItemSelection],
        user_id: Optional[str] = None,
    ) -> EstimateCreationResult:
        result = EstimateCreationResult()
        valid = self._validate_selections(selections, result)
        if not valid:
            raise IntegrationError("No valid library items selected")

        hierarchy = build_hierarchy(valid)
        assembly_elements = self._create_elements(project_id, structure_id, hierarchy, user_id, result)

        for asm_id, node in hierarchy.assemblies.items():
            element = assembly_elements[asm_id]
            for selection, path in node.selections:
                try:
                    result.detail_items.append(self._create_detail_item(project_id, element, selection, path))
                except EstimateEngineError as e:
                    logger.exception("Error processing library item %s", path.item.id)
                    result.errors.append(
                        EstimateCreationError(
                            item_id=path.item.id, item_code=path.item.code, item_name=path.item.name, error=str(e)
                        )
                    )

        result.usage_records = self._track_usage(project_id, [s for s, _ in valid], user_id)
        self.cache.clear_pattern(cache_keys.project_schedules_pattern(project_id))
        logger.info(
            "Project %s: created %d element(s) and %d detail item(s) from %d selection(s)",
            project_id,
            len(result.elements),
            len(result.detail_items),
            len(valid),
        )
        return result

    def _validate_selections(
        self, selections: Iterable[LibraryItemSelection], result: EstimateCreationResult
    ) -> List[Tuple[LibraryItemSelection, LibraryItemPath]]:
        valid: List[Tuple[LibraryItemSelection, LibraryItemPath]] = []
        for selection in selections:
            try:
                valid.append((selection, self.store.get_library_item_path(selection.library_item_id)))
            except EstimateEngineError as e:
                logger.warning("Skipping library item %s: %s", selection.library_item_id, e)
                result.errors.append(EstimateCreationError(item_id=selection.library_item_id, error=str(e)))
        return valid

    def _create_elements(
        self,
        project_id: str,
        structure_id: str,
        hierarchy: Hierarchy,
        user_id: Optional[str],
        result: EstimateCreationResult,
    ) -> dict:
        common = dict(project_id=project_id, structure_id=structure_id, is_from_library=True, created_by=user_id)
        division_elements = {}
        section_elements = {}
        assembly_elements = {}

        for div_id, node in hierarchy.divisions.items():
            div = node.division
            division_elements[div_id] = self.store.insert(
                "estimate_elements",
                name=div.name,
                code=div.code,
                description=div.description,
                hierarchy_level=DIVISION_LEVEL,
                library_division_id=div_id,
                library_code=div.code,
                library_path=div.code,
                **common,
            )

        for sec_id, node in hierarchy.sections.items():
            sec = node.section
            parent: EstimateElement = division_elements[node.division_id]
            section_elements[sec_id] = self.store.insert(
                "estimate_elements",
                name=sec.name,
                code=sec.code,
                description=sec.description,
                hierarchy_level=SECTION_LEVEL,
                parent_element_id=parent.id,
                library_division_id=node.division_id,
                library_section_id=sec_id,
                library_code=sec.code,
                library_path=f"{parent.code}.{sec.code}",
                **common,
            )

        for asm_id, node in hierarchy.assemblies.items():
            asm = node.assembly
            parent = section_elements[node.section_id]
            assembly_elements[asm_id] = self.store.insert(
                "estimate_elements",
                name=asm.name,
                code=asm.code,
                description=asm.description,
                hierarchy_level=ASSEMBLY_LEVEL,
                parent_element_id=parent.id,
                library_division_id=parent.library_division_id,
                library_section_id=node.section_id,
                library_assembly_id=asm_id,
                library_code=asm.code,
                library_path=f"{parent.library_path}.{asm.code}",
                **common,
            )

        result.elements.extend(division_elements.values())
        result.elements.extend(section_elements.values())
        result.elements.extend(assembly_elements.values())
        return assembly_elements

    def _create_detail_item(
        self, project_id: str, element: EstimateElement, selection: LibraryItemSelection, path: LibraryItemPath
    ) -> EstimateDetailItem:
        item = path.item
        calc = self.calculator.calculate_item_cost(item.id, project_id, selection.quantity)
        return self.store.insert(
            "estimate_detail_items",
            project_id=project_id,
            element_id=element.id,
            name=item.name,
            unit=item.unit,
            quantity=selection.quantity,
            rate=calc.rate_per_unit,
            amount=calc.total_cost,
            library_item_id=item.id,
            library_division_id=path.division.id,
            library_section_id=path.section.id,
            library_assembly_id=path.assembly.id,
            library_code=item.code,
            library_path=path.path,
            is_from_library=True,
            rate_calculated=calc.rate_per_unit,
            factor_breakdown=calc.breakdown,
            order_index=self.store.next_order_index(element.id),
        )

    def _track_usage(
        self, project_id: str, selections: List[LibraryItemSelection], user_id: Optional[str]
    ) -> List[LibraryUsageRecord]:
        records = [
            LibraryUsageRecord(
                project_id=project_id,
                library_item_id=s.library_item_id,
                user_id=user_id,
                quantity=s.quantity or 1,
            )
            for s in selections
        ]
        try:
            return self.store.insert_usage(records)
        except EstimateEngineError:
            logger.exception("Error tracking library usage for project %s", project_id)
            return []

    def link_existing_items_to_library(
        self, project_id: str, mappings: Iterable[DetailItemLink]
    ) -> List[EstimateDetailItem]:
        linked: List[EstimateDetailItem] = []
        for m in mappings:
            try:
                path = self.store.get_library_item_path(m.library_item_id)
                calc = self.calculator.calculate_item_cost(m.library_item_id, project_id, 1)
                linked.append(
                    self.store.update(
                        "estimate_detail_items",
                        m.detail_item_id,
                        library_item_id=m.library_item_id,
                        library_division_id=path.division.id,
                        library_section_id=path.section.id,
                        library_assembly_id=path.assembly.id,
                        library_code=path.item.code,
                        library_path=path.path,
                        is_from_library=True,
                        rate_calculated=calc.rate_per_unit,
                        factor_breakdown=calc.breakdown,
                    )
                )
            except EstimateEngineError as e:
                logger.warning("Could not link detail item %s to %s: %s", m.detail_item_id, m.library_item_id, e)
        if linked:
            self.cache.clear_pattern(cache_keys.project_schedules_pattern(project_id))
        return linked

    def suggest_library_items(self, text: str, limit: int = 5) -> List[Tuple[LibraryItem, int]]:
        return match_library_items(text, self.store.rows("library_items"), limit=limit)

    # -- item status: draft -> complete -> confirmed ----------------------------

    def mark_complete(self, item_id: str, user_id: Optional[str] = None) -> LibraryItem:
        item = self.store.get_library_item(item_id)
        if item.status != "draft":
            raise LibraryStatusError(f"Item must be in draft status to mark as complete (current: {item.status})")
        if not self.store.factor_count(item_id):
            raise LibraryStatusError("Cannot mark item as complete without any factors")
        updated = self.store.update("library_items", item_id, status="complete")
        logger.info("Library item %s marked complete by %s", item.code, user_id or "unknown")
        return updated

    def confirm_library_item(
        self, item_id: str, user_id: Optional[str] = None, notes: Optional[str] = None
    ) -> LibraryItem:
        """Confirm a complete item so it can be suggested for estimates."""
        item = self.store.get_library_item(item_id)
        if item.status != "complete":
            raise LibraryStatusError(f"Item must be in complete status to confirm (current: {item.status})")
        if not self.store.factor_count(item_id):
            raise LibraryStatusError("Cannot confirm item without any factors")
        updated = self.store.update(
            "library_items",
            item_id,
            status="confirmed",
            confirmed_at=datetime.now(),
            confirmed_by=user_id,
            confirmation_notes=notes,
        )
        logger.info("Library item %s confirmed by %s", item.code, user_id or "unknown")
        return updated
