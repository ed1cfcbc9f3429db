from __future__ import annotations

import logging
import uuid
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from .config import load_yaml, save_yaml
from .errors import RecordNotFound, StoreError
from .models import (
    Assembly,
    Division,
    EquipmentCatalogueEntry,
    EquipmentFactor,
    EstimateDetailItem,
    EstimateElement,
    EstimateStructure,
    LabourCatalogueEntry,
    LabourFactor,
    LibraryItem,
    LibraryItemPath,
    LibraryUsageRecord,
    MaterialCatalogueEntry,
    MaterialFactor,
    Project,
    ProjectRates,
    Section,
)


logger = logging.getLogger(__name__)

TABLES: Dict[str, Type[BaseModel]] = {
    "divisions": Division,
    "sections": Section,
    "assemblies": Assembly,
    "library_items": LibraryItem,
    "materials_catalogue": MaterialCatalogueEntry,
    "labour_catalogue": LabourCatalogueEntry,
    "equipment_catalogue": EquipmentCatalogueEntry,
    "material_factors": MaterialFactor,
    "labour_factors": LabourFactor,
    "equipment_factors": EquipmentFactor,
    "projects": Project,
    "project_rates": ProjectRates,
    "estimate_structures": EstimateStructure,
    "estimate_elements": EstimateElement,
    "estimate_detail_items": EstimateDetailItem,
    "library_usage": LibraryUsageRecord,
}

CATALOGUE_TABLES = {
    "materials": "materials_catalogue",
    "labour": "labour_catalogue",
    "equipment": "equipment_catalogue",
}

_ID_PREFIX = {
    "divisions": "div",
    "sections": "sec",
    "assemblies": "asm",
    "library_items": "item",
    "project_rates": "rates",
    "estimate_elements": "el",
    "estimate_detail_items": "detail",
    "library_usage": "usage",
}


class LibraryStore:
    """In-memory record store standing in for the hosted estimating database.

    Tables are plain lists of pydantic records keyed by ``id``. A store is
    loaded from a YAML dataset (one list of mappings per table) and can be
    written back with :meth:`save`.
    """

    def __init__(self, data: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self._tables: Dict[str, List[BaseModel]] = {name: [] for name in TABLES}
        for name, rows in (data or {}).items():
            model = TABLES.get(name)
            if model is None:
                raise StoreError(f"Unknown table: {name}")
            try:
                self._tables[name] = [model(**row) for row in rows or []]
            except ValidationError as e:
                raise StoreError(f"Invalid rows in {name}: {e}") from e

    @classmethod
    def from_yaml(cls, path: Path) -> "LibraryStore":
        path = Path(path)
        if not path.exists():
            raise StoreError(f"Dataset not found: {path}")
        return cls(load_yaml(path))

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            name: [r.model_dump(mode="json", exclude_none=True) for r in rows]
            for name, rows in self._tables.items()
            if rows
        }

    def save(self, path: Path) -> None:
        save_yaml(Path(path), self.to_dict())
        logger.debug("Saved store to %s", path)

    # -- generic access ---------------------------------------------------------

    def rows(self, table: str) -> List[Any]:
        try:
            return list(self._tables[table])
        except KeyError:
            raise StoreError(f"Unknown table: {table}") from None

    def get(self, table: str, record_id: str) -> Any:
        for row in self.rows(table):
            if row.id == record_id:
                return row
        raise RecordNotFound(table, record_id)

    def find(self, table: str, **criteria: Any) -> List[Any]:
        return [r for r in self.rows(table) if all(getattr(r, k) == v for k, v in criteria.items())]

    def insert(self, table: str, **fields: Any) -> Any:
        model = TABLES.get(table)
        if model is None:
            raise StoreError(f"Unknown table: {table}")
        if "id" in model.model_fields and not fields.get("id"):
            fields["id"] = f"{_ID_PREFIX.get(table, table)}-{uuid.uuid4().hex[:12]}"
        try:
            record = model(**fields)
        except ValidationError as e:
            raise StoreError(f"Invalid {table} record: {e}") from e
        self._tables[table].append(record)
        return record

    def update(self, table: str, record_id: str, **fields: Any) -> Any:
        rows = self._tables[table]
        for idx, row in enumerate(rows):
            if row.id == record_id:
                try:
                    updated = type(row)(**{**row.model_dump(), **fields})
                except ValidationError as e:
                    raise StoreError(f"Invalid {table} update: {e}") from e
                rows[idx] = updated
                return updated
        raise RecordNotFound(table, record_id)

    def snapshot(self) -> Dict[str, List[BaseModel]]:
        """Copy of every table, for :meth:`restore` after a failed multi-step write."""
        return {name: list(rows) for name, rows in self._tables.items()}

    def restore(self, snapshot: Dict[str, List[BaseModel]]) -> None:
        self._tables = {name: list(rows) for name, rows in snapshot.items()}

    def delete_where(self, table: str, **criteria: Any) -> int:
        keep = [r for r in self.rows(table) if not all(getattr(r, k) == v for k, v in criteria.items())]
        removed = len(self._tables[table]) - len(keep)
        self._tables[table] = keep
        return removed

    # -- library ------------------------------------------------------------------

    def get_library_item(self, item_id: str) -> LibraryItem:
        return self.get("library_items", item_id)

    def find_library_item_by_code(self, code: str) -> Optional[LibraryItem]:
        found = self.find("library_items", code=code)
        return found[0] if found else None

    def get_library_item_path(self, item_id: str) -> LibraryItemPath:
        item = self.get_library_item(item_id)
        if not item.assembly_id:
            raise RecordNotFound("assemblies", f"<none for item {item_id}>")
        assembly = self.get("assemblies", item.assembly_id)
        section = self.get("sections", assembly.section_id)
        division = self.get("divisions", section.division_id)
        return LibraryItemPath(item=item, assembly=assembly, section=section, division=division)

    def factor_count(self, item_id: str) -> int:
        return sum(
            len(self.find(table, library_item_id=item_id))
            for table in ("material_factors", "labour_factors", "equipment_factors")
        )

    def catalogue_entry(self, category: str, code: str) -> Optional[Any]:
        found = self.find(CATALOGUE_TABLES[category], code=code)
        return found[0] if found else None

    def _joined(self, factor_table: str, catalogue_table: str, fk: str, item_id: str) -> List[Tuple[Any, Any]]:
        catalogue = {c.id: c for c in self.rows(catalogue_table)}
        return [(f, catalogue.get(getattr(f, fk))) for f in self.find(factor_table, library_item_id=item_id)]

    def material_factors(self, item_id: str) -> List[Tuple[MaterialFactor, Optional[MaterialCatalogueEntry]]]:
        return self._joined("material_factors", "materials_catalogue", "material_catalogue_id", item_id)

    def labour_factors(self, item_id: str) -> List[Tuple[LabourFactor, Optional[LabourCatalogueEntry]]]:
        return self._joined("labour_factors", "labour_catalogue", "labour_catalogue_id", item_id)

    def equipment_factors(self, item_id: str) -> List[Tuple[EquipmentFactor, Optional[EquipmentCatalogueEntry]]]:
        return self._joined("equipment_factors", "equipment_catalogue", "equipment_catalogue_id", item_id)

    # -- projects and rates ----------------------------------------------------------

    def project_name(self, project_id: str) -> str:
        found = self.find("projects", id=project_id)
        return found[0].name if found else ""

    def project_rates(self, project_id: str) -> List[ProjectRates]:
        """Rate records for a project, most recent first (later inserts win ties)."""
        ordered = sorted(
            enumerate(self.find("project_rates", project_id=project_id)),
            key=lambda pair: (pair[1].effective_date, pair[0]),
            reverse=True,
        )
        return [record for _, record in ordered]

    def insert_project_rates(self, rates: ProjectRates) -> ProjectRates:
        return self.insert("project_rates", **rates.model_dump(exclude={"id"}))

    def delete_project_rates(self, project_id: str, effective_date: date) -> int:
        return self.delete_where("project_rates", project_id=project_id, effective_date=effective_date)

    # -- estimates -------------------------------------------------------------------

    def next_order_index(self, element_id: str) -> int:
        indexes = [d.order_index or 0 for d in self.find("estimate_detail_items", element_id=element_id)]
        return max(indexes) + 1 if indexes else 1

    def insert_usage(self, records: List[LibraryUsageRecord]) -> List[LibraryUsageRecord]:
        return [self.insert("library_usage", **r.model_dump(exclude={"id"})) for r in records]
