from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from ..errors import LibraryImportError, StoreError
from ..models import LibraryImportResult, LibraryImportRowError, LibraryImportSkip
from ..utils import to_float


logger = logging.getLogger(__name__)

COLUMNS = [
    "Division_Code",
    "Division_Name",
    "Division_Description",
    "Section_Code",
    "Section_Name",
    "Section_Description",
    "Assembly_Code",
    "Assembly_Name",
    "Assembly_Description",
    "Item_Code",
    "Item_Name",
    "Item_Description",
    "Item_Unit",
    "Item_Specifications",
    "Item_Wastage_Percentage",
]

_KEY_COLUMNS = [
    "Division_Code", "Division_Name", "Section_Code", "Section_Name",
    "Assembly_Code", "Assembly_Name", "Item_Code", "Item_Name",
]


def _cell(x) -> str:
    if x is None or (isinstance(x, float) and pd.isna(x)):
        return ""
    return str(x).strip()


def read_rows(path: Path) -> List[Dict[str, str]]:
    """First sheet, header row skipped, columns taken by position."""
    try:
        df = pd.read_excel(path, sheet_name=0, header=None, dtype=object)
    except (OSError, ValueError) as e:
        raise LibraryImportError(f"Could not read workbook {path}: {e}") from e

    rows: List[Dict[str, str]] = []
    for values in df.iloc[1:].itertuples(index=False):
        values = list(values) + [None] * (len(COLUMNS) - len(values))
        row = {col: _cell(v) for col, v in zip(COLUMNS, values)}
        if any(row[c] for c in _KEY_COLUMNS):
            rows.append(row)
    return rows


def _parent_code(code: str) -> str:
    return code.rsplit(".", 1)[0] if "." in code else ""


def _validate(row: Dict[str, str], row_no: int, result: LibraryImportResult) -> None:
    def err(msg: str) -> None:
        result.errors.append(LibraryImportRowError(row=row_no, message=msg))

    for level in ("Division", "Section", "Assembly", "Item"):
        if row[f"{level}_Code"] and not row[f"{level}_Name"]:
            err(f"{level} name is required when {level.lower()} code is provided")
        if row[f"{level}_Name"] and not row[f"{level}_Code"]:
            err(f"{level} code is required when {level.lower()} name is provided")
    if row["Item_Code"] and not row["Assembly_Code"]:
        err("Item requires an assembly")
    wastage = row["Item_Wastage_Percentage"].rstrip("%").strip()
    if wastage:
        try:
            value = float(wastage)
        except ValueError:
            err(f"Invalid wastage percentage: {row['Item_Wastage_Percentage']}")
        else:
            if not 0 <= value <= 100:
                err(f"Wastage percentage must be between 0 and 100: {wastage}")


_LEVELS = [
    # level, table, parent table, parent key
    ("Division", "divisions", None, None),
    ("Section", "sections", "divisions", "division_id"),
    ("Assembly", "assemblies", "sections", "section_id"),
]


def import_library(store, path: Path) -> LibraryImportResult:
    """Create missing divisions, sections, assemblies and items from a workbook.

    Every row is validated first; any validation error aborts the import
    without touching the store. A row that fails while writing rolls back
    the rows written before it. Records whose code already exists are
    reused and reported as skipped.
    """
    rows = read_rows(path)
    result = LibraryImportResult()
    if not rows:
        raise LibraryImportError("No valid data found in the file")

    seen_items: Dict[str, int] = {}
    for idx, row in enumerate(rows):
        row_no = idx + 2
        _validate(row, row_no, result)
        code = row["Item_Code"]
        if code:
            if code in seen_items:
                result.errors.append(
                    LibraryImportRowError(row=0, message=f"Duplicate codes in file: {code} (rows {seen_items[code]}, {row_no})")
                )
            seen_items.setdefault(code, row_no)
    if result.errors:
        return result

    before = store.snapshot()
    try:
        _write_rows(store, rows, result)
    except StoreError:
        store.restore(before)
        raise
    if result.errors:
        store.restore(before)
        result.created = {k: 0 for k in result.created}
        logger.warning("Library import from %s rolled back: %d error(s)", path, len(result.errors))
        return result

    result.success = True
    logger.info("Library import from %s: created %s, %d skipped", path, result.created, len(result.skipped))
    return result


def _write_rows(store, rows: List[Dict[str, str]], result: LibraryImportResult) -> None:
    ids: Dict[str, Dict[str, str]] = {table: {} for _, table, _, _ in _LEVELS}

    for idx, row in enumerate(rows):
        row_no = idx + 2
        parent_id: Optional[str] = None
        failed = False
        for level, table, parent_table, parent_fk in _LEVELS:
            code = row[f"{level}_Code"]
            if not code:
                parent_id = None
                continue
            fields = {
                "code": code,
                "name": row[f"{level}_Name"],
                "description": row[f"{level}_Description"] or None,
            }
            if parent_table:
                if parent_id is None:
                    parent_code = _parent_code(code)
                    parent_id = ids[parent_table].get(parent_code) or _existing_id(store, parent_table, parent_code)
                if parent_id is None:
                    result.errors.append(
                        LibraryImportRowError(row=row_no, message=f"Cannot determine parent for {level.lower()} {code}")
                    )
                    failed = True
                    break
                fields[parent_fk] = parent_id

            if code in ids[table]:
                parent_id = ids[table][code]
                continue
            existing = _existing_id(store, table, code)
            if existing:
                ids[table][code] = parent_id = existing
                result.skipped.append(LibraryImportSkip(row=row_no, reason=f"{level} already exists", code=code))
                continue
            record = store.insert(table, **fields)
            ids[table][code] = parent_id = record.id
            result.created[table] += 1
        if failed or not row["Item_Code"]:
            continue

        code = row["Item_Code"]
        if store.find_library_item_by_code(code) is not None:
            result.skipped.append(LibraryImportSkip(row=row_no, reason="Item already exists", code=code))
            continue
        wastage = row["Item_Wastage_Percentage"].rstrip("%").strip()
        store.insert(
            "library_items",
            code=code,
            name=row["Item_Name"],
            description=row["Item_Description"] or None,
            unit=row["Item_Unit"],
            specifications=row["Item_Specifications"] or None,
            wastage_percentage=to_float(wastage) if wastage else None,
            assembly_id=parent_id,
            status="draft",
        )
        result.created["items"] += 1


def _existing_id(store, table: str, code: str) -> Optional[str]:
    if not code:
        return None
    found = store.find(table, code=code)
    return found[0].id if found else None
