from __future__ import annotations

import pytest

from estimate_engine.errors import IntegrationError, LibraryStatusError, StoreError
from estimate_engine.logic.hierarchy import build_hierarchy
from estimate_engine.models import DetailItemLink, LibraryItemSelection


def _sel(item_id, qty=1.0):
    return LibraryItemSelection(library_item_id=item_id, quantity=qty)


def test_hierarchy_is_deduplicated(store):
    resolved = [
        (_sel(i), store.get_library_item_path(i)) for i in ("item-slab", "item-beam", "item-wall", "item-slab")
    ]
    h = build_hierarchy(resolved)
    assert list(h.divisions) == ["div-03", "div-04"]
    assert h.divisions["div-03"].section_ids == ["sec-30"]
    assert h.sections["sec-30"].assembly_ids == ["asm-slabs", "asm-beams"]
    assert len(h.assemblies["asm-slabs"].selections) == 2


def test_create_estimate_builds_elements_and_lines(integration, store):
    result = integration.create_estimate_from_library_items(
        "p1", "st1", [_sel("item-slab", 10), _sel("item-beam", 2), _sel("item-wall", 20), _sel("item-slab", 5)], "u1"
    )

    levels = [e.hierarchy_level for e in result.elements]
    assert levels == [2, 2, 3, 3, 4, 4, 4]
    assert [e.library_path for e in result.elements] == [
        "03", "04", "03.30", "04.20", "03.30.10", "03.30.20", "04.20.10",
    ]
    by_path = {e.library_path: e for e in result.elements}
    assert by_path["03.30"].parent_element_id == by_path["03"].id
    assert by_path["03.30.20"].parent_element_id == by_path["03.30"].id
    assert by_path["04.20.10"].library_division_id == "div-04"
    assert all(e.is_from_library and e.created_by == "u1" and e.structure_id == "st1" for e in result.elements)

    assert len(result.detail_items) == 4
    slab = result.detail_items[0]
    assert slab.element_id == by_path["03.30.10"].id
    assert slab.library_path == "03.30.10.CON-SLAB"
    assert slab.amount == pytest.approx(1590.0)
    assert slab.rate == pytest.approx(159.0)
    assert slab.rate_calculated == slab.rate
    assert set(slab.factor_breakdown) == {"materials", "labour", "equipment"}
    assert [d.order_index for d in result.detail_items if d.element_id == slab.element_id] == [1, 2]

    assert len(store.find("estimate_elements", project_id="p1")) == 7
    assert len(result.usage_records) == 4
    assert result.usage_records[0].user_id == "u1"
    assert result.errors == []


def test_invalid_selections_are_reported(integration):
    result = integration.create_estimate_from_library_items(
        "p1", "st1", [_sel("item-orphan"), _sel("missing"), _sel("item-wall", 3)]
    )
    assert [e.item_id for e in result.errors] == ["item-orphan", "missing"]
    assert len(result.detail_items) == 1
    assert len(result.elements) == 3


def test_no_valid_selection_raises(integration, store):
    with pytest.raises(IntegrationError, match="No valid library items selected"):
        integration.create_estimate_from_library_items("p1", "st1", [_sel("missing")])
    assert store.rows("estimate_elements") == []


def test_failed_line_is_skipped(integration, calculator, monkeypatch):
    real = calculator.calculate_item_cost

    def flaky(item_id, project_id, quantity=1, options=None):
        if item_id == "item-beam":
            raise StoreError("pricing failed")
        return real(item_id, project_id, quantity, options)

    monkeypatch.setattr(calculator, "calculate_item_cost", flaky)
    result = integration.create_estimate_from_library_items("p1", "st1", [_sel("item-slab"), _sel("item-beam")])
    assert [d.library_item_id for d in result.detail_items] == ["item-slab"]
    assert result.errors[0].item_code == "CON-BEAM"
    assert "pricing failed" in result.errors[0].error


def test_usage_tracking_failure_is_not_fatal(integration, store, monkeypatch):
    def boom(records):
        raise StoreError("usage table offline")

    monkeypatch.setattr(store, "insert_usage", boom)
    result = integration.create_estimate_from_library_items("p1", "st1", [_sel("item-wall")])
    assert result.usage_records == []
    assert len(result.detail_items) == 1


def test_new_lines_show_up_in_schedules(integration, schedules):
    assert schedules.get_material_schedule("p1") == []
    integration.create_estimate_from_library_items("p1", "st1", [_sel("item-wall", 4)])
    (block,) = schedules.get_material_schedule("p1")
    assert block.total_quantity_with_wastage == pytest.approx(50.0)


def test_link_existing_items(integration, store):
    manual = store.insert(
        "estimate_detail_items", project_id="p1", element_id="el-x", name="Blockwork", unit="m2", quantity=30, rate=60
    )
    linked = integration.link_existing_items_to_library(
        "p1",
        [
            DetailItemLink(detail_item_id=manual.id, library_item_id="item-wall"),
            DetailItemLink(detail_item_id=manual.id, library_item_id="missing"),
            DetailItemLink(detail_item_id="no-such-line", library_item_id="item-slab"),
        ],
    )
    assert len(linked) == 1
    line = store.get("estimate_detail_items", manual.id)
    assert line.is_from_library
    assert line.library_code == "MAS-WALL"
    assert line.library_path == "04.20.10.MAS-WALL"
    assert line.library_assembly_id == "asm-walls"
    assert line.rate_calculated == pytest.approx(65.0)
    assert line.rate == 60
    assert line.quantity == 30


def test_suggest_library_items(integration):
    matches = integration.suggest_library_items("190 block wall")
    assert matches[0][0].id == "item-wall"
    assert integration.suggest_library_items("MAS-WALL")[0] == (matches[0][0], 100)


def _draft_item(store, with_factor=True):
    item = store.insert(
        "library_items", code="MAS-RENDER", name="Rendered block wall", unit="m2", assembly_id="asm-walls", status="draft"
    )
    if with_factor:
        store.insert("labour_factors", library_item_id=item.id, labour_catalogue_id="lab-lab", hours_per_unit=0.4)
    return item


def test_item_status_workflow(integration, store):
    item = _draft_item(store)
    assert integration.suggest_library_items("rendered block wall")[0][0].id != item.id

    done = integration.mark_complete(item.id, "u1")
    assert done.status == "complete"

    confirmed = integration.confirm_library_item(item.id, "u2", notes="checked against supplier data")
    assert confirmed.status == "confirmed"
    assert confirmed.confirmed_by == "u2"
    assert confirmed.confirmation_notes == "checked against supplier data"
    assert confirmed.confirmed_at is not None
    assert store.get_library_item(item.id).status == "confirmed"
    assert integration.suggest_library_items("rendered block wall")[0][0].id == item.id


def test_status_changes_need_factors(integration, store):
    item = _draft_item(store, with_factor=False)
    with pytest.raises(LibraryStatusError, match="without any factors"):
        integration.mark_complete(item.id)
    assert store.get_library_item(item.id).status == "draft"


def test_status_changes_follow_order(integration, store):
    item = _draft_item(store)
    with pytest.raises(LibraryStatusError, match="complete status"):
        integration.confirm_library_item(item.id)
    with pytest.raises(LibraryStatusError, match="draft status"):
        integration.mark_complete("item-slab")


def test_confirm_rechecks_factors(integration, store):
    item = _draft_item(store)
    integration.mark_complete(item.id)
    store.delete_where("labour_factors", library_item_id=item.id)
    with pytest.raises(LibraryStatusError, match="without any factors"):
        integration.confirm_library_item(item.id)
