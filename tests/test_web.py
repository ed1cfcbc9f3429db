from __future__ import annotations

import io

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook

from estimate_engine.models import Settings
from estimate_engine.store import LibraryStore
from estimate_engine.web.app import create_app


@pytest.fixture
def client(store):
    return TestClient(create_app(store=store, settings=Settings()))


def _build_estimate(client):
    r = client.post(
        "/api/projects/p1/estimate",
        json={
            "structure_id": "st1",
            "selections": [
                {"library_item_id": "item-slab", "quantity": 10},
                {"library_item_id": "item-wall", "quantity": 20},
            ],
            "user_id": "u1",
        },
    )
    assert r.status_code == 200
    return r.json()


def test_item_cost(client):
    r = client.get("/api/library/items/item-slab/cost", params={"project_id": "p1", "quantity": 10})
    assert r.status_code == 200
    body = r.json()
    assert body["total_cost"] == pytest.approx(1590.0)
    assert body["summary"]["total_cost"] == pytest.approx(1590.0)
    assert body["materials"]["factors"][0]["rate_source"] == "catalog"


def test_item_cost_zero_quantity_serialises(client):
    r = client.get("/api/library/items/item-slab/cost", params={"project_id": "p1", "quantity": 0})
    assert r.status_code == 200
    assert r.json()["rate_per_unit"] is None


def test_unknown_item_is_404(client):
    r = client.get("/api/library/items/nope/cost", params={"project_id": "p1"})
    assert r.status_code == 404


def test_bulk_costs(client):
    r = client.post(
        "/api/projects/p1/costs",
        json=[{"library_item_id": "item-wall", "quantity": 2}, {"library_item_id": "item-slab"}],
    )
    assert r.status_code == 200
    assert [x["library_item_code"] for x in r.json()] == ["MAS-WALL", "CON-SLAB"]


def test_estimate_then_schedules(client):
    created = _build_estimate(client)
    assert len(created["detail_items"]) == 2
    assert created["detail_items"][0]["library_path"] == "03.30.10.CON-SLAB"

    materials = client.get("/api/projects/p1/schedules/materials").json()
    assert [m["material_code"] for m in materials] == ["CONC", "BLOCK"]

    summary = client.get("/api/projects/p1/schedules/summary").json()
    assert summary["grand_total"] == pytest.approx(
        summary["materials"]["total_cost"] + summary["labour"]["total_cost"] + summary["equipment"]["total_cost"]
    )


def test_estimate_with_nothing_valid_is_400(client):
    r = client.post("/api/projects/p1/estimate", json={"structure_id": "st1", "selections": [{"library_item_id": "x"}]})
    assert r.status_code == 400


def test_unknown_schedule_kind(client):
    assert client.get("/api/projects/p1/schedules/tools").status_code == 404


def test_schedule_exports(client):
    _build_estimate(client)

    r = client.get("/api/projects/p1/schedules/export", params={"format": "csv", "type": "material"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert 'filename="p1-material-schedule.csv"' in r.headers["content-disposition"]
    assert r.text.startswith("MATERIAL SCHEDULE")

    r = client.get("/api/projects/p1/schedules/export")
    wb = load_workbook(io.BytesIO(r.content))
    assert "Summary" in wb.sheetnames

    assert client.get("/api/projects/p1/schedules/export", params={"format": "docx"}).status_code == 400
    assert client.get("/api/projects/p1/schedules/export", params={"type": "tools"}).status_code == 400


def test_schedule_page(client):
    _build_estimate(client)
    r = client.get("/projects/p1/schedules")
    assert r.status_code == 200
    assert "Material Schedule" in r.text


def test_refresh_drops_cached_schedules(client):
    client.get("/api/projects/p1/schedules/materials")
    client.get("/api/projects/p1/schedules/labour")
    assert client.post("/api/projects/p1/schedules/refresh").json() == {"dropped": 2}


def test_rates_roundtrip(client):
    r = client.put("/api/projects/p1/rates", json={"materials": {"CONC": 120}, "effective_date": "2024-01-01"})
    assert r.status_code == 200
    assert client.get("/api/projects/p1/rates").json()["materials"] == {"CONC": 120.0}

    cost = client.get("/api/library/items/item-slab/cost", params={"project_id": "p1", "quantity": 10}).json()
    assert cost["materials"]["factors"][0]["rate"] == 120.0

    stats = client.get("/api/projects/p1/rates/statistics").json()
    assert stats["total_rates"] == 1


def test_invalid_rates_are_400(client):
    r = client.put("/api/projects/p1/rates", json={"labour": {"L-CONC": -5}})
    assert r.status_code == 400
    assert r.json()["errors"] == ["labour:L-CONC rate must not be negative"]


def test_library_search(client):
    r = client.get("/api/library/search", params={"q": "block wall"})
    assert r.status_code == 200
    assert r.json()[0]["item"]["code"] == "MAS-WALL"


def test_link_items(client, store):
    line = store.insert("estimate_detail_items", project_id="p1", element_id="el-x", name="Slab", quantity=5)
    r = client.post(
        "/api/projects/p1/estimate/link",
        json=[{"detail_item_id": line.id, "library_item_id": "item-slab"}],
    )
    assert r.status_code == 200
    assert r.json()[0]["library_code"] == "CON-SLAB"


def test_writes_are_saved_to_dataset(store, dataset):
    client = TestClient(create_app(store=store, settings=Settings(), data_path=dataset))
    _build_estimate(client)
    reloaded = LibraryStore.from_yaml(dataset)
    assert len(reloaded.rows("estimate_detail_items")) == 2


def test_item_status_endpoints(client, store):
    item = store.insert("library_items", code="MAS-RENDER", name="Rendered wall", assembly_id="asm-walls", status="draft")
    store.insert("labour_factors", library_item_id=item.id, labour_catalogue_id="lab-lab", hours_per_unit=0.4)

    assert client.post(f"/api/library/items/{item.id}/confirm").status_code == 400

    r = client.post(f"/api/library/items/{item.id}/mark-complete")
    assert r.status_code == 200
    assert r.json()["status"] == "complete"

    r = client.post(f"/api/library/items/{item.id}/confirm", json={"user_id": "u1", "notes": "ok"})
    assert r.status_code == 200
    assert r.json()["status"] == "confirmed"
    assert r.json()["confirmed_by"] == "u1"

    assert client.post("/api/library/items/nope/mark-complete").status_code == 404


def test_rate_history_import_and_compare(client):
    client.put("/api/projects/p2/rates", json={"materials": {"CONC": 110}, "effective_date": "2024-01-01"})
    client.put("/api/projects/p1/rates", json={"materials": {"CONC": 95}, "effective_date": "2024-01-01"})
    client.put("/api/projects/p1/rates", json={"materials": {"CONC": 100}, "effective_date": "2024-02-01"})

    history = client.get("/api/projects/p1/rates/history").json()
    assert [h["effective_date"] for h in history] == ["2024-02-01", "2024-01-01"]
    assert len(client.get("/api/projects/p1/rates/history", params={"limit": 1}).json()) == 1

    compare = client.get("/api/projects/p1/rates/compare", params={"source": "p2"}).json()
    assert [(c["item_code"], c["action"]) for c in compare] == [("CONC", "update")]

    r = client.post("/api/projects/p1/rates/import", json={"source_project_id": "p2", "conflict_resolution": "skip"})
    assert r.json()["imported"] == 0
    assert r.json()["skipped"] == 1

    r = client.post("/api/projects/p1/rates/import", json={"source_project_id": "p2", "effective_date": "2024-03-01"})
    assert r.status_code == 200
    assert r.json()["imported"] == 1
    assert client.get("/api/projects/p1/rates").json()["materials"] == {"CONC": 110.0}


def test_rate_import_rejects_unknown_conflict_mode(client):
    r = client.post("/api/projects/p1/rates/import", json={"source_project_id": "p2", "conflict_resolution": "newest"})
    assert r.status_code == 422
