from __future__ import annotations

import pytest

from estimate_engine.cache import CacheManager
from estimate_engine.calculators.factors import FactorCalculator
from estimate_engine.calculators.rates import ProjectRatesService
from estimate_engine.calculators.schedules import ScheduleAggregator
from estimate_engine.integration import LibraryIntegrationService
from estimate_engine.models import Settings
from estimate_engine.store import LibraryStore


def library_data() -> dict:
    return {
        "divisions": [
            {"id": "div-03", "code": "03", "name": "Concrete"},
            {"id": "div-04", "code": "04", "name": "Masonry"},
        ],
        "sections": [
            {"id": "sec-30", "code": "30", "name": "Cast-in-place", "division_id": "div-03"},
            {"id": "sec-20", "code": "20", "name": "Unit masonry", "division_id": "div-04"},
        ],
        "assemblies": [
            {"id": "asm-slabs", "code": "10", "name": "Slabs", "section_id": "sec-30"},
            {"id": "asm-beams", "code": "20", "name": "Beams", "section_id": "sec-30"},
            {"id": "asm-walls", "code": "10", "name": "Block walls", "section_id": "sec-20"},
        ],
        "library_items": [
            {"id": "item-slab", "code": "CON-SLAB", "name": "Concrete slab 100mm", "unit": "m2", "assembly_id": "asm-slabs"},
            {"id": "item-beam", "code": "CON-BEAM", "name": "Concrete beam", "unit": "m3", "assembly_id": "asm-beams"},
            {"id": "item-wall", "code": "MAS-WALL", "name": "Block wall 190mm", "unit": "m2", "assembly_id": "asm-walls"},
            {"id": "item-orphan", "code": "ORPHAN", "name": "Loose item", "unit": "each"},
        ],
        "materials_catalogue": [
            {"id": "mat-conc", "code": "CONC", "name": "Concrete 25MPa", "unit": "m3", "category": "Concrete", "rate": 100.0},
            {"id": "mat-block", "code": "BLOCK", "name": "Block 190", "unit": "each", "category": "Masonry", "rate": 2.0},
        ],
        "labour_catalogue": [
            {"id": "lab-conc", "code": "L-CONC", "name": "Concreter", "trade": "Concrete", "skill_level": "Skilled", "rate": 50.0},
            {"id": "lab-lab", "code": "L-LAB", "name": "Labourer", "trade": "General", "skill_level": "Unskilled", "rate": 40.0},
        ],
        "equipment_catalogue": [
            {"id": "eq-pump", "code": "E-PUMP", "name": "Concrete pump", "category": "Pumps", "rate": 80.0},
        ],
        "material_factors": [
            {"library_item_id": "item-slab", "material_catalogue_id": "mat-conc", "quantity_per_unit": 1.2, "wastage_percentage": 5, "unit": "m3"},
            {"library_item_id": "item-beam", "material_catalogue_id": "mat-conc", "quantity_per_unit": 1.0, "wastage_percentage": 10, "unit": "m3"},
            {"library_item_id": "item-wall", "material_catalogue_id": "mat-block", "quantity_per_unit": 12.5},
        ],
        "labour_factors": [
            {"library_item_id": "item-slab", "labour_catalogue_id": "lab-conc", "hours_per_unit": 0.5, "productivity_factor": 0.8},
            {"library_item_id": "item-beam", "labour_catalogue_id": "lab-conc", "hours_per_unit": 2.0, "productivity_factor": 1.0},
            {"library_item_id": "item-beam", "labour_catalogue_id": "lab-lab", "hours_per_unit": 1.0},
            {"library_item_id": "item-wall", "labour_catalogue_id": "lab-lab", "hours_per_unit": 1.0},
        ],
        "equipment_factors": [
            {"library_item_id": "item-slab", "equipment_catalogue_id": "eq-pump", "hours_per_unit": 0.1, "utilization_factor": 0.5},
        ],
        "projects": [
            {"id": "p1", "name": "Test Project"},
            {"id": "p2", "name": "Other Project"},
        ],
        "estimate_structures": [
            {"id": "st1", "project_id": "p1", "name": "Building A"},
            {"id": "st2", "project_id": "p1", "name": "Building B"},
        ],
    }


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def store() -> LibraryStore:
    return LibraryStore(library_data())


@pytest.fixture
def dataset(tmp_path, store):
    path = tmp_path / "library.yaml"
    store.save(path)
    return path


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> CacheManager:
    return CacheManager(default_ttl=300, clock=clock)


@pytest.fixture
def rates(store) -> ProjectRatesService:
    return ProjectRatesService(store)


@pytest.fixture
def calculator(store, rates) -> FactorCalculator:
    return FactorCalculator(store, rates)


@pytest.fixture
def schedules(store, cache, settings) -> ScheduleAggregator:
    return ScheduleAggregator(store, cache, settings)


@pytest.fixture
def integration(store, calculator, cache) -> LibraryIntegrationService:
    return LibraryIntegrationService(store, calculator, cache)
