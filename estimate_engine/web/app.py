from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import Body, FastAPI, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response
from pydantic import BaseModel, Field

from ..cache import CacheManager
from ..calculators.factors import FactorCalculator
from ..calculators.rates import ProjectRatesService
from ..calculators.schedules import ScheduleAggregator
from ..config import CONFIGS_DIR, DATA_PATH, load_settings
from ..errors import ExportFormatError, IntegrationError, LibraryStatusError, RateValidationError, RecordNotFound
from ..integration import LibraryIntegrationService
from ..models import (
    BulkItemRequest,
    Category,
    ConflictResolution,
    DetailItemLink,
    FactorCalculationOptions,
    LibraryItemSelection,
    Settings,
)
from ..store import LibraryStore


logger = logging.getLogger(__name__)

SCHEDULE_KINDS = ("materials", "labour", "equipment")


class EstimateRequest(BaseModel):
    structure_id: str
    selections: List[LibraryItemSelection]
    user_id: Optional[str] = None


class RatesPayload(BaseModel):
    materials: Dict[str, float] = Field(default_factory=dict)
    labour: Dict[str, float] = Field(default_factory=dict)
    equipment: Dict[str, float] = Field(default_factory=dict)
    effective_date: Optional[date] = None
    expiry_date: Optional[date] = None
    user_id: Optional[str] = None


class StatusChange(BaseModel):
    user_id: Optional[str] = None
    notes: Optional[str] = None


class RatesImportRequest(BaseModel):
    source_project_id: str
    conflict_resolution: ConflictResolution = "overwrite"
    categories: Optional[List[Category]] = None
    effective_date: Optional[date] = None


class Services:
    """One set of services per app, sharing a store and a cache."""

    def __init__(self, store: LibraryStore, settings: Settings, data_path: Optional[Path] = None):
        self.store = store
        self.settings = settings
        self.data_path = data_path
        self.cache = CacheManager(default_ttl=settings.default_cache_ttl_seconds)
        self.rates = ProjectRatesService(store)
        self.calculator = FactorCalculator(store, self.rates)
        self.schedules = ScheduleAggregator(store, self.cache, settings)
        self.integration = LibraryIntegrationService(store, self.calculator, self.cache)

    def persist(self) -> None:
        if self.data_path is not None:
            self.store.save(self.data_path)


def _json(model) -> dict:
    # NaN (rate per unit at zero quantity) serialises as null
    return json.loads(model.model_dump_json())


def create_app(
    store: Optional[LibraryStore] = None,
    settings: Optional[Settings] = None,
    data_path: Optional[Path] = None,
) -> FastAPI:
    """Build the API around ``store``; without one the dataset at DATA_PATH is loaded.

    Writes are saved back to ``data_path`` when it is given.
    """
    if store is None:
        data_path = data_path or DATA_PATH
        if Path(data_path).exists():
            store = LibraryStore.from_yaml(data_path)
        else:
            logger.warning("Dataset %s not found, starting with an empty store", data_path)
            store = LibraryStore()
    services = Services(store, settings or load_settings(CONFIGS_DIR), data_path)

    app = FastAPI(title="Estimate Engine")
    app.state.services = services

    @app.exception_handler(RecordNotFound)
    async def _not_found(request: Request, exc: RecordNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(RateValidationError)
    async def _bad_rates(request: Request, exc: RateValidationError):
        return JSONResponse(status_code=400, content={"detail": str(exc), "errors": exc.errors})

    @app.exception_handler(IntegrationError)
    async def _bad_integration(request: Request, exc: IntegrationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(LibraryStatusError)
    async def _bad_status(request: Request, exc: LibraryStatusError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ExportFormatError)
    async def _bad_format(request: Request, exc: ExportFormatError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    # -- library ---------------------------------------------------------------

    @app.get("/api/library/search")
    def library_search(q: str = Query(..., min_length=1), limit: int = Query(5, ge=1, le=50)):
        matches = services.integration.suggest_library_items(q, limit=limit)
        return [{"item": _json(item), "score": score} for item, score in matches]

    @app.get("/api/library/items/{item_id}/cost")
    def item_cost(
        item_id: str,
        project_id: str,
        quantity: float = 1.0,
        include_productivity: bool = False,
        include_utilization: bool = False,
    ):
        opts = FactorCalculationOptions(
            include_productivity=include_productivity, include_utilization=include_utilization
        )
        result = services.calculator.calculate_item_cost(item_id, project_id, quantity, opts)
        payload = _json(result)
        payload["summary"] = _json(result.summary())
        return payload

    @app.post("/api/library/items/{item_id}/mark-complete")
    def mark_complete(item_id: str, change: Optional[StatusChange] = None):
        change = change or StatusChange()
        item = services.integration.mark_complete(item_id, change.user_id)
        services.persist()
        return _json(item)

    @app.post("/api/library/items/{item_id}/confirm")
    def confirm_item(item_id: str, change: Optional[StatusChange] = None):
        change = change or StatusChange()
        item = services.integration.confirm_library_item(item_id, change.user_id, change.notes)
        services.persist()
        return _json(item)

    # -- projects --------------------------------------------------------------

    @app.post("/api/projects/{project_id}/costs")
    def bulk_costs(project_id: str, items: List[BulkItemRequest] = Body(...)):
        return [_json(r) for r in services.calculator.calculate_bulk_item_costs(items, project_id)]

    @app.get("/api/projects/{project_id}/schedules/summary")
    def schedule_summary(project_id: str, structure_id: Optional[str] = None):
        return _json(services.schedules.get_schedule_summary(project_id, structure_id))

    @app.get("/api/projects/{project_id}/schedules/export")
    def schedule_export(
        project_id: str,
        fmt: str = Query("excel", alias="format"),
        schedule_type: str = Query("all", alias="type"),
    ):
        if schedule_type not in ("material", "labour", "equipment", "all"):
            return JSONResponse(status_code=400, content={"detail": f"Unsupported schedule type: {schedule_type}"})
        export = services.schedules.export_schedule(project_id, fmt, schedule_type)
        return Response(
            content=export.content,
            media_type=export.media_type,
            headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
        )

    @app.post("/api/projects/{project_id}/schedules/refresh")
    def schedule_refresh(project_id: str):
        return {"dropped": services.schedules.refresh_schedule_cache(project_id)}

    @app.get("/api/projects/{project_id}/schedules/{kind}")
    def schedule(project_id: str, kind: str, structure_id: Optional[str] = None):
        if kind not in SCHEDULE_KINDS:
            return JSONResponse(status_code=404, content={"detail": f"Unknown schedule: {kind}"})
        getter = {
            "materials": services.schedules.get_material_schedule,
            "labour": services.schedules.get_labour_schedule,
            "equipment": services.schedules.get_equipment_schedule,
        }[kind]
        return [_json(row) for row in getter(project_id, structure_id)]

    @app.get("/projects/{project_id}/schedules", response_class=HTMLResponse)
    def schedule_page(project_id: str):
        export = services.schedules.export_schedule(project_id, "html", "all")
        return HTMLResponse(export.content.decode("utf-8"))

    @app.post("/api/projects/{project_id}/estimate")
    def create_estimate(project_id: str, req: EstimateRequest):
        result = services.integration.create_estimate_from_library_items(
            project_id, req.structure_id, req.selections, req.user_id
        )
        services.persist()
        return _json(result)

    @app.post("/api/projects/{project_id}/estimate/link")
    def link_items(project_id: str, mappings: List[DetailItemLink] = Body(...)):
        linked = services.integration.link_existing_items_to_library(project_id, mappings)
        services.persist()
        return [_json(d) for d in linked]

    @app.get("/api/projects/{project_id}/rates")
    def get_rates(project_id: str, as_of: Optional[date] = None):
        return _json(services.rates.get_current_rates(project_id, as_of))

    @app.put("/api/projects/{project_id}/rates")
    def put_rates(project_id: str, payload: RatesPayload):
        saved = services.rates.set_project_rates(
            project_id,
            materials=payload.materials,
            labour=payload.labour,
            equipment=payload.equipment,
            effective_date=payload.effective_date,
            expiry_date=payload.expiry_date,
            user_id=payload.user_id,
        )
        services.persist()
        return _json(saved)

    @app.get("/api/projects/{project_id}/rates/history")
    def rate_history(
        project_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: Optional[int] = Query(None, ge=1),
    ):
        return [_json(r) for r in services.rates.get_rate_history(project_id, start, end, limit)]

    @app.post("/api/projects/{project_id}/rates/import")
    def import_rates(project_id: str, req: RatesImportRequest):
        result = services.rates.import_rates_from_project(
            req.source_project_id,
            project_id,
            categories=req.categories,
            conflict_resolution=req.conflict_resolution,
            effective_date=req.effective_date,
        )
        if result.imported:
            services.persist()
        return _json(result)

    @app.get("/api/projects/{project_id}/rates/compare")
    def compare_rates(project_id: str, source: str):
        return [_json(c) for c in services.rates.compare_project_rates(source, project_id)]

    @app.get("/api/projects/{project_id}/rates/statistics")
    def rate_statistics(project_id: str):
        return _json(services.rates.get_rate_statistics(project_id))

    return app


app = create_app()
