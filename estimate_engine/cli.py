from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

import typer

from .cache import CacheManager
from .calculators.factors import FactorCalculator
from .calculators.rates import ProjectRatesService
from .calculators.schedules import ScheduleAggregator
from .config import CONFIGS_DIR, DATA_PATH, load_settings
from .errors import EstimateEngineError, StoreError
from .integration import LibraryIntegrationService
from .log import configure_logging
from .models import (
    CATEGORIES,
    FactorCalculationOptions,
    LibraryItemSelection,
    RateUpdate,
    Settings,
)
from .store import LibraryStore
from .utils import money

app = typer.Typer(help="Estimate Engine CLI", add_completion=False, no_args_is_help=True)


class _Context:
    def __init__(self, data: Path, settings: Settings):
        self.data = data
        self.settings = settings
        self._store: Optional[LibraryStore] = None

    @property
    def store(self) -> LibraryStore:
        if self._store is None:
            try:
                self._store = LibraryStore.from_yaml(self.data)
            except StoreError as e:
                typer.echo(f"[error] {e}", err=True)
                raise typer.Exit(code=2)
        return self._store

    def save(self) -> None:
        self.store.save(self.data)
        typer.echo(f"Saved {self.data}")

    def services(self):
        cache = CacheManager(default_ttl=self.settings.default_cache_ttl_seconds)
        rates = ProjectRatesService(self.store)
        calculator = FactorCalculator(self.store, rates)
        schedules = ScheduleAggregator(self.store, cache, self.settings)
        integration = LibraryIntegrationService(self.store, calculator, cache)
        return rates, calculator, schedules, integration


def _fail(e: Exception, code: int = 1) -> typer.Exit:
    typer.echo(f"[error] {e}", err=True)
    return typer.Exit(code=code)


def _echo_json(data) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


@app.callback()
def main(
    ctx: typer.Context,
    data: str = typer.Option(str(DATA_PATH), help="Library/estimate dataset (YAML)"),
    configs: str = typer.Option(str(CONFIGS_DIR), help="Configs folder (settings.yaml)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    configure_logging(verbose)
    ctx.obj = _Context(Path(data), load_settings(Path(configs)))


@app.command()
def calculate(
    ctx: typer.Context,
    item: str = typer.Argument(..., help="Library item id or code"),
    project: str = typer.Option(..., "--project", "-p", help="Project id"),
    quantity: float = typer.Option(1.0, "--quantity", "-q"),
    productivity: bool = typer.Option(False, help="Divide labour hours by productivity factors"),
    utilization: bool = typer.Option(False, help="Divide equipment hours by utilization factors"),
    as_json: bool = typer.Option(False, "--json", help="Print the full result as JSON"),
):
    """Price a library item for a project."""
    c: _Context = ctx.obj
    _, calculator, _, _ = c.services()
    item_id = _resolve_item(c, item)
    opts = FactorCalculationOptions(include_productivity=productivity, include_utilization=utilization)
    try:
        result = calculator.calculate_item_cost(item_id, project, quantity, opts)
    except EstimateEngineError as e:
        raise _fail(e)

    if as_json:
        payload = result.model_dump(mode="json")
        payload["summary"] = result.summary().model_dump(mode="json")
        _echo_json(payload)
        return

    sym = c.settings.currency_symbol
    typer.echo(f"{result.library_item_code} {result.library_item_name}: {quantity:g} {result.unit}")
    for line in result.materials.factors:
        typer.echo(
            f"  M {line.material_code:<12} {line.effective_quantity:>10.3f} {line.unit:<6}"
            f" @ {money(line.rate, sym)} ({line.rate_source}) = {money(line.cost, sym)}"
        )
    for line in result.labour.factors:
        typer.echo(
            f"  L {line.labour_code:<12} {line.effective_hours:>10.2f} h      "
            f" @ {money(line.rate, sym)} ({line.rate_source}) = {money(line.cost, sym)}"
        )
    for line in result.equipment.factors:
        typer.echo(
            f"  E {line.equipment_code:<12} {line.effective_hours:>10.2f} h      "
            f" @ {money(line.rate, sym)} ({line.rate_source}) = {money(line.cost, sym)}"
        )
    s = result.summary()
    typer.echo(
        f"Materials {money(s.material_cost, sym)} ({s.material_percentage:.1f}%)  "
        f"Labour {money(s.labour_cost, sym)} ({s.labour_percentage:.1f}%)  "
        f"Equipment {money(s.equipment_cost, sym)} ({s.equipment_percentage:.1f}%)"
    )
    typer.echo(f"Total {money(result.total_cost, sym)}  Rate/unit {money(result.rate_per_unit, sym)}")


@app.command()
def schedule(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project id"),
    kind: str = typer.Option("summary", "--type", "-t", help="materials | labour | equipment | summary"),
    structure: Optional[str] = typer.Option(None, help="Restrict to one estimate structure"),
):
    """Print a project resource schedule or the schedule summary as JSON."""
    c: _Context = ctx.obj
    _, _, schedules, _ = c.services()
    if kind == "summary":
        _echo_json(schedules.get_schedule_summary(project, structure).model_dump(mode="json"))
        return
    getters = {
        "materials": schedules.get_material_schedule,
        "labour": schedules.get_labour_schedule,
        "equipment": schedules.get_equipment_schedule,
    }
    if kind not in getters:
        raise _fail(ValueError(f"Unknown schedule type: {kind}"), code=2)
    _echo_json([row.model_dump(mode="json") for row in getters[kind](project, structure)])


@app.command()
def export(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project id"),
    fmt: str = typer.Option("excel", "--format", "-f", help="csv | excel | pdf | html"),
    schedule_type: str = typer.Option("all", "--type", "-t", help="material | labour | equipment | all"),
    out: Optional[str] = typer.Option(None, help="Output folder (default: current folder)"),
):
    """Export project schedules to a file."""
    c: _Context = ctx.obj
    _, _, schedules, _ = c.services()
    try:
        result = schedules.export_schedule(project, fmt, schedule_type)
    except ValueError as e:
        raise _fail(e, code=2)
    out_dir = Path(out) if out else Path.cwd()
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / result.filename
    path.write_bytes(result.content)
    typer.echo(f"Wrote {path}")


def _parse_selection(spec: str) -> LibraryItemSelection:
    item, _, qty = spec.partition(":")
    return LibraryItemSelection(library_item_id=item, quantity=float(qty) if qty else 1.0)


@app.command()
def integrate(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project id"),
    items: List[str] = typer.Argument(..., help="ITEM[:QTY] library item ids or codes"),
    structure: str = typer.Option(..., "--structure", "-s", help="Estimate structure id"),
    user: Optional[str] = typer.Option(None, help="User recorded as creator"),
    save: bool = typer.Option(True, help="Write the updated dataset back"),
):
    """Create estimate elements and priced detail items from library items."""
    c: _Context = ctx.obj
    _, _, _, integration = c.services()
    try:
        selections = [_parse_selection(s) for s in items]
    except ValueError as e:
        raise _fail(e, code=2)
    for sel in selections:
        found = c.store.find_library_item_by_code(sel.library_item_id)
        if found is not None:
            sel.library_item_id = found.id
    try:
        result = integration.create_estimate_from_library_items(project, structure, selections, user)
    except EstimateEngineError as e:
        raise _fail(e)

    for el in result.elements:
        typer.echo(f"{'  ' * (el.hierarchy_level - 2)}{el.library_path} {el.name}")
    for d in result.detail_items:
        typer.echo(f"      {d.library_path} {d.name}: {d.quantity:g} {d.unit} = {money(d.amount, c.settings.currency_symbol)}")
    for err in result.errors:
        typer.echo(f"[warn] {err.item_code or err.item_id}: {err.error}")
    if save:
        c.save()


@app.command()
def rates(
    ctx: typer.Context,
    project: str = typer.Argument(..., help="Project id"),
    set_: List[str] = typer.Option([], "--set", help="category:code=rate override (repeatable)"),
    compare: Optional[str] = typer.Option(None, help="Compare with another project's rates"),
    import_from: Optional[str] = typer.Option(None, help="Copy rates from another project"),
    conflict: str = typer.Option("overwrite", help="skip | merge | overwrite (with --import-from)"),
    stats: bool = typer.Option(False, help="Show rate statistics"),
    save: bool = typer.Option(True, help="Write the updated dataset back"),
):
    """Show, override, copy or compare project rates."""
    c: _Context = ctx.obj
    svc, _, _, _ = c.services()
    changed = False
    try:
        if set_:
            updates = []
            for spec in set_:
                key, _, value = spec.partition("=")
                category, _, code = key.partition(":")
                if category not in CATEGORIES or not code or not value:
                    raise ValueError(f"Expected category:code=rate, got {spec!r}")
                updates.append(RateUpdate(category=category, item_code=code, rate=float(value)))
            svc.batch_update_rates(project, updates)
            changed = True
        if import_from:
            result = svc.import_rates_from_project(import_from, project, conflict_resolution=conflict)
            typer.echo(f"Imported {result.imported}, skipped {result.skipped}")
            for w in result.warnings:
                typer.echo(f"[warn] {w}")
            changed = changed or result.imported > 0
    except ValueError as e:
        raise _fail(e, code=2)
    except EstimateEngineError as e:
        raise _fail(e)

    if compare:
        for cmp in svc.compare_project_rates(compare, project):
            if cmp.action != "unchanged":
                typer.echo(
                    f"{cmp.action:<9} {cmp.category}:{cmp.item_code} {cmp.source_rate:g} -> {cmp.target_rate:g}"
                    f" ({cmp.percentage_change:+.1f}%)"
                )
    if stats:
        _echo_json(svc.get_rate_statistics(project).model_dump(mode="json"))
    if not (compare or stats):
        _echo_json(svc.get_current_rates(project).model_dump(mode="json"))
    if changed and save:
        c.save()


@app.command("import-library")
def import_library(
    ctx: typer.Context,
    workbook: str = typer.Argument(..., help="Excel workbook with the library template on its first sheet"),
    save: bool = typer.Option(True, help="Write the updated dataset back"),
):
    """Import divisions, sections, assemblies and items from an Excel template."""
    from .importers.library_xlsx import import_library as run_import

    c: _Context = ctx.obj
    try:
        result = run_import(c.store, Path(workbook))
    except EstimateEngineError as e:
        raise _fail(e)
    for err in result.errors:
        typer.echo(f"[error] row {err.row}: {err.message}")
    for skip in result.skipped:
        typer.echo(f"[skip] row {skip.row}: {skip.reason} ({skip.code})")
    typer.echo(", ".join(f"{k}: {v}" for k, v in result.created.items()))
    if not result.success:
        raise typer.Exit(code=1)
    if save:
        c.save()


def _resolve_item(c: _Context, item: str) -> str:
    found = c.store.find_library_item_by_code(item)
    return found.id if found else item


@app.command("mark-complete")
def mark_complete(
    ctx: typer.Context,
    item: str = typer.Argument(..., help="Library item id or code"),
    user: Optional[str] = typer.Option(None, help="User recorded in the log"),
    save: bool = typer.Option(True, help="Write the updated dataset back"),
):
    """Move a draft library item with factors to complete."""
    c: _Context = ctx.obj
    _, _, _, integration = c.services()
    try:
        updated = integration.mark_complete(_resolve_item(c, item), user)
    except EstimateEngineError as e:
        raise _fail(e)
    typer.echo(f"{updated.code} {updated.name}: {updated.status}")
    if save:
        c.save()


@app.command()
def confirm(
    ctx: typer.Context,
    item: str = typer.Argument(..., help="Library item id or code"),
    user: Optional[str] = typer.Option(None, help="User recorded as confirming"),
    notes: Optional[str] = typer.Option(None, help="Confirmation notes"),
    save: bool = typer.Option(True, help="Write the updated dataset back"),
):
    """Confirm a complete library item so it is suggested for estimates."""
    c: _Context = ctx.obj
    _, _, _, integration = c.services()
    try:
        updated = integration.confirm_library_item(_resolve_item(c, item), user, notes)
    except EstimateEngineError as e:
        raise _fail(e)
    typer.echo(f"{updated.code} {updated.name}: {updated.status}")
    if save:
        c.save()


@app.command()
def match(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="Free-text description to match"),
    limit: int = typer.Option(5, help="Maximum suggestions"),
):
    """Suggest library items for a free-text estimate line."""
    c: _Context = ctx.obj
    _, _, _, integration = c.services()
    matches = integration.suggest_library_items(text, limit=limit)
    if not matches:
        typer.echo("No matches.")
        return
    for item, score in matches:
        typer.echo(f"{score:>3}  {item.code:<14} {item.name} [{item.unit}]")


if __name__ == "__main__":  # pragma: no cover
    app()
