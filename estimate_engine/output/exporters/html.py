from __future__ import annotations

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from ...models import Settings
from ...utils import money


TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"


def render_schedule_html(bundle, settings: Settings | None = None) -> bytes:
    settings = settings or Settings()
    env = Environment(loader=FileSystemLoader(str(TEMPLATES_DIR)), autoescape=select_autoescape(["html", "xml"]))
    template = env.get_template("schedule.html.j2")
    html = template.render(
        project_id=bundle.project_id,
        project_name=_project_name(bundle),
        schedule_type=bundle.schedule_type,
        materials=bundle.materials,
        labour=bundle.labour,
        equipment=bundle.equipment,
        summary=bundle.summary,
        money=lambda x: money(x, settings.currency_symbol),
    )
    return html.encode("utf-8")


def _project_name(bundle) -> str:
    for rows in (bundle.materials, bundle.labour, bundle.equipment):
        if rows and rows[0].project_name:
            return rows[0].project_name
    return bundle.project_id
