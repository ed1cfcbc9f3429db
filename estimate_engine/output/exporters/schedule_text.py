from __future__ import annotations

import json


def render_summary_text(summary) -> bytes:
    """Indented JSON of the schedule summary, served under the PDF media type."""
    return json.dumps(summary.model_dump(mode="json"), indent=2).encode("utf-8")
