from __future__ import annotations

import re
from typing import Iterable, List, Tuple

from rapidfuzz import fuzz, process

from ..models import LibraryItem


STOPWORDS = {
    "and", "the", "of", "to", "for", "with", "in",
    "ea", "each", "item", "unit", "uom", "standard",
    "supply", "install", "including", "incl",
}

# unit spellings that otherwise stop "m3" and "cubic metre" lining up
_UNITS = [
    (r"\bcubic\s+met(?:er|re)s?\b", "m3"),
    (r"\bsquare\s+met(?:er|re)s?\b", "m2"),
    (r"\bmet(?:er|re)s?\b", "m"),
    (r"\bmillimet(?:er|re)s?\b", "mm"),
]


def normalize(s: str) -> str:
    s = (s or "").lower()
    s = s.replace("-", " ").replace("_", " ")
    for rx, repl in _UNITS:
        s = re.sub(rx, repl, s)
    # "150mm" -> "150 mm", "25mpa" -> "25 mpa"
    s = re.sub(r"(\d)([a-z])", r"\1 \2", s)
    s = re.sub(r"\s+", " ", s).strip()
    return s


def tokens(s: str) -> List[str]:
    toks = re.split(r"[^a-z0-9.]+", normalize(s))
    return [t.strip(".") for t in toks if t.strip(".") and t.strip(".") not in STOPWORDS]


def best_matches(query: str, choices: List[str], limit: int = 3) -> List[Tuple[str, int]]:
    """Return best matches using token_set_ratio with basic normalization."""
    norm_query = " ".join(tokens(query))
    norm_choices = {c: " ".join(tokens(c)) for c in choices}
    results = process.extract(norm_query, norm_choices, scorer=fuzz.token_set_ratio, limit=limit)
    return [(original, int(score)) for _, score, original in results]


def match_library_items(
    text: str, items: Iterable[LibraryItem], limit: int = 5, min_score: int = 50
) -> List[Tuple[LibraryItem, int]]:
    """Rank library items against free text by name, description and code.

    Items that are neither confirmed nor actual are ignored. An exact code
    hit always ranks first with a score of 100.
    """
    pool = [i for i in items if i.status in ("confirmed", "actual")]
    if not pool or not (text or "").strip():
        return []

    exact = [i for i in pool if i.code.lower() == text.strip().lower()]
    labels = {f"{i.name} {i.description or ''}".strip(): i for i in pool if i not in exact}

    out: List[Tuple[LibraryItem, int]] = [(i, 100) for i in exact]
    for label, score in best_matches(text, list(labels), limit=limit):
        if score >= min_score:
            out.append((labels[label], score))
    return out[:limit]
