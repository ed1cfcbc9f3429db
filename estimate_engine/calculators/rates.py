from __future__ import annotations

import logging
import math
from datetime import date
from typing import Dict, Iterable, List, Optional

from ..errors import RateValidationError
from ..models import (
    CATEGORIES,
    ConflictResolution,
    EffectiveRate,
    ProjectRates,
    RateComparison,
    RateImportResult,
    RateStatistics,
    RateUpdate,
    RateValidationResult,
)


logger = logging.getLogger(__name__)

HIGH_RATE_WARNING = 999999
CATALOGUE_VARIANCE_WARNING = 5.0


class ProjectRatesService:
    """Dated per-project overrides of catalogue rates.

    Every change writes a new rate record; the current record is the most
    recent one whose effective date has been reached and which has not expired.
    """

    def __init__(self, store):
        self.store = store

    def get_current_rates(self, project_id: str, as_of: Optional[date] = None) -> ProjectRates:
        as_of = as_of or date.today()
        for record in self.store.project_rates(project_id):
            if record.effective_date > as_of:
                continue
            if record.expiry_date is not None and record.expiry_date < as_of:
                continue
            return record
        return ProjectRates(project_id=project_id, effective_date=as_of)

    def get_rate_history(
        self,
        project_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> List[ProjectRates]:
        history = [
            r
            for r in self.store.project_rates(project_id)
            if (start is None or r.effective_date >= start) and (end is None or r.effective_date <= end)
        ]
        return history[:limit] if limit else history

    def validate_rates(self, rates: Dict[str, Dict[str, float]]) -> RateValidationResult:
        errors: List[str] = []
        warnings: List[str] = []
        for category in CATEGORIES:
            for code, rate in (rates.get(category) or {}).items():
                try:
                    value = float(rate)
                except (TypeError, ValueError):
                    errors.append(f"{category}:{code} rate {rate!r} is not a number")
                    continue
                if not math.isfinite(value):
                    errors.append(f"{category}:{code} rate must be finite")
                    continue
                if value < 0:
                    errors.append(f"{category}:{code} rate must not be negative")
                if value > HIGH_RATE_WARNING:
                    warnings.append(f"{category}:{code} rate seems unusually high, please verify")
                entry = self.store.catalogue_entry(category, code)
                if entry is None:
                    warnings.append(f"{category}:{code} is not in the catalogue")
                elif entry.rate and abs(value - entry.rate) > entry.rate * CATALOGUE_VARIANCE_WARNING:
                    warnings.append(
                        f"{category}:{code} rate varies significantly from catalogue rate ({entry.rate:g})"
                    )
        return RateValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    def set_project_rates(
        self,
        project_id: str,
        materials: Optional[Dict[str, float]] = None,
        labour: Optional[Dict[str, float]] = None,
        equipment: Optional[Dict[str, float]] = None,
        effective_date: Optional[date] = None,
        expiry_date: Optional[date] = None,
        user_id: Optional[str] = None,
    ) -> ProjectRates:
        payload = {"materials": materials or {}, "labour": labour or {}, "equipment": equipment or {}}
        validation = self.validate_rates(payload)
        if not validation.is_valid:
            raise RateValidationError(validation.errors)
        for w in validation.warnings:
            logger.warning("Project %s: %s", project_id, w)
        record = ProjectRates(
            project_id=project_id,
            effective_date=effective_date or date.today(),
            expiry_date=expiry_date,
            created_by=user_id,
            **{k: {code: float(v) for code, v in rates.items()} for k, rates in payload.items()},
        )
        saved = self.store.insert_project_rates(record)
        logger.info("Project %s: rates set effective %s", project_id, saved.effective_date)
        return saved

    def update_rate_override(self, project_id: str, category: str, item_code: str, rate: float) -> ProjectRates:
        return self.batch_update_rates(project_id, [RateUpdate(category=category, item_code=item_code, rate=rate)])

    def batch_update_rates(
        self, project_id: str, updates: Iterable[RateUpdate], effective_date: Optional[date] = None
    ) -> ProjectRates:
        current = self.get_current_rates(project_id)
        merged = {c: dict(current.for_category(c)) for c in CATEGORIES}
        for u in updates:
            previous = merged[u.category].get(u.item_code)
            logger.info("Project %s: %s:%s %s -> %s", project_id, u.category, u.item_code, previous, u.rate)
            merged[u.category][u.item_code] = u.rate
        return self.set_project_rates(
            project_id, effective_date=effective_date, expiry_date=current.expiry_date, **merged
        )

    def delete_rates(self, project_id: str, effective_date: date) -> int:
        removed = self.store.delete_project_rates(project_id, effective_date)
        logger.info("Project %s: deleted %d rate record(s) effective %s", project_id, removed, effective_date)
        return removed

    def get_effective_rate(
        self, project_id: str, category: str, item_code: str, as_of: Optional[date] = None
    ) -> EffectiveRate:
        current = self.get_current_rates(project_id, as_of)
        project_rate = current.for_category(category).get(item_code)
        entry = self.store.catalogue_entry(category, item_code)
        catalog_rate = entry.rate if entry is not None else None
        if project_rate is not None:
            rate, source = project_rate, "project"
        elif catalog_rate is not None:
            rate, source = catalog_rate, "catalog"
        else:
            rate, source = 0.0, "default"
        return EffectiveRate(
            item_code=item_code,
            category=category,
            rate=rate,
            source=source,
            effective_date=as_of or date.today(),
            project_rate=project_rate,
            catalog_rate=catalog_rate,
        )

    def import_rates_from_project(
        self,
        source_project_id: str,
        target_project_id: str,
        categories: Optional[Iterable[str]] = None,
        conflict_resolution: ConflictResolution = "overwrite",
        effective_date: Optional[date] = None,
    ) -> RateImportResult:
        source = self.get_current_rates(source_project_id)
        target = self.get_current_rates(target_project_id)
        result = RateImportResult()
        merged = {c: dict(target.for_category(c)) for c in CATEGORIES}

        for category in categories or CATEGORIES:
            bucket = merged[category]
            for code, rate in source.for_category(category).items():
                exists = code in bucket
                if conflict_resolution == "skip" and exists:
                    result.skipped += 1
                    continue
                if conflict_resolution == "merge" and exists and bucket[code] != rate:
                    result.warnings.append(
                        f"{category}:{code} - keeping existing rate {bucket[code]} instead of {rate}"
                    )
                    result.skipped += 1
                    continue
                bucket[code] = rate
                result.imported += 1
                result.details[category] += 1

        if result.imported:
            self.set_project_rates(target_project_id, effective_date=effective_date, **merged)
        return result

    def compare_project_rates(self, source_project_id: str, target_project_id: str) -> List[RateComparison]:
        source = self.get_current_rates(source_project_id)
        target = self.get_current_rates(target_project_id)
        out: List[RateComparison] = []
        for category in CATEGORIES:
            src = source.for_category(category)
            tgt = target.for_category(category)
            for code in sorted(set(src) | set(tgt)):
                s, t = src.get(code), tgt.get(code)
                if s is None:
                    action = "add"
                elif t is None:
                    action = "remove"
                elif s == t:
                    action = "unchanged"
                else:
                    action = "update"
                s_val, t_val = s or 0.0, t or 0.0
                diff = t_val - s_val
                entry = self.store.catalogue_entry(category, code)
                out.append(
                    RateComparison(
                        item_code=code,
                        item_name=entry.name if entry is not None else code,
                        category=category,
                        source_rate=s_val,
                        target_rate=t_val,
                        difference=diff,
                        percentage_change=(diff / s_val * 100.0) if s_val > 0 else 0.0,
                        action=action,
                    )
                )
        return out

    def get_rate_statistics(self, project_id: str) -> RateStatistics:
        current = self.get_current_rates(project_id)

        def _avg(values: Dict[str, float]) -> float:
            return sum(values.values()) / len(values) if values else 0.0

        counts = {c: len(current.for_category(c)) for c in CATEGORIES}
        return RateStatistics(
            project_id=project_id,
            total_rates=sum(counts.values()),
            category_breakdown=counts,
            average_rates={c: _avg(current.for_category(c)) for c in CATEGORIES},
            last_updated=current.effective_date if current.id else None,
        )
