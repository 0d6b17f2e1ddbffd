"""
Aggregation of analyzed records into a power budget.

All views are recomputed from an ordered result set. A record's position in
that set is its identity: ignore toggles and re-estimation merges replace
single positions and never reorder or renumber the rest. Ignored records
stay visible in their family but add nothing to any total.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import (
    MISC_FAMILY,
    AnalysisRecord,
    BudgetReport,
    CategoryBreakdown,
    GroupedFamily,
    IndexedRecord,
    ProjectSummary,
)


logger = logging.getLogger(__name__)

ResultSet = Tuple[AnalysisRecord, ...]


def family_key(record: AnalysisRecord) -> str:
    """Grouping key, falling back to the miscellaneous family."""
    return record.model_family.strip() or MISC_FAMILY


def group_by_family(records: Sequence[AnalysisRecord]) -> List[GroupedFamily]:
    """
    Group records by model family.

    Returns:
        Families sorted by total max power, highest first; ties keep
        first-seen order
    """
    groups: Dict[str, GroupedFamily] = {}

    for index, record in enumerate(records):
        family = family_key(record)
        group = groups.get(family)
        if group is None:
            group = GroupedFamily(model_family=family, category=record.category)
            groups[family] = group
        group.items.append(IndexedRecord(original_index=index, record=record))
        if record.is_ignored:
            continue
        group.total_typical_watts += record.total_typical_watts
        group.total_max_watts += record.total_max_watts
        group.total_btu += record.total_btu

    return sorted(groups.values(), key=lambda g: g.total_max_watts, reverse=True)


def compute_summary(records: Sequence[AnalysisRecord]) -> ProjectSummary:
    """Whole-BOM totals over non-ignored records."""
    total_typical = 0.0
    total_max = 0.0
    total_btu = 0.0
    total_components = 0
    highest: Optional[IndexedRecord] = None
    categories: Dict[str, float] = {}

    for index, record in enumerate(records):
        if record.is_ignored:
            continue
        total_typical += record.total_typical_watts
        total_max += record.total_max_watts
        total_btu += record.total_btu
        total_components += record.quantity

        # Max power is used for conservative capacity planning.
        categories[record.category] = categories.get(record.category, 0.0) + record.total_max_watts

        if highest is None or record.total_max_watts > highest.record.total_max_watts:
            highest = IndexedRecord(original_index=index, record=record)

    breakdown = sorted(
        (CategoryBreakdown(name=name, value=value) for name, value in categories.items()),
        key=lambda c: c.value,
        reverse=True,
    )

    return ProjectSummary(
        total_typical_kw=total_typical / 1000,
        total_max_kw=total_max / 1000,
        total_btu=total_btu,
        total_components=total_components,
        highest_consumer=highest,
        breakdown_by_category=breakdown,
    )


def build_report(records: Sequence[AnalysisRecord]) -> BudgetReport:
    return BudgetReport(summary=compute_summary(records), groups=group_by_family(records))


def toggle_ignored(records: Sequence[AnalysisRecord], index: int) -> ResultSet:
    """Return a new result set with the ignore flag at ``index`` flipped."""
    if not 0 <= index < len(records):
        raise IndexError(f"No record at index {index} (result set has {len(records)})")
    updated = list(records)
    current = updated[index]
    updated[index] = current.model_copy(update={"is_ignored": not current.is_ignored})
    return tuple(updated)


def merge_updates(
    records: Sequence[AnalysisRecord],
    updates: Iterable[Tuple[int, AnalysisRecord]],
) -> ResultSet:
    """
    Replace the records at the given indices, leaving every other slot as is.

    The ignore flag belongs to the slot, so a replaced record keeps the flag
    of the record it replaces.
    """
    merged = list(records)
    replaced = 0
    for index, record in updates:
        if not 0 <= index < len(merged):
            raise IndexError(f"No record at index {index} (result set has {len(merged)})")
        if record.is_ignored != merged[index].is_ignored:
            record = record.model_copy(update={"is_ignored": merged[index].is_ignored})
        merged[index] = record
        replaced += 1
    logger.debug("Merged %d updated record(s) into %d", replaced, len(merged))
    return tuple(merged)


class BudgetAggregator:
    """Builds budget reports, reusing the last one for an unchanged result set."""

    def __init__(self):
        self._last_records: Optional[Sequence[AnalysisRecord]] = None
        self._last_report: Optional[BudgetReport] = None

    def report(self, records: Sequence[AnalysisRecord]) -> BudgetReport:
        # Result sets are immutable tuples, so identity means unchanged.
        if records is not self._last_records or self._last_report is None:
            self._last_report = build_report(records)
            self._last_records = records
        return self._last_report

    def invalidate(self):
        self._last_records = None
        self._last_report = None
