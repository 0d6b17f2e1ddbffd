"""
Coercion of untrusted model output into strict AnalysisRecords.

The model's JSON is advisory: any field may be missing, mistyped or out of
range. Each item is coerced field by field; fallbacks lower the item's
confidence to Low and are recorded in its notes instead of failing the batch.
"""

import logging
import math
import re
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from .models import AnalysisRecord, ConfidenceLevel, MetricSource


logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?")

_SOURCES = {source.value.lower(): source for source in MetricSource}
_CONFIDENCES = {level.value.lower(): level for level in ConfidenceLevel}

_METRIC_FIELDS = (
    ("typical_power_watts", "typicalPowerWatts"),
    ("max_power_watts", "maxPowerWatts"),
    ("heat_dissipation_btu", "heatDissipationBTU"),
)

_SOURCE_FIELDS = (
    ("typical_source", "typicalSource", MetricSource.ESTIMATION),
    ("max_source", "maxSource", MetricSource.ESTIMATION),
    ("heat_source", "heatSource", MetricSource.FORMULA),
)

_TEXT_FIELDS = (
    ("part_number", "partNumber"),
    ("description", "description"),
    ("model_family", "modelFamily"),
    ("category", "category"),
    ("methodology", "methodology"),
    ("notes", "notes"),
)

_OPTIONAL_TEXT_FIELDS = (
    ("typical_power_citation", "typicalPowerCitation"),
    ("max_power_citation", "maxPowerCitation"),
    ("source_url", "sourceUrl"),
    ("source_title", "sourceTitle"),
    ("matched_model_snippet", "matchedModelSnippet"),
)


def _lookup(item: Mapping[str, Any], snake: str, camel: str) -> Any:
    if camel in item:
        return item[camel]
    return item.get(snake)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _optional_text(value: Any) -> Optional[str]:
    text = _text(value)
    if not text or text.lower() in ("null", "none", "n/a"):
        return None
    return text


def parse_number(value: Any) -> Optional[float]:
    """Parse a finite number from a number or a string like "1,100 W"."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = _NUMBER_RE.search(value.replace(",", ""))
        if not match:
            return None
        number = float(match.group(0))
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _metric(value: Any) -> Tuple[float, bool]:
    """Return (non-negative value, ok)."""
    number = parse_number(value)
    if number is None or number < 0:
        return 0.0, False
    return number, True


def _quantity(value: Any) -> Tuple[int, bool]:
    number = parse_number(value)
    if number is None or number < 1 or number != int(number):
        return 1, False
    return int(number), True


def _source(value: Any, default: MetricSource) -> Tuple[MetricSource, bool]:
    text = _text(value).lower()
    if text in _SOURCES:
        return _SOURCES[text], True
    return default, False


def coerce_record(item: Any) -> Optional[AnalysisRecord]:
    """Build an AnalysisRecord from one raw model item, or None if unusable."""
    if not isinstance(item, Mapping):
        logger.warning("Dropping non-object item from model output: %r", item)
        return None

    fields = {}
    remarks = []

    for snake, camel in _TEXT_FIELDS:
        fields[snake] = _text(_lookup(item, snake, camel))
    for snake, camel in _OPTIONAL_TEXT_FIELDS:
        fields[snake] = _optional_text(_lookup(item, snake, camel))

    quantity, ok = _quantity(item.get("quantity"))
    fields["quantity"] = quantity
    if not ok:
        remarks.append(f"quantity {item.get('quantity')!r} is not a positive integer, using 1")

    for snake, camel in _METRIC_FIELDS:
        raw = _lookup(item, snake, camel)
        value, ok = _metric(raw)
        fields[snake] = value
        if not ok:
            remarks.append(f"{camel} {raw!r} is not a non-negative number, using 0")

    for snake, camel, default in _SOURCE_FIELDS:
        raw = _lookup(item, snake, camel)
        source, ok = _source(raw, default)
        fields[snake] = source
        if not ok:
            remarks.append(f"{camel} {raw!r} is not a known source, using {default.value}")

    confidence = _CONFIDENCES.get(_text(item.get("confidence")).lower(), ConfidenceLevel.LOW)

    if fields["max_power_watts"] < fields["typical_power_watts"]:
        ordering_note = (
            f"max power {fields['max_power_watts']:g} W below typical "
            f"{fields['typical_power_watts']:g} W, raised to typical"
        )
        fields["max_power_watts"] = fields["typical_power_watts"]
        fields["notes"] = _append_note(fields["notes"], f"Validation: {ordering_note}.")

    if remarks:
        confidence = ConfidenceLevel.LOW
        fields["notes"] = _append_note(fields["notes"], "Validation: " + "; ".join(remarks) + ".")
        logger.warning(
            "Coerced item %s: %s",
            fields["part_number"] or fields["description"] or "<unnamed>",
            "; ".join(remarks),
        )

    fields["confidence"] = confidence
    return AnalysisRecord(**fields)


def _append_note(notes: str, remark: str) -> str:
    return f"{notes} {remark}".strip() if notes else remark


def coerce_items(items: Iterable[Any]) -> List[AnalysisRecord]:
    """Coerce every usable item, preserving order and dropping the rest."""
    records = []
    for item in items:
        record = coerce_record(item)
        if record is not None:
            records.append(record)
    return records
