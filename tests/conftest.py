"""
Shared fixtures: wire-format items, records and an in-memory extractor.
"""

import asyncio
from types import SimpleNamespace

import pytest

from wattwise.models import AnalysisRecord
from wattwise.validation import coerce_record


def wire_item(**overrides):
    """A complete, valid item as the model would return it."""
    item = {
        "partNumber": "C9300-48P",
        "description": "Catalyst 9300 48-port PoE+",
        "modelFamily": "Cisco Catalyst 9300",
        "quantity": 1,
        "category": "Network",
        "typicalPowerWatts": 150,
        "typicalSource": "Datasheet",
        "typicalPowerCitation": "Typical power: 150 W",
        "maxPowerWatts": 200,
        "maxSource": "Datasheet",
        "maxPowerCitation": "Maximum power: 200 W",
        "heatDissipationBTU": 682.4,
        "heatSource": "Formula",
        "methodology": "Datasheet Spec",
        "sourceUrl": "https://www.cisco.com/c/en/us/products/collateral/switches/catalyst-9300.pdf",
        "sourceTitle": "Cisco Catalyst 9300 Series Data Sheet",
        "matchedModelSnippet": "C9300-48P",
        "confidence": "High",
        "notes": "",
    }
    item.update(overrides)
    return item


class FakeExtractor:
    """Stands in for LLMExtractor without any HTTP traffic."""

    def __init__(self, records=None, error=None, re_estimate_error=None, block=False, batch_size=20):
        self.records = records
        self.error = error
        self.re_estimate_error = re_estimate_error
        self.block = block
        self.config = SimpleNamespace(batch_size=batch_size)
        self.model = "test/model"
        self.analyze_calls = []
        self.re_estimate_calls = []
        self.closed = False

    async def analyze_bom(self, rows, on_retry=None, on_progress=None):
        self.analyze_calls.append(list(rows))
        if on_progress:
            on_progress("Analyzing batch 1 of 1...")
        if self.block:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error
        if self.records is not None:
            return list(self.records)
        return [
            AnalysisRecord(
                part_number=str(row.get("Part Number", "")),
                description=str(row.get("Description", "")),
                model_family=str(row.get("Family", "")),
                quantity=int(row.get("Qty", 1) or 1),
                category="Compute",
                typical_power_watts=100,
                max_power_watts=200,
                heat_dissipation_btu=682.4,
            )
            for row in rows
        ]

    async def re_estimate(self, records, on_retry=None, on_progress=None):
        self.re_estimate_calls.append(list(records))
        if self.block:
            await asyncio.Event().wait()
        if self.re_estimate_error is not None:
            raise self.re_estimate_error
        return [
            (position, record.model_copy(update={"max_power_watts": record.max_power_watts + 50,
                                                 "notes": "re-estimated"}))
            for position, record in enumerate(records)
        ]

    async def aclose(self):
        self.closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()


@pytest.fixture
def make_item():
    return wire_item


@pytest.fixture
def make_record():
    """Build a validated record from wire-format overrides."""
    def factory(**overrides):
        return coerce_record(wire_item(**overrides))
    return factory


@pytest.fixture
def fake_extractor():
    return FakeExtractor
