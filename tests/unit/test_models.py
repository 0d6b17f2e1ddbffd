"""
Unit tests for record models and the datasheet URL filter.
"""

import pytest
from pydantic import ValidationError

from wattwise.models import AnalysisRecord, is_trusted_url


class TestTrustedUrl:
    """Tests for is_trusted_url."""

    @pytest.mark.parametrize("url", [
        "https://www.dell.com/support/manuals/poweredge-r740.pdf",
        "http://example.com/datasheet",
    ])
    def test_direct_links(self, url):
        assert is_trusted_url(url)

    @pytest.mark.parametrize("url", [
        None,
        "",
        "https://www.google.com/search?q=C9300-48P+datasheet",
        "https://www.google.com/url?q=https://cisco.com",
        "https://www.bing.com/search?q=R740",
        "ftp://files.example.com/sheet.pdf",
        "cisco.com/datasheet",
    ])
    def test_rejected_links(self, url):
        assert not is_trusted_url(url)


class TestAnalysisRecord:
    """Tests for AnalysisRecord."""

    def test_totals_scale_with_quantity(self, make_record):
        record = make_record(quantity=3)

        assert record.total_typical_watts == 450
        assert record.total_max_watts == 600
        assert record.total_btu == pytest.approx(2047.2)

    def test_records_are_immutable(self, make_record):
        record = make_record()
        with pytest.raises(ValidationError):
            record.max_power_watts = 1

    def test_rejects_negative_metrics(self):
        with pytest.raises(ValidationError):
            AnalysisRecord(max_power_watts=-1)

    def test_trusted_source_url(self, make_record):
        assert make_record(sourceUrl="https://google.com/search?q=x").trusted_source_url is None
        assert make_record(sourceUrl=" https://cisco.com/ds.pdf ").trusted_source_url == "https://cisco.com/ds.pdf"

    def test_accepts_wire_aliases(self):
        record = AnalysisRecord.model_validate({"partNumber": "R740", "maxPowerWatts": 750, "isIgnored": True})

        assert record.part_number == "R740"
        assert record.max_power_watts == 750
        assert record.is_ignored is True

    def test_to_wire_omits_ignore_flag(self, make_record):
        wire = make_record().to_wire()

        assert wire["partNumber"] == "C9300-48P"
        assert wire["heatDissipationBTU"] == pytest.approx(682.4)
        assert wire["typicalSource"] == "Datasheet"
        assert "isIgnored" not in wire
        assert "isIgnored" in make_record().to_wire(include_ignored=True)
