"""
Contract tests for the record wire format.

The model receives and returns camelCase records; these field names and
enum values are part of the prompt contract and the export format.
"""

import pytest

from wattwise.models import (
    AnalysisRecord,
    AnalysisStatus,
    ConfidenceLevel,
    MetricSource,
)
from wattwise.session import SessionSnapshot


WIRE_FIELDS = {
    "partNumber",
    "description",
    "modelFamily",
    "quantity",
    "category",
    "typicalPowerWatts",
    "typicalSource",
    "typicalPowerCitation",
    "maxPowerWatts",
    "maxSource",
    "maxPowerCitation",
    "heatDissipationBTU",
    "heatSource",
    "methodology",
    "sourceUrl",
    "sourceTitle",
    "matchedModelSnippet",
    "confidence",
    "notes",
}


class TestRecordContract:
    """Contract tests for AnalysisRecord."""

    def test_wire_field_names(self, make_record):
        assert set(make_record().to_wire()) == WIRE_FIELDS

    def test_json_schema_uses_wire_names(self):
        schema = AnalysisRecord.model_json_schema(by_alias=True)
        assert WIRE_FIELDS | {"isIgnored"} == set(schema["properties"])

    def test_every_wire_field_is_named_in_prompts(self):
        from wattwise.llm_extractor import ANALYSIS_SYSTEM_PROMPT

        for field in WIRE_FIELDS:
            assert f'"{field}"' in ANALYSIS_SYSTEM_PROMPT, field

    def test_wire_round_trip(self, make_record):
        record = make_record(quantity=3)
        assert AnalysisRecord.model_validate(record.to_wire()) == record

    @pytest.mark.parametrize("enum,values", [
        (MetricSource, {"Datasheet", "Estimation", "Formula"}),
        (ConfidenceLevel, {"High", "Medium", "Low"}),
        (AnalysisStatus, {"IDLE", "PARSING", "ANALYZING", "COMPLETE", "ERROR"}),
    ])
    def test_enum_values(self, enum, values):
        assert {member.value for member in enum} == values


class TestSnapshotContract:
    """Contract tests for SessionSnapshot."""

    def test_snapshot_fields(self):
        snapshot = SessionSnapshot(status=AnalysisStatus.IDLE)

        assert set(snapshot.model_dump()) == {
            "status",
            "error_message",
            "progress_message",
            "notification",
            "is_re_estimating",
            "results",
            "report",
            "metadata",
        }

    def test_results_serialize_with_wire_names(self, make_record):
        snapshot = SessionSnapshot(status=AnalysisStatus.COMPLETE, results=[make_record()])

        data = snapshot.model_dump(by_alias=True, mode="json")

        assert data["results"][0]["partNumber"] == "C9300-48P"
        assert data["results"][0]["isIgnored"] is False
