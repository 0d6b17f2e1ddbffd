"""
Unit tests for reading BOM spreadsheets and CSV files.
"""

import io

import pandas as pd
import pytest

from wattwise.bom_reader import read_bom
from wattwise.errors import BOMReadError


CSV_BOM = (
    "Part Number,Description,Qty\n"
    "C9300-48P, Catalyst 9300 48-port PoE+,2\n"
    ",,\n"
    "PWR-C1-1100WAC,1100W AC PSU,4\n"
    "CAB-C13,,10\n"
).encode("utf-8")


class TestReadCsv:
    """Tests for CSV input."""

    def test_rows_keyed_by_header(self):
        rows = read_bom(CSV_BOM, filename="bom.csv")

        assert rows == [
            {"Part Number": "C9300-48P", "Description": "Catalyst 9300 48-port PoE+", "Qty": "2"},
            {"Part Number": "PWR-C1-1100WAC", "Description": "1100W AC PSU", "Qty": "4"},
            {"Part Number": "CAB-C13", "Description": "", "Qty": "10"},
        ]

    def test_reads_from_path(self, tmp_path):
        path = tmp_path / "bom.csv"
        path.write_bytes(CSV_BOM)

        assert len(read_bom(path)) == 3

    def test_header_only(self):
        assert read_bom(b"Part Number,Qty\n", filename="bom.csv") == []


class TestReadExcel:
    """Tests for workbook input."""

    def test_first_sheet_with_native_types(self, tmp_path):
        path = tmp_path / "bom.xlsx"
        with pd.ExcelWriter(path) as writer:
            pd.DataFrame({
                "Part Number": ["R740", None, "C9300-48P"],
                "Qty": [2, None, 1.0],
                "Unit Price": [5999.5, None, 4200],
            }).to_excel(writer, sheet_name="BOM", index=False)
            pd.DataFrame({"Other": ["ignored"]}).to_excel(writer, sheet_name="Notes", index=False)

        rows = read_bom(path)

        assert rows == [
            {"Part Number": "R740", "Qty": 2, "Unit Price": 5999.5},
            {"Part Number": "C9300-48P", "Qty": 1, "Unit Price": 4200},
        ]
        assert isinstance(rows[0]["Qty"], int)

    def test_reads_uploaded_bytes(self, tmp_path):
        buffer = io.BytesIO()
        pd.DataFrame({"Part Number": ["R740"], "Qty": [2]}).to_excel(buffer, index=False)

        rows = read_bom(buffer.getvalue(), filename="Upload.XLSX")

        assert rows == [{"Part Number": "R740", "Qty": 2}]


class TestReadErrors:
    """Tests for unreadable input."""

    def test_unsupported_format(self):
        with pytest.raises(BOMReadError, match="Unsupported"):
            read_bom(b"%PDF-1.7", filename="bom.pdf")

    def test_in_memory_source_needs_filename(self):
        with pytest.raises(BOMReadError):
            read_bom(CSV_BOM)

    def test_corrupt_workbook(self):
        with pytest.raises(BOMReadError, match="Could not read"):
            read_bom(b"not a zip archive", filename="bom.xlsx")

    def test_missing_file(self, tmp_path):
        with pytest.raises(BOMReadError):
            read_bom(tmp_path / "missing.csv")
