"""
BOM spreadsheet / CSV reader.

Reads the first sheet of a workbook (or a CSV file) into header-keyed rows.
Empty cells become "" so downstream code never sees missing keys.
"""

import io
import logging
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

import numpy as np
import pandas as pd

from .errors import BOMReadError
from .models import RawRow


logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = {".xlsx", ".xlsm", ".xls"}
CSV_SUFFIXES = {".csv", ".txt"}

BOMSource = Union[str, Path, bytes, BinaryIO]


def _to_python(value):
    """Convert a pandas/numpy cell value to a plain JSON-friendly scalar."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if pd.isna(value):
        return ""
    if isinstance(value, (bool, np.bool_)):
        return str(bool(value))
    if isinstance(value, (int, np.integer)):
        return int(value)
    if isinstance(value, (float, np.floating)):
        number = float(value)
        return int(number) if number.is_integer() else number
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    return str(value)


def _resolve_suffix(source: BOMSource, filename: Optional[str]) -> str:
    if filename:
        return Path(filename).suffix.lower()
    if isinstance(source, (str, Path)):
        return Path(source).suffix.lower()
    raise BOMReadError("A filename is required to read an in-memory BOM")


def read_bom(source: BOMSource, filename: Optional[str] = None) -> List[RawRow]:
    """
    Read a BOM into a list of rows.

    Args:
        source: Path, raw bytes or binary file object
        filename: Original file name, used to pick the format for in-memory sources

    Returns:
        One dict per non-blank row, keyed by the header row

    Raises:
        BOMReadError: unsupported format or unreadable file
    """
    suffix = _resolve_suffix(source, filename)
    if isinstance(source, bytes):
        source = io.BytesIO(source)

    try:
        if suffix in EXCEL_SUFFIXES:
            df = pd.read_excel(source, sheet_name=0, dtype=object)
        elif suffix in CSV_SUFFIXES:
            df = pd.read_csv(source, dtype=object, keep_default_na=False, skipinitialspace=True)
        else:
            raise BOMReadError(f"Unsupported BOM format: {suffix or 'unknown'}")
    except BOMReadError:
        raise
    except Exception as e:
        raise BOMReadError(f"Could not read BOM file: {e}") from e

    rows: List[RawRow] = []
    for record in df.to_dict(orient="records"):
        row = {str(key).strip(): _to_python(value) for key, value in record.items()}
        if all(value == "" for value in row.values()):
            continue
        rows.append(row)

    logger.info("Read %d BOM row(s) with columns %s", len(rows), list(df.columns))
    return rows
