import io
import logging
import os
import re
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from datachat.config import PROMPT_CHAR_LIMIT

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".csv", ".xlsx", ".xls")
SPREADSHEET_EXTENSIONS = (".xlsx", ".xls")
NUMBER_PREFIX_RE = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


class UnsupportedFileError(ValueError):
    """Raised for uploads that are neither CSV nor Excel"""


def _extension(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lower()


def validate_filename(filename: str) -> None:
    if _extension(filename) not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFileError("Only CSV and Excel files are supported")


def read_upload(filename: str, content: bytes) -> str:
    """
    Turn an uploaded file into CSV text.

    CSV files are decoded as-is; spreadsheets are read with pandas and the
    first sheet's grid (header row included) is written back out as CSV.

    Args:
        filename: Original file name, used to pick the reader
        content: Raw file bytes

    Returns:
        The file contents as CSV text
    """
    validate_filename(filename)

    if _extension(filename) in SPREADSHEET_EXTENSIONS:
        df = pd.read_excel(io.BytesIO(content))
        return df.to_csv(index=False)

    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.warning("%s is not valid UTF-8, decoding as latin-1", filename)
        return content.decode("latin-1")


def prompt_text(text: Optional[str], limit: int = PROMPT_CHAR_LIMIT) -> str:
    """Truncate file text to the character budget used in prompts"""
    if not text:
        return ""
    return text[:limit]


def _split_line(line: str) -> List[str]:
    return [cell.strip().replace('"', "") for cell in line.split(",")]


def _coerce_number(value: str) -> Any:
    """Leading decimal prefix as a number (``"12abc"`` is 12), else the cell unchanged"""
    match = NUMBER_PREFIX_RE.match(value)
    if not match:
        return value

    prefix = match.group(0).strip()
    number = float(prefix)
    if np.isinf(number):
        return value
    if "." not in prefix and "e" not in prefix.lower():
        return int(prefix)
    return number


def parse_csv_rows(
    text: str, coerce_numbers: bool = False, limit: Optional[int] = None
) -> List[Dict[str, Any]]:
    """
    Naive CSV parsing: split on commas and strip quote characters.

    Quoted commas are not honoured. Missing trailing cells become empty
    strings. With ``coerce_numbers`` numeric-looking cells become int/float.
    """
    lines = [line for line in (text or "").splitlines() if line.strip()]
    if len(lines) < 2:
        return []

    headers = _split_line(lines[0])
    body = lines[1:] if limit is None else lines[1 : limit + 1]

    rows = []
    for line in body:
        values = _split_line(line)
        row = {}
        for index, header in enumerate(headers):
            value = values[index] if index < len(values) else ""
            row[header] = _coerce_number(value) if coerce_numbers else value
        rows.append(row)
    return rows


def csv_headers(text: str) -> List[str]:
    for line in (text or "").splitlines():
        if line.strip():
            return _split_line(line)
    return []


def load_dataframe(filename: str, content: bytes) -> pd.DataFrame:
    validate_filename(filename)
    if _extension(filename) in SPREADSHEET_EXTENSIONS:
        return pd.read_excel(io.BytesIO(content))
    return pd.read_csv(io.BytesIO(content))


def _json_safe(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (np.integer,)):
        return int(value)
    if isinstance(value, (np.floating, float)):
        return None if np.isnan(value) else float(value)
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return value


def build_preview(df: pd.DataFrame, rows: int = 5) -> Dict[str, Any]:
    """Preview data for the upload response"""
    return {
        "columns": [str(column) for column in df.columns],
        "rows": [
            [_json_safe(value) for value in record]
            for record in df.head(rows).itertuples(index=False, name=None)
        ],
        "totalRows": len(df),
        "totalColumns": len(df.columns),
    }


def describe_columns(df: pd.DataFrame) -> Dict[str, Dict[str, Any]]:
    datatypes = {}
    for column in df.columns:
        dtype = str(df[column].dtype)
        # Simplify datatype names for better readability
        if dtype.startswith("int"):
            simplified_type = "Integer"
        elif dtype.startswith("float"):
            simplified_type = "Float"
        elif dtype == "object" or dtype.startswith("str"):
            if df[column].dropna().apply(lambda x: isinstance(x, str)).all():
                simplified_type = "Text"
            else:
                simplified_type = "Mixed"
        elif dtype.startswith("datetime"):
            simplified_type = "DateTime"
        elif dtype == "bool":
            simplified_type = "Boolean"
        else:
            simplified_type = dtype.capitalize()

        datatypes[str(column)] = {
            "type": simplified_type,
            "raw_type": dtype,
            "null_count": int(df[column].isnull().sum()),
            "non_null_count": int(df[column].notna().sum()),
        }
    return datatypes
