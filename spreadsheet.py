"""Decode uploaded spreadsheets (CSV / Excel) into header lists and row dicts."""
import io
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# zip container (xlsx/xlsm) and OLE2 compound file (legacy xls)
WORKBOOK_SIGNATURES = (b"PK\x03\x04", b"\xd0\xcf\x11\xe0")


class SpreadsheetError(ValueError):
    pass


def _is_workbook(content: bytes) -> bool:
    return content.startswith(WORKBOOK_SIGNATURES)


def _claims_xlsx(filename: Optional[str], content_type: Optional[str]) -> bool:
    if filename and filename.lower().endswith((".xlsx", ".xlsm")):
        return True
    return (content_type or "").split(";")[0].strip().lower() == XLSX_CONTENT_TYPE


def read_frame(content: bytes, filename: Optional[str] = None, content_type: Optional[str] = None) -> pd.DataFrame:
    """Read the first sheet of ``content``; the first row holds the headers.

    The format is taken from the bytes, not the declared type: workbooks are
    recognised by their container signature and anything else is read as
    CSV. Browsers often label CSV files ``application/vnd.ms-excel``.
    """
    if not content:
        raise SpreadsheetError("Empty file")
    if not _is_workbook(content) and _claims_xlsx(filename, content_type):
        raise SpreadsheetError("Failed to read spreadsheet: not a valid Excel workbook")
    try:
        if _is_workbook(content):
            return pd.read_excel(io.BytesIO(content), sheet_name=0)
        return pd.read_csv(io.BytesIO(content))
    except Exception as e:
        raise SpreadsheetError(f"Failed to read spreadsheet: {e}") from e


def _plain(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (pd.Timestamp, datetime, date)):
        return value.isoformat()
    if hasattr(value, "item"):
        # numpy scalar
        return value.item()
    return value


def frame_rows(df: pd.DataFrame) -> List[Dict[str, Any]]:
    headers = [str(c) for c in df.columns]
    cleaned = df.astype(object).where(pd.notna(df), None)
    return [
        {header: _plain(value) for header, value in zip(headers, record)}
        for record in cleaned.itertuples(index=False, name=None)
    ]


def decode(content: bytes, filename: Optional[str] = None, content_type: Optional[str] = None) -> Tuple[List[str], List[Dict[str, Any]]]:
    """Return ``(headers, rows)`` for a spreadsheet payload."""
    df = read_frame(content, filename, content_type)
    return [str(c) for c in df.columns], frame_rows(df)


def read_headers(content: bytes, filename: Optional[str] = None, content_type: Optional[str] = None) -> List[str]:
    return decode(content, filename, content_type)[0]


def decode_rows(content: bytes, filename: Optional[str] = None, content_type: Optional[str] = None) -> List[Dict[str, Any]]:
    return decode(content, filename, content_type)[1]
