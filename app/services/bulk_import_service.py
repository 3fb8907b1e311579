"""
Bulk Requirement Import Service

Spreadsheet (.xlsx / .csv) import of requirements for one system.

Mapping rules:
  - Header row: first row with a cell containing "depth", "기능" or
    "feature" (case-insensitive); row 0 when none does
  - Columns: fuzzy substring match on the header text
        depth_0..3    "0depth" / "0 depth" … "3depth" / "3 depth"
        feature_name  "기능" / "feature"
        original_spec "상세" / "detail" / "spec"
    Neither feature_name nor depth_0 found → the sheet is rejected
  - Merged cells: blank depth cells are filled down from the last value
    in that column; a new value at one level clears every deeper level
  - Rows without original_spec after mapping are separator / blank rows
    and are discarded
"""

import csv
import io
import logging
import re

from openpyxl import load_workbook

from app.services.requirement_service import bulk_create_requirements

logger = logging.getLogger(__name__)


class BulkImportError(Exception):
    """Bulk import error."""
    def __init__(self, message, status_code=400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


HEADER_PATTERN = re.compile(r"depth|기능|feature", re.IGNORECASE)

COLUMN_KEYWORDS = {
    "depth_0": ("0depth", "0 depth"),
    "depth_1": ("1depth", "1 depth"),
    "depth_2": ("2depth", "2 depth"),
    "depth_3": ("3depth", "3 depth"),
    "feature_name": ("기능", "feature"),
    "original_spec": ("상세", "detail", "spec"),
}

DEPTH_KEYS = ("depth_0", "depth_1", "depth_2", "depth_3")

PREVIEW_ROWS = 20


def _cell(value) -> str:
    return "" if value is None else str(value).strip()


# ═══════════════════════════════════════════════════════════════
# Reading
# ═══════════════════════════════════════════════════════════════

def read_sheet(file_content: bytes, filename: str) -> list[list[str]]:
    """First worksheet (xlsx) or the whole file (csv) as rows of strings."""
    name = (filename or "").lower()
    if name.endswith(".xlsx"):
        try:
            workbook = load_workbook(io.BytesIO(file_content), read_only=True, data_only=True)
        except Exception as exc:
            raise BulkImportError(f"Could not read workbook: {exc}")
        try:
            sheet = workbook.worksheets[0]
            return [[_cell(v) for v in row] for row in sheet.iter_rows(values_only=True)]
        finally:
            workbook.close()
    if name.endswith(".csv"):
        if isinstance(file_content, bytes):
            file_content = file_content.decode("utf-8-sig")  # Handle BOM
        return [[_cell(v) for v in row] for row in csv.reader(io.StringIO(file_content))]
    raise BulkImportError("Unsupported file type. Upload an .xlsx or .csv file.")


# ═══════════════════════════════════════════════════════════════
# Mapping
# ═══════════════════════════════════════════════════════════════

def locate_header(rows) -> int:
    for index, row in enumerate(rows):
        if any(HEADER_PATTERN.search(_cell(c)) for c in row):
            return index
    return 0


def _find_column(header, keywords) -> int:
    for index, text in enumerate(header):
        lowered = _cell(text).lower()
        if any(kw.lower() in lowered for kw in keywords):
            return index
    return -1


def build_column_map(header) -> dict:
    col_map = {key: _find_column(header, kws) for key, kws in COLUMN_KEYWORDS.items()}
    if col_map["feature_name"] < 0 and col_map["depth_0"] < 0:
        raise BulkImportError(
            'Columns not recognised. The header row must contain "기능"/"feature" or "Depth".'
        )
    return col_map


def fill_down_depths(rows, col_map) -> list[list[str]]:
    """Fill blank depth cells from above; a new value clears deeper levels."""
    indexes = [col_map.get(k, -1) for k in DEPTH_KEYS]
    last = [""] * len(DEPTH_KEYS)
    filled_rows = []
    for row in rows:
        filled = list(row)
        for level, idx in enumerate(indexes):
            if idx < 0:
                continue
            value = _cell(filled[idx]) if idx < len(filled) else ""
            if value:
                last[level] = value
                for deeper in range(level + 1, len(last)):
                    last[deeper] = ""
            elif last[level]:
                while len(filled) <= idx:
                    filled.append("")
                filled[idx] = last[level]
        filled_rows.append(filled)
    return filled_rows


def map_row(row, col_map) -> dict:
    def get(key):
        idx = col_map.get(key, -1)
        if idx < 0 or idx >= len(row):
            return None
        return _cell(row[idx]) or None
    return {key: get(key) for key in COLUMN_KEYWORDS}


def map_rows(rows) -> tuple[dict, list[str], list[dict]]:
    """(col_map, header, importable rows) for a raw sheet."""
    if not rows:
        raise BulkImportError("The file is empty.")
    header_idx = locate_header(rows)
    header = [_cell(c) for c in rows[header_idx]]
    col_map = build_column_map(header)
    data_rows = fill_down_depths(rows[header_idx + 1:], col_map)
    mapped = [map_row(r, col_map) for r in data_rows]
    return col_map, header, [m for m in mapped if m["original_spec"]]


# ═══════════════════════════════════════════════════════════════
# Entry points
# ═══════════════════════════════════════════════════════════════

def _detected_columns(col_map, header) -> dict:
    return {key: (header[idx] if idx >= 0 else None) for key, idx in col_map.items()}


def preview_import(file_content: bytes, filename: str) -> dict:
    rows = read_sheet(file_content, filename)
    col_map, header, mapped = map_rows(rows)
    return {
        "columns": _detected_columns(col_map, header),
        "total": len(mapped),
        "rows": mapped[:PREVIEW_ROWS],
    }


def import_requirements(system_id, file_content: bytes, filename: str) -> dict:
    """Map the sheet and create its requirements. Caller commits."""
    rows = read_sheet(file_content, filename)
    col_map, header, mapped = map_rows(rows)
    created = bulk_create_requirements(system_id, mapped)
    logger.info("Imported %d requirements for system %s from %s", created, system_id, filename)
    return {"columns": _detected_columns(col_map, header), "created": created}
