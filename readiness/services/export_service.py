"""
Export service — generate CSV and Excel files from tabular data.

All export functions return a BytesIO buffer ready to be sent as
a Flask response with the appropriate content type.
"""

import csv
import io
import logging

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

logger = logging.getLogger(__name__)

CSV_CONTENT_TYPE = "text/csv; charset=utf-8"
XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
EXPORT_FORMATS = ("csv", "xlsx")

# Excel header styling constants.
_HEADER_FONT = Font(bold=True, color="FFFFFF")
_HEADER_FILL = PatternFill(start_color="2B579A", end_color="2B579A", fill_type="solid")
_HEADER_ALIGN = Alignment(horizontal="center", wrap_text=True)

# Excel limits sheet titles to 31 characters.
_MAX_SHEET_TITLE = 31

# Leading characters spreadsheets read as the start of a formula.
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")

_SURVEY_HEADERS = [
    "Survey ID",
    "Title",
    "Status",
    "Responses",
    "Completion Rate (%)",
    "Avg Time (s)",
]


# =========================================================================
# CSV Exports
# =========================================================================


def export_csv(headers: list[str], rows: list[list]) -> io.BytesIO:
    """
    Write one table to CSV.

    The BOM in ``utf-8-sig`` lets Excel open non-ASCII answers correctly.
    """
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([_csv_safe(h) for h in headers])
    for row in rows:
        writer.writerow([_csv_safe(value) for value in row])

    buffer = io.BytesIO()
    buffer.write(output.getvalue().encode("utf-8-sig"))
    buffer.seek(0)
    return buffer


def export_dashboard_csv(dashboard: dict, summary: list[list]) -> io.BytesIO:
    """Headline metrics followed by per-survey performance."""
    output = io.StringIO()
    writer = csv.writer(output)

    writer.writerow(["Metric", "Value"])
    writer.writerows(summary)
    writer.writerow([])

    writer.writerow(_SURVEY_HEADERS)
    for item in dashboard["surveyPerformance"]:
        writer.writerow(
            [
                item["surveyId"],
                _csv_safe(item["title"]),
                item["status"],
                item["responses"],
                item["completionRate"],
                item["averageCompletionTime"],
            ]
        )

    buffer = io.BytesIO()
    buffer.write(output.getvalue().encode("utf-8-sig"))
    buffer.seek(0)
    return buffer


# =========================================================================
# Excel Exports
# =========================================================================


def export_excel(headers: list[str], rows: list[list], title: str) -> io.BytesIO:
    """Write one table to a single-sheet workbook."""
    wb = Workbook()
    ws = wb.active
    ws.title = _sheet_title(title)

    _write_header_row(ws, headers)
    for row_idx, row in enumerate(rows, start=2):
        for col_idx, value in enumerate(row, start=1):
            _write_cell(ws, row_idx, col_idx, value)

    _auto_fit_columns(ws)

    buffer = io.BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return buffer


def export_dashboard_excel(dashboard: dict, summary: list[list]) -> io.BytesIO:
    """
    Dashboard workbook: Summary, Surveys, Monthly and Departments sheets.
    """
    wb = Workbook()

    ws = wb.active
    ws.title = "Summary"
    _write_header_row(ws, ["Metric", "Value"])
    for row_idx, (metric, value) in enumerate(summary, start=2):
        ws.cell(row=row_idx, column=1, value=metric)
        ws.cell(row=row_idx, column=2, value=value)
    _auto_fit_columns(ws)

    ws = wb.create_sheet("Surveys")
    _write_header_row(ws, _SURVEY_HEADERS)
    for row_idx, item in enumerate(dashboard["surveyPerformance"], start=2):
        ws.cell(row=row_idx, column=1, value=item["surveyId"])
        _write_cell(ws, row_idx, 2, item["title"])
        ws.cell(row=row_idx, column=3, value=item["status"])
        ws.cell(row=row_idx, column=4, value=item["responses"])
        ws.cell(row=row_idx, column=5, value=item["completionRate"])
        ws.cell(row=row_idx, column=6, value=item["averageCompletionTime"])
    _auto_fit_columns(ws)

    ws = wb.create_sheet("Monthly")
    _write_header_row(ws, ["Month", "Responses"])
    for row_idx, item in enumerate(dashboard["responsesByMonth"], start=2):
        ws.cell(row=row_idx, column=1, value=item["month"])
        ws.cell(row=row_idx, column=2, value=item["responses"])
    _auto_fit_columns(ws)

    ws = wb.create_sheet("Departments")
    _write_header_row(ws, ["Department", "Responses"])
    for row_idx, (department, count) in enumerate(
        dashboard["departmentBreakdown"].items(), start=2
    ):
        _write_cell(ws, row_idx, 1, department)
        ws.cell(row=row_idx, column=2, value=count)
    _auto_fit_columns(ws)

    buffer = io.BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return buffer


# =========================================================================
# Internal helpers
# =========================================================================


def _csv_safe(value):
    """Quote text that a spreadsheet would otherwise evaluate as a formula."""
    if isinstance(value, str) and value.startswith(_FORMULA_PREFIXES):
        return "'" + value
    return value


def _write_cell(ws, row: int, column: int, value):
    """Write a cell, keeping text that looks like a formula as plain text."""
    cell = ws.cell(row=row, column=column, value=value)
    if cell.data_type == "f":
        cell.data_type = "s"
    return cell


def _sheet_title(title: str) -> str:
    cleaned = "".join(ch for ch in title if ch not in "[]:*?/\\").strip()
    return (cleaned or "Export")[:_MAX_SHEET_TITLE]


def _write_header_row(ws, headers: list[str]) -> None:
    """Write a styled header row to an Excel worksheet."""
    for col_idx, header in enumerate(headers, start=1):
        cell = _write_cell(ws, 1, col_idx, header)
        cell.font = _HEADER_FONT
        cell.fill = _HEADER_FILL
        cell.alignment = _HEADER_ALIGN


def _auto_fit_columns(ws) -> None:
    """Auto-fit column widths based on content (approximate)."""
    for col in ws.columns:
        max_length = 0
        col_letter = get_column_letter(col[0].column)
        for cell in col:
            if cell.value:
                max_length = max(max_length, len(str(cell.value)))
        ws.column_dimensions[col_letter].width = min(max_length + 4, 40)
