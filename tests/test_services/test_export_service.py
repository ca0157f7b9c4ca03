"""
Tests for export_service CSV and Excel builders.
"""

import csv
import io

from openpyxl import load_workbook

from readiness.services import export_service

DASHBOARD = {
    "surveyPerformance": [
        {
            "surveyId": 7,
            "title": "Q3 pulse",
            "status": "active",
            "responses": 12,
            "completionRate": 80.0,
            "averageCompletionTime": 42.5,
        }
    ],
    "responsesByMonth": [{"month": "Jan 2026", "responses": 12}],
    "departmentBreakdown": {"IT": 9, "Unassigned": 3},
}
SUMMARY = [["Total Surveys", 1], ["Total Responses", 12]]


class TestCsvExport:
    def test_csv_has_bom_and_rows(self):
        buffer = export_service.export_csv(
            ["Name", "Answer"], [["Zoë", "Oui"], ["Bob", ""]]
        )
        raw = buffer.getvalue()

        assert raw.startswith(b"\xef\xbb\xbf")
        rows = list(csv.reader(io.StringIO(raw.decode("utf-8-sig"))))
        assert rows == [["Name", "Answer"], ["Zoë", "Oui"], ["Bob", ""]]

    def test_dashboard_csv_sections(self):
        text = export_service.export_dashboard_csv(DASHBOARD, SUMMARY).getvalue()
        rows = list(csv.reader(io.StringIO(text.decode("utf-8-sig"))))

        assert rows[0] == ["Metric", "Value"]
        assert rows[1] == ["Total Surveys", "1"]
        assert rows[3] == []
        assert rows[4][0] == "Survey ID"
        assert rows[5] == ["7", "Q3 pulse", "active", "12", "80.0", "42.5"]

    def test_formula_like_answers_are_quoted(self):
        buffer = export_service.export_csv(
            ["=Header", "Answer"],
            [["=HYPERLINK(\"http://x\")", "+1"], ["@SUM(A1)", -3], ["-2", "ok"]],
        )
        rows = list(csv.reader(io.StringIO(buffer.getvalue().decode("utf-8-sig"))))

        assert rows == [
            ["'=Header", "Answer"],
            ["'=HYPERLINK(\"http://x\")", "'+1"],
            ["'@SUM(A1)", "-3"],
            ["'-2", "ok"],
        ]


class TestExcelExport:
    def test_single_sheet_workbook(self):
        buffer = export_service.export_excel(
            ["Email", "Score"], [["a@example.com", 4]], title="Pulse: Q3/2026"
        )
        wb = load_workbook(buffer)

        ws = wb.active
        assert ws.title == "Pulse Q32026"
        assert ws["A1"].value == "Email"
        assert ws["A1"].font.bold is True
        assert ws["B2"].value == 4

    def test_long_titles_are_truncated(self):
        wb = load_workbook(export_service.export_excel(["A"], [], title="x" * 50))
        assert len(wb.active.title) == 31

    def test_dashboard_workbook_sheets(self):
        wb = load_workbook(export_service.export_dashboard_excel(DASHBOARD, SUMMARY))

        assert wb.sheetnames == ["Summary", "Surveys", "Monthly", "Departments"]
        assert wb["Summary"]["A3"].value == "Total Responses"
        assert wb["Surveys"]["B2"].value == "Q3 pulse"
        assert wb["Monthly"]["A2"].value == "Jan 2026"
        assert wb["Departments"]["A3"].value == "Unassigned"
        assert wb["Departments"]["B3"].value == 3

    def test_formula_like_text_stays_text(self):
        buffer = export_service.export_excel(
            ["Answer"], [["=1+1"], [5]], title="Pulse"
        )
        ws = load_workbook(buffer).active

        assert ws.cell(row=2, column=1).value == "=1+1"
        assert ws.cell(row=2, column=1).data_type == "s"
        assert ws.cell(row=3, column=1).value == 5
