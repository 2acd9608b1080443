import datetime

from salesboard.diagnosis import DiagnosisReport, DiagnosisSection
from salesboard.reports import ReportService, from_api_texts, report_texts, to_api_report

START = datetime.date(2026, 1, 1)
END = datetime.date(2026, 1, 31)


def _diagnosis():
    return DiagnosisReport(
        sale=DiagnosisSection(10.0, "sale comment", "sale action", 1100.0, 1000.0),
        prod=DiagnosisSection(5.0, "prod comment", "prod action", 420.0, 400.0),
        live=DiagnosisSection(-20.0, "live comment", "live action", 400.0, 500.0),
        summary="summary text",
        roi={"curr": 5.0, "prev": 4.0, "change": 25.0},
    )


class TestReportService:
    def test_auto_publish_once(self, sqlite_store):
        service = ReportService(sqlite_store, "Test Shop")
        report, created = service.auto_publish(START, END, _diagnosis())
        assert created is True
        assert report["version"] == 1
        assert report["client_name"] == "Test Shop"
        assert report["sale_analysis"] == "sale comment"
        assert report["live_recommendation"] == "live action"

        again, created = service.auto_publish(START, END, _diagnosis())
        assert created is False
        assert again["id"] == report["id"]

    def test_publish_new_version_with_edits(self, sqlite_store):
        service = ReportService(sqlite_store)
        service.auto_publish(START, END, _diagnosis())

        report = service.publish_new_version(START, END, _diagnosis(),
                                             {"summary_content": "edited summary", "sale_analysis": ""})
        assert report["version"] == 2
        assert report["summary_content"] == "edited summary"
        assert report["sale_analysis"] == "sale comment"

    def test_first_explicit_publish_is_version_one(self, sqlite_store):
        report = ReportService(sqlite_store).publish_new_version(START, END, _diagnosis())
        assert report["version"] == 1

    def test_check_and_history(self, sqlite_store):
        service = ReportService(sqlite_store)
        assert service.check(START, END) is None
        service.save(START, END, {"summary_content": "manual"}, version=3)
        assert service.check(START, END, 3)["summary_content"] == "manual"
        assert [report["version"] for report in service.history()] == [3]

    def test_ranges_are_versioned_separately(self, sqlite_store):
        service = ReportService(sqlite_store)
        service.auto_publish(START, END, _diagnosis())
        other = service.publish_new_version(START, datetime.date(2026, 1, 15), _diagnosis())
        assert other["version"] == 1


def test_report_texts():
    texts = report_texts(_diagnosis())
    assert texts["prod_analysis"] == "prod comment"
    assert texts["summary_content"] == "summary text"


def test_api_names():
    texts = from_api_texts({"saleAnalysis": "a", "summary_content": "b", "unknown": "c"})
    assert texts == {"sale_analysis": "a", "summary_content": "b"}
    assert to_api_report({"start_date": START, "version": 2}) == {"startDate": START, "version": 2}
