import logging

from salesboard.constants import DEFAULT_CLIENT_NAME, FIRST_REPORT_VERSION
from salesboard.diagnosis import DiagnosisReport
from salesboard.store.base import REPORT_TEXT_FIELDS

logger = logging.getLogger(__name__)

# stored column -> API name
REPORT_API_NAMES = {
    "id": "id",
    "client_name": "clientName",
    "start_date": "startDate",
    "end_date": "endDate",
    "sale_analysis": "saleAnalysis",
    "sale_recommendation": "saleRecommendation",
    "prod_analysis": "prodAnalysis",
    "prod_recommendation": "prodRecommendation",
    "live_analysis": "liveAnalysis",
    "live_recommendation": "liveRecommendation",
    "summary_content": "summaryContent",
    "version": "version",
    "created_at": "createdAt",
}


def to_api_report(report: dict) -> dict:
    return {REPORT_API_NAMES.get(key, key): value for key, value in report.items()}


def from_api_texts(payload: dict) -> dict:
    """Report text fields from a request body, accepting API or column names."""
    texts = {}
    for name in REPORT_TEXT_FIELDS:
        api_name = REPORT_API_NAMES[name]
        if api_name in (payload or {}):
            texts[name] = payload[api_name]
        elif name in (payload or {}):
            texts[name] = payload[name]
    return texts


def report_texts(diagnosis: DiagnosisReport) -> dict:
    """Maps a diagnosis onto the text columns of a stored report."""
    return {
        "sale_analysis": diagnosis.sale.comment,
        "sale_recommendation": diagnosis.sale.action,
        "prod_analysis": diagnosis.prod.comment,
        "prod_recommendation": diagnosis.prod.action,
        "live_analysis": diagnosis.live.comment,
        "live_recommendation": diagnosis.live.action,
        "summary_content": diagnosis.summary,
    }


class ReportService:
    """
    Versioned analysis reports for a date range.

    Version 1 of a range is published automatically the first time its
    analysis is generated; later versions are published explicitly, usually
    with edited text.
    """

    def __init__(self, store, client_name: str = DEFAULT_CLIENT_NAME):
        self.store = store
        self.client_name = client_name

    def save(self, start, end, texts: dict, version: int = FIRST_REPORT_VERSION, client_name: str = None) -> dict:
        report = {
            "client_name": client_name or self.client_name,
            "start_date": start,
            "end_date": end,
            "version": int(version or FIRST_REPORT_VERSION),
        }
        report.update({name: texts.get(name) for name in REPORT_TEXT_FIELDS})
        return self.store.save_report(report)

    def auto_publish(self, start, end, diagnosis: DiagnosisReport):
        """
        Stores version 1 for the range unless it already exists.

        Returns:
            tuple: ``(report, created)``.
        """
        existing = self.store.find_report(start, end, FIRST_REPORT_VERSION)
        if existing:
            return existing, False

        report = self.save(start, end, report_texts(diagnosis))
        logger.info(f"Auto-published report v{FIRST_REPORT_VERSION} for {start}..{end}")
        return report, True

    def publish_new_version(self, start, end, diagnosis: DiagnosisReport, edits: dict = None) -> dict:
        """
        Stores the next version for the range.

        Args:
            start: First day of the range.
            end: Last day of the range.
            diagnosis (DiagnosisReport): The generated analysis.
            edits (dict, optional): Edited texts keyed by report column; blank values keep the generated text.

        Returns:
            dict: The stored report.
        """
        texts = report_texts(diagnosis)
        for name, value in (edits or {}).items():
            if name in texts and value:
                texts[name] = value

        version = self.store.latest_report_version(start, end) + 1
        report = self.save(start, end, texts, version=version)
        logger.info(f"Published report v{version} for {start}..{end}")
        return report

    def check(self, start, end, version: int = FIRST_REPORT_VERSION):
        return self.store.find_report(start, end, version or FIRST_REPORT_VERSION)

    def history(self) -> list:
        return self.store.list_reports()
