from __future__ import annotations

from typing import Dict, Optional

from src.fieldreport.domain.models.report import Report
from src.fieldreport.infra.db.repositories import ReportRepository


class InMemoryReportRepository(ReportRepository):
    def __init__(self) -> None:
        self._reports: Dict[str, Report] = {}

    def get(self, report_id: str) -> Optional[Report]:
        return self._reports.get(report_id)

    def save(self, report: Report) -> None:
        self._reports[report.id] = report.model_copy(deep=True)


report_repository: ReportRepository = InMemoryReportRepository()
