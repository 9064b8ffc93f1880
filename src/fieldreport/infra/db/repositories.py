from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from src.fieldreport.domain.models.report import Report


class ReportRepository(ABC):
    """Metadata index of persisted reports, keyed by report id."""

    @abstractmethod
    def get(self, report_id: str) -> Optional[Report]:
        raise NotImplementedError

    @abstractmethod
    def save(self, report: Report) -> None:
        """Insert the report, or replace the existing record with the same id."""
        raise NotImplementedError
