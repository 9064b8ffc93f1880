from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from src.fieldreport.domain.models.report import Report
from src.fieldreport.infra.db.models import ReportORM
from src.fieldreport.infra.db.repositories import ReportRepository
from src.fieldreport.infra.db.session import SessionFactory


class SqlReportRepository(ReportRepository):
    """SQL-backed report index using a SessionFactory of SQLAlchemy sessions."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get(self, report_id: str) -> Optional[Report]:
        session = self._session_factory()
        try:
            orm = session.get(ReportORM, report_id)
            if orm is None:
                return None
            return orm.to_domain()
        finally:
            session.close()

    def save(self, report: Report) -> None:
        now = datetime.now(timezone.utc)
        session = self._session_factory()
        try:
            existing = session.get(ReportORM, report.id)
            if existing is None:
                session.add(ReportORM.from_domain(report, updated_at=now))
            else:
                existing.update_from_domain(report, updated_at=now)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
