from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class ReportORM(Base):
    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str] = mapped_column(String, nullable=False)
    conversation_id: Mapped[str | None] = mapped_column(String, nullable=True)
    owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    project_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    report_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    transcript_path: Mapped[str | None] = mapped_column(String, nullable=True)
    audio_path: Mapped[str | None] = mapped_column(String, nullable=True)
    audio_size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Full report document as JSON. Columns above are the queryable index.
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def update_from_domain(self, report: "Report", updated_at: datetime) -> None:  # type: ignore[name-defined]
        self.session_id = str(report.session_id)
        self.conversation_id = report.conversation_id
        self.owner_id = report.owner_id
        self.project_id = report.project_id
        self.report_date = report.report_date
        self.status = report.transcript.status.value
        self.transcript_path = report.transcript_path
        self.audio_path = report.audio.path if report.audio else None
        self.audio_size_bytes = report.audio.size_bytes if report.audio else None
        self.payload = report.model_dump_json()
        self.created_at = report.created_at
        self.updated_at = updated_at

    @classmethod
    def from_domain(cls, report: "Report", updated_at: datetime) -> "ReportORM":  # type: ignore[name-defined]
        orm = cls(id=report.id)
        orm.update_from_domain(report, updated_at)
        return orm

    def to_domain(self) -> "Report":  # type: ignore[name-defined]
        from src.fieldreport.domain.models.report import Report

        return Report.model_validate_json(self.payload)
