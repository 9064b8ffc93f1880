"""Structured audit trail for voice sessions and report persistence.

Events are single JSON lines on the ``audit`` logger. They carry identifiers,
states and counts only, never transcript text or audio.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from src.fieldreport.domain.models.checklist import ChecklistSnapshot
from src.fieldreport.domain.models.report import PersistenceOutcome
from src.fieldreport.domain.models.session import ReportContext, Session

logger = logging.getLogger("audit")


@dataclass
class AuditEvent:
    timestamp: str
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    owner_id: Optional[str] = None
    project_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class AuditService:
    def session_started(self, session: Session) -> None:
        self._emit(
            "start_session",
            "voice_session",
            str(session.id),
            session.context,
            {"conversation_id": session.handle.conversation_id, "agent_id": session.handle.agent_id},
        )

    def session_start_failed(self, context: ReportContext, reason: str) -> None:
        self._emit("start_session_failed", "voice_session", None, context, {"reason": reason})

    def session_ended(self, session: Session, checklist: Optional[ChecklistSnapshot]) -> None:
        details: Dict[str, Any] = {"conversation_id": session.handle.conversation_id}
        if session.ended_at is not None:
            details["duration_seconds"] = round((session.ended_at - session.started_at).total_seconds(), 1)
        if checklist is not None:
            summary = checklist.summary
            details.update(
                required_completed=summary.required_completed,
                required_total=summary.required_total,
                optional_completed=summary.optional_completed,
                all_required_completed=summary.all_required_completed,
            )
        self._emit("end_session", "voice_session", str(session.id), session.context, details)

    def report_persisted(self, outcome: PersistenceOutcome, *, session_id: UUID) -> None:
        """Record where a report ended up; degraded saves are flagged for reconciliation."""

        report = outcome.report
        self._emit(
            "persist_report_degraded" if outcome.degraded else "persist_report",
            "report",
            report.id,
            ReportContext(owner_id=report.owner_id, project_id=report.project_id),
            {
                "session_id": str(session_id),
                "report_date": report.report_date.isoformat(),
                "persisted": outcome.persisted,
                "transcript_status": report.transcript.status.value,
                "transcript_events": len(report.transcript.events),
                "has_audio": report.has_audio,
            },
        )

    def _emit(
        self,
        action: str,
        resource_type: str,
        resource_id: Optional[str],
        context: ReportContext,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        event = AuditEvent(
            timestamp=datetime.now(timezone.utc).isoformat(),
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            owner_id=context.owner_id,
            project_id=context.project_id,
            details=details,
        )
        logger.info(json.dumps(asdict(event), default=str))


audit_service = AuditService()
