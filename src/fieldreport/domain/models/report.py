from __future__ import annotations

import hashlib
from datetime import date, datetime
from typing import Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from src.fieldreport.domain.models.checklist import ChecklistSnapshot
from src.fieldreport.domain.models.dialogue import TranscriptArtifact


def derive_report_id(session_id: UUID | str, owner_id: str, report_date: date) -> str:
    """Return the stable report identifier for a session.

    The id only depends on its inputs so that retried persistence of the same
    session overwrites one record instead of creating duplicates.
    """

    digest = hashlib.sha256(f"{session_id}:{owner_id}:{report_date.isoformat()}".encode("utf-8")).hexdigest()
    return f"rpt_{report_date.strftime('%Y%m%d')}_{owner_id}_{digest[:12]}"


class AudioReference(BaseModel):
    path: Optional[str] = None
    mime_type: str
    size_bytes: int


class Report(BaseModel):
    id: str
    session_id: UUID
    conversation_id: Optional[str] = None
    owner_id: str
    owner_name: Optional[str] = None
    project_id: str
    project_name: Optional[str] = None
    project_location: Optional[str] = None
    report_date: date
    transcript: TranscriptArtifact
    transcript_path: Optional[str] = None
    audio: Optional[AudioReference] = None
    checklist: Optional[ChecklistSnapshot] = None
    persisted: bool = False
    saved_to_cloud: bool = False
    storage_paths: Dict[str, str] = Field(default_factory=dict)
    created_at: datetime

    @property
    def has_audio(self) -> bool:
        return self.audio is not None and self.audio.size_bytes > 0


class SaveResult(BaseModel):
    """What the primary report store returns for a successful save."""

    report_id: str
    storage_paths: Dict[str, str] = Field(default_factory=dict)


class PersistenceOutcome(BaseModel):
    """Result of persisting a report with local fallback."""

    report: Report
    persisted: bool
    degraded: bool = False
    warning: Optional[str] = None
