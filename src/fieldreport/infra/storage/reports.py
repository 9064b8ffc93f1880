from __future__ import annotations

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from src.fieldreport.config import settings
from src.fieldreport.domain.models.dialogue import AudioArtifact
from src.fieldreport.domain.models.report import Report, SaveResult
from src.fieldreport.errors import PersistenceError
from src.fieldreport.infra.db import inmemory as inmemory_repos
from src.fieldreport.infra.db.repositories import ReportRepository
from src.fieldreport.infra.storage.objects import (
    LocalObjectStorageBackend,
    ObjectStorageBackend,
    audio_key,
    transcript_key,
)

logger = logging.getLogger(__name__)


class ReportStore(ABC):
    """Durable storage for finished reports plus their metadata index."""

    @abstractmethod
    async def save(self, report: Report, audio: Optional[AudioArtifact] = None) -> SaveResult:
        """Store the report and its audio.

        Saving a report id that already exists replaces the stored record.
        Raises PersistenceError when the store cannot be written.
        """

    @abstractmethod
    async def fetch_report(self, report_id: str) -> Optional[Report]:
        """Return the stored report record, or ``None`` if unknown."""


class ObjectReportStore(ReportStore):
    """Writes transcript and audio objects, then upserts the metadata record."""

    def __init__(
        self,
        storage: ObjectStorageBackend | None = None,
        *,
        repository: ReportRepository | None = None,
        prefix: str | None = None,
    ) -> None:
        self._storage = storage or LocalObjectStorageBackend()
        self._repository = repository
        self._prefix = prefix or settings.report_storage_prefix

    @property
    def repository(self) -> ReportRepository:
        # Resolved per call so a SQL repository swapped in at startup is used.
        return self._repository or inmemory_repos.report_repository

    async def save(self, report: Report, audio: Optional[AudioArtifact] = None) -> SaveResult:
        # Filesystem and database writes are blocking; keep them off the event loop.
        return await asyncio.to_thread(self._save, report, audio)

    def _save(self, report: Report, audio: Optional[AudioArtifact]) -> SaveResult:
        paths: Dict[str, str] = {}
        try:
            key = transcript_key(self._prefix, report.project_id, report.report_date, report.id)
            paths["transcript"] = self._storage.put_object(
                key,
                report.transcript.model_dump_json(indent=2).encode("utf-8"),
                content_type="application/json",
            )

            if audio is not None and audio.size_bytes > 0:
                key = audio_key(self._prefix, report.project_id, report.report_date, report.id, audio.extension)
                paths["audio"] = self._storage.put_object(key, audio.content, content_type=audio.mime_type)

            self.repository.save(apply_storage_paths(report, paths, saved_to_cloud=True))
        except (OSError, ValueError, SQLAlchemyError) as exc:
            raise PersistenceError(f"Failed to store report {report.id}: {exc}") from exc

        logger.info("Report %s stored (%s)", report.id, ", ".join(sorted(paths)))
        return SaveResult(report_id=report.id, storage_paths=paths)

    async def fetch_report(self, report_id: str) -> Optional[Report]:
        return await asyncio.to_thread(self.repository.get, report_id)


class HttpReportStore(ReportStore):
    """Report store backed by the remote report API.

    ``POST /reports`` takes ``{report, audio: {data, contentType}}`` and returns
    ``{reportId, storagePaths}``; ``GET /reports/{id}`` returns the record.
    """

    def __init__(self, base_url: str | None = None, *, client: httpx.AsyncClient | None = None) -> None:
        url = base_url or settings.report_api_base_url
        if not url:
            raise ValueError("REPORT_API_BASE_URL must be set to use HttpReportStore")
        self._base_url = url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=30.0)

    async def save(self, report: Report, audio: Optional[AudioArtifact] = None) -> SaveResult:
        body = {
            "report": report.model_dump(mode="json"),
            "audio": (
                {"data": base64.b64encode(audio.content).decode("ascii"), "contentType": audio.mime_type}
                if audio is not None and audio.size_bytes > 0
                else None
            ),
        }
        try:
            response = await self._client.post(f"{self._base_url}/reports", json=body)
            response.raise_for_status()
            result = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise PersistenceError(f"Report API rejected report {report.id}: {exc}") from exc

        return SaveResult(
            report_id=result.get("reportId") or report.id,
            storage_paths=result.get("storagePaths") or {},
        )

    async def fetch_report(self, report_id: str) -> Optional[Report]:
        response = await self._client.get(f"{self._base_url}/reports/{report_id}")
        if response.status_code == httpx.codes.NOT_FOUND:
            return None
        response.raise_for_status()
        return Report.model_validate(response.json())


def apply_storage_paths(report: Report, paths: Dict[str, str], *, saved_to_cloud: bool) -> Report:
    """Return a copy of ``report`` pointing at its stored transcript and audio."""

    audio = report.audio
    if audio is not None and "audio" in paths:
        audio = audio.model_copy(update={"path": paths["audio"]})
    return report.model_copy(
        update={
            "storage_paths": {**report.storage_paths, **paths},
            "transcript_path": paths.get("transcript", report.transcript_path),
            "audio": audio,
            "persisted": saved_to_cloud,
            "saved_to_cloud": saved_to_cloud,
        }
    )


def get_report_store_from_env() -> ReportStore:
    """Select a report store based on the REPORT_STORE_BACKEND environment variable.

    - REPORT_STORE_BACKEND=http → HttpReportStore
    - Anything else (or unset) → ObjectReportStore on the local filesystem
    """

    backend_name = settings.report_store_backend.lower()
    if backend_name == "http":
        return HttpReportStore()
    return ObjectReportStore()
