from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from src.fieldreport.config import settings
from src.fieldreport.domain.models.dialogue import AudioArtifact
from src.fieldreport.domain.models.report import Report

logger = logging.getLogger(__name__)


class LocalFallbackLog:
    """Local durable copy of reports the primary store could not accept.

    One JSON record per report id (``<report_id>.json``) holding the full report
    payload and ``savedToCloud: false``; the audio, if any, is written next to
    it. Rewriting the same report id replaces the record. Records are meant to
    be replayed into the primary store by a separate reconciliation job.
    """

    def __init__(self, directory: Path | None = None) -> None:
        self._dir: Path = directory or settings.fallback_dir

    @property
    def directory(self) -> Path:
        return self._dir

    def _record_path(self, report_id: str) -> Path:
        return self._dir / f"{report_id}.json"

    def write(self, report: Report, audio: Optional[AudioArtifact] = None) -> Path:
        self._dir.mkdir(parents=True, exist_ok=True)

        audio_file: Optional[str] = None
        if audio is not None and audio.size_bytes > 0:
            audio_path = self._dir / f"{report.id}.audio.{audio.extension}"
            _atomic_write(audio_path, audio.content)
            audio_file = audio_path.name

        record: Dict[str, Any] = {
            "reportId": report.id,
            "savedToCloud": False,
            "savedAt": datetime.now(timezone.utc).isoformat(),
            "audioFile": audio_file,
            "report": report.model_dump(mode="json"),
        }
        path = self._record_path(report.id)
        _atomic_write(path, json.dumps(record, indent=2).encode("utf-8"))
        logger.info("Report %s written to local fallback log at %s", report.id, path)
        return path

    def discard(self, report_id: str) -> bool:
        """Remove the record (and its audio) once the report reached the primary store.

        Returns whether a record existed.
        """

        path = self._record_path(report_id)
        if not path.exists():
            return False
        for audio_path in self._dir.glob(f"{report_id}.audio.*"):
            audio_path.unlink(missing_ok=True)
        path.unlink(missing_ok=True)
        return True

    def get(self, report_id: str) -> Optional[Dict[str, Any]]:
        path = self._record_path(report_id)
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    def pending(self) -> List[Dict[str, Any]]:
        """All records awaiting reconciliation, oldest first."""

        if not self._dir.exists():
            return []
        records = []
        for path in self._dir.glob("*.json"):
            try:
                with path.open("r", encoding="utf-8") as handle:
                    records.append(json.load(handle))
            except (OSError, json.JSONDecodeError):
                logger.exception("Unreadable fallback record %s", path)
        return sorted(records, key=lambda record: record.get("savedAt") or "")


def _atomic_write(path: Path, content: bytes) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_bytes(content)
    tmp_path.replace(path)


fallback_log = LocalFallbackLog()
