from __future__ import annotations

import asyncio
import logging
from typing import Optional

from src.fieldreport.domain.models.dialogue import AudioArtifact
from src.fieldreport.domain.models.report import PersistenceOutcome, Report
from src.fieldreport.infra.storage.fallback import LocalFallbackLog
from src.fieldreport.infra.storage.reports import ReportStore, apply_storage_paths

logger = logging.getLogger(__name__)

DEGRADED_WARNING = "Failed to upload to cloud. Report saved locally."


class FallbackReportWriter:
    """Saves reports to the primary store, degrading to the local fallback log.

    ``save`` never raises for primary-store failures: the outcome reports
    whether the record reached the primary store or only the local log. A
    successful save clears any local record left by an earlier failed one.
    """

    def __init__(self, store: ReportStore, fallback: LocalFallbackLog) -> None:
        self._store = store
        self._fallback = fallback

    async def save(self, report: Report, audio: Optional[AudioArtifact] = None) -> PersistenceOutcome:
        try:
            result = await self._store.save(report, audio)
        except Exception:
            logger.exception("Primary report store failed for %s; writing local fallback", report.id)
            local = report.model_copy(update={"persisted": False, "saved_to_cloud": False})
            # A failing fallback write propagates: at that point data would be lost.
            await asyncio.to_thread(self._fallback.write, local, audio)
            return PersistenceOutcome(report=local, persisted=False, degraded=True, warning=DEGRADED_WARNING)

        if result.report_id != report.id:
            logger.warning("Report store returned id %s for report %s", result.report_id, report.id)
        if await asyncio.to_thread(self._fallback.discard, report.id):
            logger.info("Report %s reconciled; local fallback record removed", report.id)
        stored = apply_storage_paths(report, result.storage_paths, saved_to_cloud=True)
        return PersistenceOutcome(report=stored, persisted=True)
