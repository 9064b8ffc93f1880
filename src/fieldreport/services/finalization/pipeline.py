"""Turns an ended voice session into a persisted report.

The voice backend finalizes transcript and audio asynchronously after the
conversation closes, so both are polled with their own bounded retry policy
(concurrently), then combined into a Report that is saved through the
fallback writer. Nothing in here is fatal to the operator: an unavailable
transcript becomes a placeholder, missing audio becomes ``audio=None`` and a
failed save lands in the local fallback log.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Set
from uuid import UUID

from pydantic import BaseModel

from src.fieldreport.config import settings
from src.fieldreport.domain.models.checklist import ChecklistSnapshot
from src.fieldreport.domain.models.dialogue import AudioArtifact, TranscriptArtifact, TranscriptStatus
from src.fieldreport.domain.models.report import AudioReference, PersistenceOutcome, Report, derive_report_id
from src.fieldreport.domain.models.session import Session
from src.fieldreport.errors import AudioUnavailable, InvalidSessionState, TranscriptUnavailable
from src.fieldreport.services.agent.backends import ConversationalAgentConnector
from src.fieldreport.services.audit.service import audit_service
from src.fieldreport.services.finalization.retry import PollOutcome, RetryPolicy
from src.fieldreport.services.finalization.writer import FallbackReportWriter

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class FinalizationPhase(str, Enum):
    WAITING = "WAITING"
    ACQUIRING = "ACQUIRING"
    UPLOADING = "UPLOADING"
    COMPLETED = "COMPLETED"
    DEGRADED = "DEGRADED"
    FAILED = "FAILED"


class FinalizationStatus(BaseModel):
    session_id: UUID
    phase: FinalizationPhase = FinalizationPhase.WAITING
    message: str = "Waiting for conversation to finalize..."
    transcript_attempts: int = 0
    audio_attempts: int = 0
    # Transcript and audio are fetched concurrently; each keeps its own progress line.
    transcript_message: Optional[str] = None
    audio_message: Optional[str] = None
    transcript_status: Optional[TranscriptStatus] = None
    has_audio: Optional[bool] = None
    report_id: Optional[str] = None
    persisted: Optional[bool] = None
    warning: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    @property
    def done(self) -> bool:
        return self.phase in {FinalizationPhase.COMPLETED, FinalizationPhase.DEGRADED, FinalizationPhase.FAILED}


def transcript_policy(max_attempts: int, delay_seconds: float) -> RetryPolicy[TranscriptArtifact]:
    return RetryPolicy(
        max_attempts=max_attempts,
        delay_seconds=delay_seconds,
        accept=lambda transcript: transcript.is_usable,
        abort=lambda transcript: transcript.status == TranscriptStatus.FAILED,
        name="transcript poll",
    )


def audio_policy(max_attempts: int, delay_seconds: float) -> RetryPolicy[Optional[AudioArtifact]]:
    return RetryPolicy(
        max_attempts=max_attempts,
        delay_seconds=delay_seconds,
        accept=lambda audio: audio is not None and audio.size_bytes > 0,
        name="audio poll",
    )


class FinalizationRun:
    """State of the finalization of one session."""

    def __init__(self, session: Session, checklist: Optional[ChecklistSnapshot] = None) -> None:
        self.session = session
        self.checklist = checklist
        self.status = FinalizationStatus(session_id=session.id, started_at=datetime.now(timezone.utc))
        self.transcript: Optional[TranscriptArtifact] = None
        self.audio: Optional[AudioArtifact] = None
        self.report: Optional[Report] = None
        self.outcome: Optional[PersistenceOutcome] = None
        self.task: Optional[asyncio.Task[FinalizationStatus]] = None

    async def wait(self) -> FinalizationStatus:
        if self.task is None:
            return self.status
        # Shielded: an abandoned waiter must not cancel the finalization itself.
        return await asyncio.shield(self.task)


class FinalizationPipeline:
    def __init__(
        self,
        connector: ConversationalAgentConnector,
        writer: FallbackReportWriter,
        *,
        transcript_retry: Optional[RetryPolicy[TranscriptArtifact]] = None,
        audio_retry: Optional[RetryPolicy[Optional[AudioArtifact]]] = None,
        initial_delay_seconds: Optional[float] = None,
        sleep: SleepFn = asyncio.sleep,
        on_status: Optional[Callable[[FinalizationStatus], None]] = None,
        max_finished_runs: Optional[int] = None,
    ) -> None:
        self._connector = connector
        self._writer = writer
        self._transcript_retry = transcript_retry or transcript_policy(
            settings.transcript_max_attempts, settings.transcript_retry_delay_seconds
        )
        self._audio_retry = audio_retry or audio_policy(settings.audio_max_attempts, settings.audio_retry_delay_seconds)
        self._initial_delay = (
            settings.finalize_initial_delay_seconds if initial_delay_seconds is None else initial_delay_seconds
        )
        self._sleep = sleep
        self._on_status = on_status
        self._runs: Dict[UUID, FinalizationRun] = {}
        self._max_finished_runs = (
            settings.finalization_runs_retained if max_finished_runs is None else max_finished_runs
        )
        self._tasks: Set[asyncio.Task] = set()

    def start(self, session: Session, checklist: Optional[ChecklistSnapshot] = None) -> FinalizationRun:
        """Schedule finalization of an ended session and return its run.

        Finalization happens once per session: starting an already started
        session returns the existing run.
        """

        existing = self._runs.get(session.id)
        if existing is not None:
            return existing

        run = FinalizationRun(session, checklist)
        self._runs[session.id] = run
        run.task = asyncio.create_task(self._finalize(run))
        self._tasks.add(run.task)
        run.task.add_done_callback(self._tasks.discard)
        return run

    def get_run(self, session_id: UUID) -> Optional[FinalizationRun]:
        return self._runs.get(session_id)

    def _evict_finished(self) -> None:
        """Forget the oldest finished runs beyond the retention limit. Active runs are kept."""

        finished = [session_id for session_id, run in self._runs.items() if run.status.done]
        for session_id in finished[: max(0, len(finished) - self._max_finished_runs)]:
            del self._runs[session_id]

    def _update(self, run: FinalizationRun, **changes) -> None:
        for name, value in changes.items():
            setattr(run.status, name, value)
        if "message" in changes:
            logger.info("Finalization %s: %s", run.session.id, run.status.message)
        if self._on_status is not None:
            self._on_status(run.status.model_copy())

    async def _finalize(self, run: FinalizationRun) -> FinalizationStatus:
        try:
            if self._initial_delay > 0:
                self._update(run, phase=FinalizationPhase.WAITING, message="Waiting for conversation to finalize...")
                await self._sleep(self._initial_delay)

            self._update(run, phase=FinalizationPhase.ACQUIRING, message="Downloading conversation data...")
            run.transcript, run.audio = await asyncio.gather(
                self.acquire_transcript(run),
                self.acquire_audio(run),
            )
            self._update(run, transcript_status=run.transcript.status, has_audio=run.audio is not None)

            await self.persist(run)
        except Exception:
            logger.exception("Finalization of session %s failed", run.session.id)
            self._update(
                run,
                phase=FinalizationPhase.FAILED,
                message="Error saving report",
                finished_at=datetime.now(timezone.utc),
            )
        self._evict_finished()
        return run.status

    async def acquire_transcript(self, run: FinalizationRun) -> TranscriptArtifact:
        """Poll for the finished transcript; fall back to a placeholder."""

        handle = run.session.handle

        def _on_attempt(attempt: int, max_attempts: int) -> None:
            message = f"Fetching transcript (attempt {attempt}/{max_attempts})..."
            self._update(run, transcript_attempts=attempt, transcript_message=message, message=message)

        outcome: PollOutcome[TranscriptArtifact] = await self._transcript_retry.run(
            lambda: self._connector.get_transcript(handle),
            on_attempt=_on_attempt,
            sleep=self._sleep,
        )
        try:
            transcript = _accepted_transcript(outcome, handle.conversation_id)
        except TranscriptUnavailable as exc:
            logger.warning("%s; saving report with the conversation id for later retrieval", exc)
            transcript = TranscriptArtifact.placeholder(handle.conversation_id)
        else:
            logger.info(
                "Transcript for %s received after %s attempt(s): %s events",
                handle.conversation_id,
                outcome.attempts,
                len(transcript.events),
            )
        self._update(run, transcript_status=transcript.status)
        return transcript

    async def acquire_audio(self, run: FinalizationRun) -> Optional[AudioArtifact]:
        """Poll for the conversation recording; ``None`` when there is none."""

        handle = run.session.handle

        def _on_attempt(attempt: int, max_attempts: int) -> None:
            message = f"Downloading audio (attempt {attempt}/{max_attempts})..."
            changes = {"audio_attempts": attempt, "audio_message": message}
            # The transcript line stays the headline until the transcript is settled.
            if run.status.transcript_status is not None:
                changes["message"] = message
            self._update(run, **changes)

        outcome: PollOutcome[Optional[AudioArtifact]] = await self._audio_retry.run(
            lambda: self._connector.get_audio(handle),
            on_attempt=_on_attempt,
            sleep=self._sleep,
        )
        try:
            audio = _accepted_audio(outcome, handle.conversation_id)
        except AudioUnavailable as exc:
            logger.warning("%s; continuing without audio", exc)
            return None

        logger.info("Audio for %s downloaded: %s bytes", handle.conversation_id, audio.size_bytes)
        return audio

    def assemble_report(self, run: FinalizationRun) -> Report:
        """Build the report for a run. Reuses the same report on later calls."""

        if run.report is not None:
            return run.report

        session = run.session
        context = session.context
        report_date = session.started_at.date()
        transcript = run.transcript or TranscriptArtifact.placeholder(session.handle.conversation_id)
        audio = run.audio
        run.report = Report(
            id=derive_report_id(session.id, context.owner_id, report_date),
            session_id=session.id,
            conversation_id=session.handle.conversation_id,
            owner_id=context.owner_id,
            owner_name=context.owner_name,
            project_id=context.project_id,
            project_name=context.project_name,
            project_location=context.project_location,
            report_date=report_date,
            transcript=transcript,
            audio=(
                AudioReference(mime_type=audio.mime_type, size_bytes=audio.size_bytes) if audio is not None else None
            ),
            checklist=run.checklist,
            created_at=session.ended_at or datetime.now(timezone.utc),
        )
        return run.report

    async def persist(self, run: FinalizationRun) -> PersistenceOutcome:
        report = self.assemble_report(run)
        self._update(run, phase=FinalizationPhase.UPLOADING, message="Uploading report...", report_id=report.id)

        outcome = await self._writer.save(report, run.audio)
        run.outcome = outcome

        if outcome.persisted:
            # The bytes are in the store now; keep only the stored reference.
            run.report = outcome.report
            run.audio = None
            self._update(
                run,
                phase=FinalizationPhase.COMPLETED,
                message="Report saved",
                persisted=True,
                warning=None,
                finished_at=datetime.now(timezone.utc),
            )
        else:
            self._update(
                run,
                phase=FinalizationPhase.DEGRADED,
                message="Report saved locally (cloud upload failed)",
                persisted=False,
                warning=outcome.warning,
                finished_at=datetime.now(timezone.utc),
            )

        audit_service.report_persisted(outcome, session_id=run.session.id)
        return outcome

    async def retry_persistence(self, session_id: UUID) -> PersistenceOutcome:
        """Persist an already finalized session again with the same artifacts."""

        run = self._runs.get(session_id)
        if run is None:
            raise KeyError(session_id)
        if not run.status.done or (run.status.phase == FinalizationPhase.FAILED and run.transcript is None):
            raise InvalidSessionState(f"Finalization of session {session_id} has not produced a report yet")
        return await self.persist(run)


def _accepted_transcript(outcome: PollOutcome[TranscriptArtifact], conversation_id: str) -> TranscriptArtifact:
    if outcome.accepted and outcome.value is not None:
        return outcome.value
    if outcome.aborted:
        raise TranscriptUnavailable(f"Transcript processing failed on the voice backend for {conversation_id}")
    if outcome.last_error is not None:
        raise TranscriptUnavailable(
            f"Transcript for {conversation_id} unavailable after {outcome.attempts} attempts: {outcome.last_error}"
        )
    raise TranscriptUnavailable(f"Transcript for {conversation_id} not ready after {outcome.attempts} attempts")


def _accepted_audio(outcome: PollOutcome[Optional[AudioArtifact]], conversation_id: str) -> AudioArtifact:
    if outcome.accepted and outcome.value is not None:
        return outcome.value
    if outcome.last_error is not None:
        raise AudioUnavailable(f"Audio fetch for {conversation_id} failed: {outcome.last_error}")
    raise AudioUnavailable(f"No audio available for {conversation_id} after {outcome.attempts} attempts")
