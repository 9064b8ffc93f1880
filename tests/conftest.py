from __future__ import annotations

import asyncio
from typing import AsyncIterator, List, Optional, Sequence, Union

import pytest

from src.fieldreport.domain.models.checklist import ChecklistDefinition
from src.fieldreport.domain.models.dialogue import AudioArtifact, DialogueEvent, TranscriptArtifact
from src.fieldreport.domain.models.report import Report, SaveResult
from src.fieldreport.domain.models.session import AgentSessionHandle, ReportContext
from src.fieldreport.errors import PersistenceError
from src.fieldreport.infra.db.inmemory import InMemoryReportRepository
from src.fieldreport.infra.storage.fallback import LocalFallbackLog
from src.fieldreport.infra.storage.objects import LocalObjectStorageBackend
from src.fieldreport.infra.storage.reports import ObjectReportStore, ReportStore
from src.fieldreport.services.agent.backends import EventRelay
from src.fieldreport.services.checklist.config import build_definition
from src.fieldreport.services.finalization.pipeline import FinalizationPipeline, audio_policy, transcript_policy
from src.fieldreport.services.finalization.writer import FallbackReportWriter
from src.fieldreport.services.session.service import SessionService

TranscriptStep = Union[TranscriptArtifact, Exception]
AudioStep = Union[Optional[AudioArtifact], Exception]


def transcript(status: str, *messages: str, conversation_id: str = "conv-1") -> TranscriptArtifact:
    return TranscriptArtifact(
        status=status,
        events=[DialogueEvent(role="user", payload={"message": text}) for text in messages],
        conversation_id=conversation_id,
    )


class ScriptedConnector:
    """Connector whose transcript and audio polls follow a script.

    The last scripted step repeats once the script is used up.
    """

    def __init__(
        self,
        *,
        transcripts: Sequence[TranscriptStep] = (),
        audio: Sequence[AudioStep] = (),
        connect_error: Optional[Exception] = None,
        close_error: Optional[Exception] = None,
    ) -> None:
        self.transcripts: List[TranscriptStep] = list(transcripts) or [transcript("done", "hello")]
        self.audio: List[AudioStep] = list(audio) or [None]
        self.connect_error = connect_error
        self.close_error = close_error
        self.transcript_calls = 0
        self.audio_calls = 0
        self.closed: List[str] = []
        self.connected = 0
        self.transcript_gate: Optional[asyncio.Event] = None
        self._relay = EventRelay()

    async def connect(self, agent_id: str, context: ReportContext) -> AgentSessionHandle:
        await asyncio.sleep(0)
        if self.connect_error is not None:
            raise self.connect_error
        self.connected += 1
        conversation_id = f"conv-{self.connected}"
        self._relay.open(conversation_id)
        return AgentSessionHandle(conversation_id=conversation_id, agent_id=agent_id)

    async def close(self, handle: AgentSessionHandle) -> None:
        self._relay.close(handle.conversation_id)
        self.closed.append(handle.conversation_id)
        if self.close_error is not None:
            raise self.close_error

    def stream_events(self, handle: AgentSessionHandle) -> AsyncIterator[DialogueEvent]:
        return self._relay.stream(handle.conversation_id)

    def publish(self, handle: AgentSessionHandle, event: DialogueEvent) -> None:
        self._relay.publish(handle.conversation_id, event)

    async def get_transcript(self, handle: AgentSessionHandle) -> TranscriptArtifact:
        if self.transcript_gate is not None:
            await self.transcript_gate.wait()
        step = self.transcripts[min(self.transcript_calls, len(self.transcripts) - 1)]
        self.transcript_calls += 1
        if isinstance(step, Exception):
            raise step
        return step

    async def get_audio(self, handle: AgentSessionHandle) -> Optional[AudioArtifact]:
        step = self.audio[min(self.audio_calls, len(self.audio) - 1)]
        self.audio_calls += 1
        if isinstance(step, Exception):
            raise step
        return step


class FlakyReportStore(ReportStore):
    """Fails the first ``failures`` saves, then delegates."""

    def __init__(self, inner: ReportStore, failures: int = 1) -> None:
        self.inner = inner
        self.failures = failures
        self.calls = 0

    async def save(self, report: Report, audio: Optional[AudioArtifact] = None) -> SaveResult:
        self.calls += 1
        if self.calls <= self.failures:
            raise PersistenceError("report store unreachable")
        return await self.inner.save(report, audio)

    async def fetch_report(self, report_id: str) -> Optional[Report]:
        return await self.inner.fetch_report(report_id)


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def make_pipeline(
    connector,
    store: ReportStore,
    fallback: LocalFallbackLog,
    *,
    sleep: Optional[SleepRecorder] = None,
    max_attempts: int = 6,
) -> FinalizationPipeline:
    return FinalizationPipeline(
        connector,
        FallbackReportWriter(store, fallback),
        transcript_retry=transcript_policy(max_attempts, 5),
        audio_retry=audio_policy(max_attempts, 5),
        initial_delay_seconds=0,
        sleep=sleep or SleepRecorder(),
    )


@pytest.fixture
def context() -> ReportContext:
    return ReportContext(
        owner_id="mgr-001",
        owner_name="Pat Foreman",
        project_id="proj-42",
        project_name="Harbor Tower",
        project_location="Pier 7",
    )


@pytest.fixture
def site_checklist() -> ChecklistDefinition:
    return build_definition(
        [
            {"id": "arrival", "question": "When did you arrive?", "keywords": ["arrive"], "required": True},
            {"id": "materials", "question": "Any deliveries?", "keywords": ["materials"], "required": True},
            {"id": "safety", "question": "Any safety incidents?", "keywords": ["safety"], "required": True},
            {"id": "weather", "question": "How was the weather?", "keywords": ["weather", "rain"]},
        ]
    )


@pytest.fixture
def repository() -> InMemoryReportRepository:
    return InMemoryReportRepository()


@pytest.fixture
def report_store(tmp_path, repository) -> ObjectReportStore:
    return ObjectReportStore(LocalObjectStorageBackend(tmp_path / "objects"), repository=repository, prefix="SITELOGIX")


@pytest.fixture
def fallback(tmp_path) -> LocalFallbackLog:
    return LocalFallbackLog(tmp_path / "fallback")


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_service(site_checklist, report_store, fallback, sleeper):
    def _make(connector, store: Optional[ReportStore] = None) -> SessionService:
        store = store or report_store
        pipeline = make_pipeline(connector, store, fallback, sleep=sleeper)
        return SessionService(connector, pipeline, site_checklist, store=store, fallback=fallback)

    return _make
