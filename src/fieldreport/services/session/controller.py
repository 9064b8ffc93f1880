from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import FrozenSet, Optional
from uuid import uuid4

from src.fieldreport.config import settings
from src.fieldreport.domain.models.checklist import ChecklistDefinition
from src.fieldreport.domain.models.dialogue import DialogueEvent
from src.fieldreport.domain.models.session import ACTIVE_STATES, ReportContext, Session, SessionState
from src.fieldreport.errors import AgentConnectionError, InvalidSessionState, SessionBusyError
from src.fieldreport.services.agent.backends import ConversationalAgentConnector
from src.fieldreport.services.audit.service import audit_service
from src.fieldreport.services.checklist.tracker import ChecklistTracker
from src.fieldreport.services.finalization.pipeline import FinalizationPipeline, FinalizationRun

logger = logging.getLogger(__name__)

# Agent modes reported by the voice backend while a conversation is live.
MODE_STATES = {
    "speaking": SessionState.AGENT_SPEAKING,
    "listening": SessionState.LISTENING,
}

# States from which a new session may be started.
_STARTABLE = frozenset({SessionState.IDLE, SessionState.ENDED})


class SessionController:
    """Drives one supervisor's voice session through connect, talk and end.

    A controller owns at most one session at a time. Ending a session hands it
    to the finalization pipeline without waiting for the transcript or audio.
    """

    def __init__(
        self,
        connector: ConversationalAgentConnector,
        pipeline: FinalizationPipeline,
        checklist: ChecklistDefinition,
        *,
        agent_id: Optional[str] = None,
        stream_drain_timeout: float = 2.0,
    ) -> None:
        self._connector = connector
        self._pipeline = pipeline
        self._checklist = checklist
        self._agent_id = agent_id or settings.agent_id
        self._stream_drain_timeout = stream_drain_timeout

        self._state = SessionState.IDLE
        self._session: Optional[Session] = None
        self._tracker: Optional[ChecklistTracker] = None
        self._stream_task: Optional[asyncio.Task] = None
        self._current_prompt: Optional[str] = None
        self._finalization: Optional[FinalizationRun] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def tracker(self) -> Optional[ChecklistTracker]:
        return self._tracker

    @property
    def current_prompt(self) -> Optional[str]:
        return self._current_prompt

    @property
    def finalization(self) -> Optional[FinalizationRun]:
        return self._finalization

    def _set_state(self, state: SessionState) -> None:
        logger.debug("Session controller %s -> %s", self._state.value, state.value)
        self._state = state
        if self._session is not None:
            self._session.state = state

    async def start(self, context: ReportContext) -> Session:
        """Open a conversation with the voice agent.

        Raises SessionBusyError when a session is already in progress and
        AgentConnectionError when the agent cannot be reached; in the latter
        case the controller is back in IDLE afterwards.
        """

        if self._state not in _STARTABLE:
            raise SessionBusyError(f"A session is already {self._state.value.lower()}")

        # Claimed before the first await so a concurrent start() is rejected.
        self._set_state(SessionState.CONNECTING)
        self._session = None
        self._tracker = None
        self._finalization = None
        self._current_prompt = None

        try:
            handle = await self._connector.connect(self._agent_id, context)
        except Exception as exc:
            self._set_state(SessionState.FAILED)
            logger.error("Failed to start conversation for %s: %s", context.owner_id, exc)
            audit_service.session_start_failed(context, str(exc))
            self._set_state(SessionState.IDLE)
            if isinstance(exc, AgentConnectionError):
                raise
            raise AgentConnectionError(f"Failed to start conversation: {exc}") from exc

        self._session = Session(
            id=uuid4(),
            state=SessionState.CONNECTED,
            started_at=datetime.now(timezone.utc),
            context=context,
            handle=handle,
        )
        self._tracker = ChecklistTracker(self._checklist)
        self._current_prompt = self._checklist.first_prompt
        self._set_state(SessionState.CONNECTED)
        self._stream_task = asyncio.create_task(self._consume_events(self._session))

        logger.info("Connected session %s (conversation %s)", self._session.id, handle.conversation_id)
        audit_service.session_started(self._session)
        return self._session

    async def _consume_events(self, session: Session) -> None:
        try:
            async for event in self._connector.stream_events(session.handle):
                self.receive(event)
        except Exception:
            logger.exception("Dialogue stream for session %s failed", session.id)

    def set_mode(self, mode: str) -> SessionState:
        """Record the agent switching between speaking and listening."""

        state = MODE_STATES.get(mode.strip().lower())
        if state is None:
            raise ValueError(f"Unknown agent mode: {mode}")
        if self._state not in ACTIVE_STATES:
            raise InvalidSessionState(f"Cannot change mode while {self._state.value.lower()}")
        self._set_state(state)
        return state

    def publish(self, event: DialogueEvent) -> None:
        """Relay a live dialogue event observed by the client into the connector stream."""

        if self._session is None or self._state not in ACTIVE_STATES:
            raise InvalidSessionState("No live conversation to relay events to")
        self._connector.publish(self._session.handle, event)

    def receive(self, event: DialogueEvent) -> FrozenSet[int]:
        """Feed one dialogue event to the checklist tracker."""

        if self._tracker is None or self._state not in ACTIVE_STATES | {SessionState.ENDING}:
            logger.debug("Ignoring dialogue event while %s", self._state.value)
            return frozenset()
        newly_completed = self._tracker.observe(event)
        if newly_completed:
            self._current_prompt = self._tracker.next_prompt()
        return newly_completed

    async def end(self) -> FinalizationRun:
        """End the conversation and hand the session to finalization.

        Returns as soon as finalization is scheduled; use
        ``FinalizationRun.wait()`` to follow it.
        """

        if self._session is None or self._state not in ACTIVE_STATES:
            raise InvalidSessionState(f"Cannot end a session while {self._state.value.lower()}")

        session = self._session
        self._set_state(SessionState.ENDING)

        try:
            await self._connector.close(session.handle)
        except Exception:
            logger.exception("Failed to end conversation %s cleanly; finalizing anyway", session.handle.conversation_id)

        await self._drain_events()

        session.ended_at = datetime.now(timezone.utc)
        self._set_state(SessionState.ENDED)
        self._current_prompt = None

        snapshot = self._tracker.snapshot() if self._tracker is not None else None
        self._finalization = self._pipeline.start(session, snapshot)

        audit_service.session_ended(session, snapshot)
        return self._finalization

    async def _drain_events(self) -> None:
        """Let the stream consumer process events relayed before the close."""

        task, self._stream_task = self._stream_task, None
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(task, timeout=self._stream_drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("Dialogue stream did not finish within %ss; stopped", self._stream_drain_timeout)

    async def aclose(self) -> None:
        """Tear down the controller, stopping any live event stream."""

        task, self._stream_task = self._stream_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._session = None
        self._tracker = None
        self._state = SessionState.IDLE
