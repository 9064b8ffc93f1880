from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol
from uuid import uuid4

import httpx

from src.fieldreport.config import settings
from src.fieldreport.domain.models.dialogue import AudioArtifact, DialogueEvent, TranscriptArtifact, TranscriptStatus
from src.fieldreport.domain.models.session import AgentSessionHandle, ReportContext
from src.fieldreport.errors import AgentConnectionError

logger = logging.getLogger(__name__)


class ConversationalAgentConnector(Protocol):
    """Protocol for voice agent backends.

    Implementations open and close conversations, expose the live dialogue
    stream, and return the transcript and audio the backend finalizes some
    time after a conversation has ended.
    """

    async def connect(self, agent_id: str, context: ReportContext) -> AgentSessionHandle:  # pragma: no cover - interface
        raise NotImplementedError

    async def close(self, handle: AgentSessionHandle) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def stream_events(self, handle: AgentSessionHandle) -> AsyncIterator[DialogueEvent]:  # pragma: no cover - interface
        raise NotImplementedError

    def publish(self, handle: AgentSessionHandle, event: DialogueEvent) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def get_transcript(self, handle: AgentSessionHandle) -> TranscriptArtifact:  # pragma: no cover - interface
        raise NotImplementedError

    async def get_audio(self, handle: AgentSessionHandle) -> Optional[AudioArtifact]:  # pragma: no cover - interface
        raise NotImplementedError


def dynamic_variables(context: ReportContext) -> Dict[str, str]:
    """Runtime values injected into the agent's prompt; unset values are omitted."""

    candidates = {
        "manager_name": context.owner_name,
        "manager_id": context.owner_id,
        "project_name": context.project_name,
        "project_location": context.project_location,
    }
    return {key: value for key, value in candidates.items() if value}


class EventRelay:
    """Per-conversation queues for live dialogue events.

    The live audio channel usually terminates in the client, so messages are
    relayed into the connector with ``publish`` and read back by the session
    controller through ``stream_events``.
    """

    def __init__(self) -> None:
        self._queues: Dict[str, asyncio.Queue[Optional[DialogueEvent]]] = {}

    def open(self, conversation_id: str) -> None:
        self._queues.setdefault(conversation_id, asyncio.Queue())

    def publish(self, conversation_id: str, event: DialogueEvent) -> None:
        queue = self._queues.get(conversation_id)
        if queue is None:
            raise KeyError(f"No open conversation {conversation_id}")
        queue.put_nowait(event)

    def close(self, conversation_id: str) -> None:
        queue = self._queues.get(conversation_id)
        if queue is not None:
            queue.put_nowait(None)

    async def stream(self, conversation_id: str) -> AsyncIterator[DialogueEvent]:
        queue = self._queues.get(conversation_id)
        if queue is None:
            return
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
        finally:
            self._queues.pop(conversation_id, None)


class DemoAgentConnector:
    """Offline connector used for local development and tests.

    Conversations always open. Relayed events are recorded and returned as a
    finished transcript, and a small deterministic audio blob is returned as
    the recording.
    """

    def __init__(self) -> None:
        self._relay = EventRelay()
        self._events: Dict[str, List[DialogueEvent]] = {}

    async def connect(self, agent_id: str, context: ReportContext) -> AgentSessionHandle:
        conversation_id = f"conv_{uuid4().hex}"
        self._relay.open(conversation_id)
        self._events[conversation_id] = []
        return AgentSessionHandle(conversation_id=conversation_id, agent_id=agent_id)

    async def close(self, handle: AgentSessionHandle) -> None:
        self._relay.close(handle.conversation_id)

    def stream_events(self, handle: AgentSessionHandle) -> AsyncIterator[DialogueEvent]:
        return self._relay.stream(handle.conversation_id)

    def publish(self, handle: AgentSessionHandle, event: DialogueEvent) -> None:
        self._relay.publish(handle.conversation_id, event)
        self._events.setdefault(handle.conversation_id, []).append(event)

    async def get_transcript(self, handle: AgentSessionHandle) -> TranscriptArtifact:
        # Handed over once; finalization keeps the transcript from here on.
        return TranscriptArtifact(
            status=TranscriptStatus.DONE,
            events=self._events.pop(handle.conversation_id, []),
            conversation_id=handle.conversation_id,
        )

    async def get_audio(self, handle: AgentSessionHandle) -> Optional[AudioArtifact]:
        return AudioArtifact(content=f"demo-audio:{handle.conversation_id}".encode("utf-8"), mime_type="audio/webm")


class HttpAgentConnector:
    """Connector that talks to the voice agent through the backend's REST proxy.

    Endpoints (relative to ``base_url``):

    - ``POST /elevenlabs/conversation`` opens a conversation and returns its id
    - ``DELETE /elevenlabs/conversation/{id}`` ends it
    - ``GET /elevenlabs/transcript/{id}`` returns ``{success, data: {status, transcript}}``
    - ``GET /elevenlabs/audio/{id}`` returns ``{success, data: <base64>, contentType}``
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self._base_url = (base_url or settings.agent_api_base_url).rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout or settings.agent_api_timeout_seconds)
        self._relay = EventRelay()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def connect(self, agent_id: str, context: ReportContext) -> AgentSessionHandle:
        try:
            response = await self._client.post(
                f"{self._base_url}/elevenlabs/conversation",
                json={"agent_id": agent_id, "dynamic_variables": dynamic_variables(context)},
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise AgentConnectionError(f"Could not start conversation with agent {agent_id}: {exc}") from exc

        conversation_id = body.get("conversationId") or body.get("conversation_id")
        if not conversation_id:
            raise AgentConnectionError("Voice agent did not return a conversation id")

        self._relay.open(conversation_id)
        return AgentSessionHandle(conversation_id=conversation_id, agent_id=agent_id)

    async def close(self, handle: AgentSessionHandle) -> None:
        self._relay.close(handle.conversation_id)
        try:
            response = await self._client.delete(f"{self._base_url}/elevenlabs/conversation/{handle.conversation_id}")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise AgentConnectionError(f"Failed to end conversation {handle.conversation_id}: {exc}") from exc

    def stream_events(self, handle: AgentSessionHandle) -> AsyncIterator[DialogueEvent]:
        return self._relay.stream(handle.conversation_id)

    def publish(self, handle: AgentSessionHandle, event: DialogueEvent) -> None:
        self._relay.publish(handle.conversation_id, event)

    async def get_transcript(self, handle: AgentSessionHandle) -> TranscriptArtifact:
        response = await self._client.get(f"{self._base_url}/elevenlabs/transcript/{handle.conversation_id}")
        response.raise_for_status()
        result = response.json()
        if not result.get("success"):
            raise RuntimeError(result.get("error") or "Failed to fetch transcript")

        data = result.get("data") or {}
        return TranscriptArtifact(
            status=data.get("status") or TranscriptStatus.PENDING,
            events=_events_from_transcript(data),
            conversation_id=handle.conversation_id,
        )

    async def get_audio(self, handle: AgentSessionHandle) -> Optional[AudioArtifact]:
        response = await self._client.get(f"{self._base_url}/elevenlabs/audio/{handle.conversation_id}")
        if response.status_code == httpx.codes.NOT_FOUND:
            return None
        response.raise_for_status()
        result = response.json()
        if not result.get("success"):
            raise RuntimeError(result.get("error") or "Failed to fetch audio")

        try:
            content = base64.b64decode(result.get("data") or "", validate=True)
        except (binascii.Error, ValueError) as exc:
            raise RuntimeError("Audio payload is not valid base64") from exc
        if not content:
            return None
        return AudioArtifact(content=content, mime_type=result.get("contentType") or "audio/webm")


def _events_from_transcript(data: Dict[str, Any]) -> List[DialogueEvent]:
    """Convert the backend's transcript turns into dialogue events.

    Turn offsets (``time_in_call_secs``) are anchored on the conversation start
    time when the backend reports one.
    """

    started_unix = (data.get("metadata") or {}).get("start_time_unix_secs")
    started_at = datetime.fromtimestamp(started_unix, tz=timezone.utc) if started_unix else None

    events: List[DialogueEvent] = []
    for turn in data.get("transcript") or []:
        if isinstance(turn, dict):
            offset = turn.get("time_in_call_secs")
            timestamp = (
                started_at + timedelta(seconds=offset)
                if started_at is not None and offset is not None
                else datetime.now(timezone.utc)
            )
            events.append(DialogueEvent(role=turn.get("role") or "unknown", payload=turn, timestamp=timestamp))
        else:
            events.append(DialogueEvent(role="unknown", payload=str(turn)))
    return events


def get_agent_connector_from_env() -> ConversationalAgentConnector:
    """Select a voice agent connector based on the AGENT_BACKEND environment variable.

    - AGENT_BACKEND=http → HttpAgentConnector
    - Anything else (or unset) → DemoAgentConnector
    """

    backend_name = settings.agent_backend.lower()
    if backend_name == "http":
        return HttpAgentConnector()
    return DemoAgentConnector()
