from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class SessionState(str, Enum):
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    LISTENING = "LISTENING"
    AGENT_SPEAKING = "AGENT_SPEAKING"
    ENDING = "ENDING"
    ENDED = "ENDED"
    FAILED = "FAILED"


# States in which a live conversation is open and may be ended.
ACTIVE_STATES = frozenset({SessionState.CONNECTED, SessionState.LISTENING, SessionState.AGENT_SPEAKING})


class ReportContext(BaseModel):
    """Who is reporting on what. Passed to the agent as dynamic variables."""

    owner_id: str
    owner_name: Optional[str] = None
    project_id: str
    project_name: Optional[str] = None
    project_location: Optional[str] = None


class AgentSessionHandle(BaseModel):
    """Connector-side reference to an open conversation."""

    conversation_id: str
    agent_id: str


class Session(BaseModel):
    """A single voice reporting conversation owned by a SessionController."""

    id: UUID
    state: SessionState
    started_at: datetime
    ended_at: Optional[datetime] = None
    context: ReportContext
    handle: AgentSessionHandle
