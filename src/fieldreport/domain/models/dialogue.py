from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DialogueEvent(BaseModel):
    """A single message observed on the live conversation stream.

    ``payload`` is whatever the voice backend emitted: either plain text or a
    structured message object (typically with a ``message`` field).
    """

    model_config = ConfigDict(frozen=True)

    role: str = "user"
    payload: Union[str, Dict[str, Any]]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TranscriptStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


# Status spellings used by voice backends that map onto PROCESSING.
_PROCESSING_ALIASES = {"processing", "in-progress", "in_progress", "initiated"}


class TranscriptArtifact(BaseModel):
    status: TranscriptStatus
    events: List[DialogueEvent] = Field(default_factory=list)
    # Identifier of the conversation on the voice backend. Always set on
    # placeholders so the transcript can be fetched again later.
    conversation_id: Optional[str] = None
    note: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _PROCESSING_ALIASES:
                return TranscriptStatus.PROCESSING
            return lowered
        return value

    @property
    def is_usable(self) -> bool:
        return self.status == TranscriptStatus.DONE and len(self.events) > 0

    @classmethod
    def placeholder(cls, conversation_id: Optional[str]) -> "TranscriptArtifact":
        """Transcript stand-in used when the backend never finished processing."""

        return cls(
            status=TranscriptStatus.PENDING,
            events=[],
            conversation_id=conversation_id,
            note="Transcript not yet available from the voice agent - conversation may still be processing",
        )


class AudioArtifact(BaseModel):
    content: bytes
    mime_type: str = "audio/webm"

    @property
    def size_bytes(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        subtype = self.mime_type.split("/", 1)[-1]
        return subtype.split(";", 1)[0].strip() or "bin"
