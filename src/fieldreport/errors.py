from __future__ import annotations


class FieldReportError(Exception):
    """Base class for errors raised by the report capture services."""


class AgentConnectionError(FieldReportError):
    """The voice agent connector could not open or maintain a session.

    This is the only fatal, user-facing failure in the capture flow.
    """


class SessionBusyError(FieldReportError):
    """A session is already active on the controller."""


class InvalidSessionState(FieldReportError):
    """An operation was requested from a state that does not allow it."""


class TranscriptUnavailable(FieldReportError):
    """Transcript polling ended without a usable transcript."""


class AudioUnavailable(FieldReportError):
    """The conversation audio is missing, empty or could not be fetched."""


class PersistenceError(FieldReportError):
    """The primary report store rejected or failed to store a report."""
