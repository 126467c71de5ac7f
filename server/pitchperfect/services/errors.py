"""Errors raised by the practice-session core."""

from typing import Optional


class PracticeError(Exception):
    """Base class for practice-session failures surfaced to callers."""

    code = "practice_error"

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.session_id = session_id

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self)}


class PermissionDenied(PracticeError):
    """Microphone access was refused; start() made no state change."""

    code = "permission_denied"


class ConnectionFailure(PracticeError):
    """One agent's voice session could not be established."""

    code = "connection_failure"

    def __init__(self, participant_id: str, reason: str):
        super().__init__(f"Agent {participant_id} failed to connect: {reason}")
        self.participant_id = participant_id
        self.reason = reason


class TeardownFailure(PracticeError):
    code = "teardown_failure"


class InvalidTransition(PracticeError):
    """Lifecycle operation not allowed from the current recording status."""

    code = "invalid_transition"


class TimelineError(PracticeError):
    code = "timeline_error"


class PresentationNotFound(PracticeError):
    code = "not_found"
