"""Error taxonomy for the live-session engine.

None of these are fatal: the dispatcher handles each one per message. Duplicate
and rate-limited events are not errors at all, see `scorely.admission.Admission`.
"""

from __future__ import annotations


class ScorelyError(Exception):
    """Base class for all engine errors."""


class SessionNotFound(ScorelyError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class InvalidTransition(ScorelyError):
    """Command is not valid for the session's current status."""


class SessionNotRunning(InvalidTransition):
    """Score event received while the session is not running."""


class PairingClosed(ScorelyError):
    """Pairing window is closed."""


class PairingExpired(PairingClosed):
    """Pairing window deadline has passed (even if never explicitly closed)."""


class TeamMismatch(ScorelyError):
    """Device is unpaired, or sent an event for a team it is not paired to."""


class MalformedMessage(ScorelyError):
    """Inbound payload could not be decoded or validated."""
