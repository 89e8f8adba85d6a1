"""
In-memory live session state.

Thread Safety:
    All access to the session table goes through SessionStore and its internal
    lock. The dispatcher worker, pairing expiry timers and HTTP handlers may
    touch it concurrently.

Data Flow:
    Dispatcher/PairingManager -> mutate() -> Session (working copy) -> table
    HTTP/StatePublisher       -> get()    -> detached copy
"""

from __future__ import annotations

import copy
import secrets
import string
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from scorely.errors import SessionNotFound
from scorely.misc.utils import time_now_ms

if TYPE_CHECKING:
    from collections.abc import Callable

    from scorely.types import SessionStatus, TeamId

SESSION_ID_ALPHABET: Final = string.ascii_uppercase + string.digits
SESSION_ID_LEN: Final = 6

DEFAULT_PAIRING_WINDOW_MS: Final = 60_000
DEFAULT_LOCATION: Final = "default"


def _zero_score() -> dict[TeamId, int]:
    return {1: 0, 2: 0}


def _no_devices() -> dict[TeamId, list[str]]:
    return {1: [], 2: []}


@dataclass
class Session:
    """
    Authoritative live-match record.

    Owned by SessionStore; mutated only through ScoreStateMachine and
    PairingManager operations.
    """

    session_id: str
    location_id: str = DEFAULT_LOCATION
    status: SessionStatus = "waiting"
    score: dict[TeamId, int] = field(default_factory=_zero_score)
    paired_devices: dict[TeamId, list[str]] = field(default_factory=_no_devices)
    pairing_open: bool = False
    pairing_expires_at: int | None = None  # Unix timestamp (ms)
    created_at: int = 0
    started_at: int | None = None
    ended_at: int | None = None
    last_update: int = 0

    def team_of(self, device_id: str) -> TeamId | None:
        """Return the team `device_id` is paired to, if any."""
        for team, members in self.paired_devices.items():
            if device_id in members:
                return team
        return None

    def pairing_active(self, now: int) -> bool:
        return self.pairing_open and self.pairing_expires_at is not None and now <= self.pairing_expires_at


class SessionStore:
    """Live sessions keyed by session id. Pure data access, no policy."""

    def __init__(self, now: Callable[[], int] = time_now_ms) -> None:
        self._now = now
        self._sessions: dict[str, Session] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def create(self, location_id: str, pairing_window_ms: int = DEFAULT_PAIRING_WINDOW_MS) -> Session:
        """Create a `waiting` session with an open pairing window."""
        with self._lock:
            now = self._now()
            session = Session(
                session_id=self._new_id(),
                location_id=location_id,
                pairing_open=True,
                pairing_expires_at=now + pairing_window_ms,
                created_at=now,
                last_update=now,
            )
            self._sessions[session.session_id] = session
            return copy.deepcopy(session)

    def ensure(self, session_id: str, factory: Callable[[str, int], Session]) -> tuple[Session, bool]:
        """Return session `session_id`, creating it with `factory(id, now)` if unknown.

        Returns:
            (detached copy, whether it was created)
        """
        with self._lock:
            if session_id in self._sessions:
                return copy.deepcopy(self._sessions[session_id]), False

            session = factory(session_id, self._now())
            self._sessions[session_id] = session
            return copy.deepcopy(session), True

    def get(self, session_id: str) -> Session:
        """Return a detached copy of session `session_id`.

        Raises:
            SessionNotFound: Unknown session id
        """
        with self._lock:
            try:
                return copy.deepcopy(self._sessions[session_id])
            except KeyError:
                raise SessionNotFound(session_id) from None

    def mutate(self, session_id: str, fn: Callable[[Session], None]) -> Session:
        """Apply `fn` to session `session_id` atomically.

        `fn` works on a copy that replaces the stored entry only if it returns
        normally, so an exception raised by `fn` leaves the session untouched.

        Raises:
            SessionNotFound: Unknown session id
        """
        with self._lock:
            try:
                working = copy.deepcopy(self._sessions[session_id])
            except KeyError:
                raise SessionNotFound(session_id) from None

            fn(working)
            self._sessions[session_id] = working
            return copy.deepcopy(working)

    def remove(self, session_id: str) -> Session:
        """Evict session `session_id` (explicit cleanup)."""
        with self._lock:
            try:
                return self._sessions.pop(session_id)
            except KeyError:
                raise SessionNotFound(session_id) from None

    def find_open_pairing(self) -> Session | None:
        """Return the oldest session whose pairing window is open and unexpired."""
        with self._lock:
            now = self._now()
            for session in self._sessions.values():
                if session.pairing_active(now):
                    return copy.deepcopy(session)
            return None

    def _new_id(self) -> str:
        while True:
            sid = "".join(secrets.choice(SESSION_ID_ALPHABET) for _ in range(SESSION_ID_LEN))
            if sid not in self._sessions:
                return sid
