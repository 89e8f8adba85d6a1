"""Score state machine: session lifecycle and score event application.

Lifecycle:
    waiting --start--> running --end/stop--> ended
    waiting --end/stop-------------------->  ended

`reset` zeroes both scores in any state. Score events only apply while running,
and only for the team the sending device is paired to.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from scorely.errors import InvalidTransition, SessionNotRunning, TeamMismatch
from scorely.misc.utils import time_now_ms
from scorely.models import MatchRecord, TeamDevices, TeamScore

if TYPE_CHECKING:
    from collections.abc import Callable
    from logging import Logger

    from scorely.models import ScoreEvent
    from scorely.state import Session, SessionStore
    from scorely.types import Winner


class HistorySink(Protocol):
    def save_match(self, record: MatchRecord) -> str: ...


def build_match_record(session: Session) -> MatchRecord | None:
    """Build the final history record, or None if the session never started."""
    if session.started_at is None or session.ended_at is None:
        return None

    team1, team2 = session.score[1], session.score[2]
    winner: Winner = "draw"
    if team1 > team2:
        winner = "team1"
    elif team2 > team1:
        winner = "team2"

    return MatchRecord(
        match_id=f"match_{session.session_id}_{session.ended_at}",
        session_id=session.session_id,
        location_id=session.location_id,
        final_score=TeamScore(team1=team1, team2=team2),
        winner=winner,
        started_at=session.started_at,
        ended_at=session.ended_at,
        duration=session.ended_at - session.started_at,
        paired_devices=TeamDevices(team1=list(session.paired_devices[1]), team2=list(session.paired_devices[2])),
    )


class ScoreStateMachine:
    """Applies lifecycle commands and score events to sessions in the store.

    Every method returns the updated session on success. Rejected commands raise
    an `InvalidTransition`/`TeamMismatch` before anything is committed.
    """

    def __init__(
        self,
        store: SessionStore,
        history: HistorySink | None = None,
        now: Callable[[], int] = time_now_ms,
    ) -> None:
        self._store = store
        self._history = history
        self._now = now
        self._log: Logger = logging.getLogger("ScoreStateMachine")

    def start(self, session_id: str) -> Session:
        def _start(session: Session) -> None:
            if session.status != "waiting":
                msg = f"Cannot start session {session_id}: already {session.status}"
                raise InvalidTransition(msg)

            now = self._now()
            session.status = "running"
            session.started_at = now
            session.pairing_open = False
            session.last_update = now

        session = self._store.mutate(session_id, _start)
        self._log.info("Started session [bright_green]%s[/]", session_id)
        return session

    def end(self, session_id: str) -> Session:
        """End the session and hand the final record to the history store."""

        def _end(session: Session) -> None:
            if session.status == "ended":
                msg = f"Session {session_id} is already ended"
                raise InvalidTransition(msg)

            now = self._now()
            session.status = "ended"
            session.ended_at = now
            session.pairing_open = False
            session.last_update = now

        session = self._store.mutate(session_id, _end)
        self._log.info(
            "Ended session [bright_green]%s[/] (%d - %d)",
            session_id,
            session.score[1],
            session.score[2],
        )
        self._save_history(session)
        return session

    def reset(self, session_id: str) -> Session:
        def _reset(session: Session) -> None:
            session.score[1] = 0
            session.score[2] = 0
            session.last_update = self._now()

        session = self._store.mutate(session_id, _reset)
        self._log.info("Reset score of session [bright_green]%s[/]", session_id)
        return session

    def apply(self, session_id: str, event: ScoreEvent) -> Session:
        """Apply a team-scoped score event.

        Raises:
            SessionNotRunning: Session is waiting or ended
            TeamMismatch: Device unpaired or paired to the other team
        """

        def _apply(session: Session) -> None:
            if session.status != "running":
                msg = f"Cannot process score event: session {session_id} is {session.status}"
                raise SessionNotRunning(msg)

            team = session.team_of(event.device_id)
            if team is None:
                msg = f"Device {event.device_id} is not paired to session {session_id}"
                raise TeamMismatch(msg)

            if team != event.team:
                msg = f"Device {event.device_id} is paired to team {team} but sent event for team {event.team}"
                raise TeamMismatch(msg)

            match event.action:
                case "increment":
                    session.score[team] += 1
                case "decrement":
                    session.score[team] = max(0, session.score[team] - 1)
                case "reset":
                    session.score[team] = 0

            session.last_update = self._now()

        session = self._store.mutate(session_id, _apply)
        self._log.info(
            "Session [bright_green]%s[/] team %d %s -> %d - %d",
            session_id,
            event.team,
            event.action,
            session.score[1],
            session.score[2],
        )
        return session

    def _save_history(self, session: Session) -> None:
        if self._history is None:
            return

        record = build_match_record(session)
        if record is None:
            self._log.warning("Not saving history: session [bright_green]%s[/] was never started", session.session_id)
            return

        try:
            match_id = self._history.save_match(record)
        except OSError as e:
            self._log.error("Failed to save match history for %s: %s", session.session_id, e)
            return

        self._log.info("Saved to history: [bright_green]%s[/]", match_id)
