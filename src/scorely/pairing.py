"""
Device-to-team pairing with bounded pairing windows.

Pairing Flow:
    1. A session opens a window (on creation or via `open_pairing` command)
    2. A bracelet publishes {deviceId} on `pairing/request`
    3. The device joins the smaller team (ties go to team 1)
    4. The device gets {team, topic} on `pairing/response/{deviceId}`

Re-pairing an already-paired device is idempotent and returns its existing team.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, NamedTuple

from scorely.errors import InvalidTransition, PairingClosed, PairingExpired, SessionNotFound
from scorely.misc.utils import time_now_ms
from scorely.models import PairingResponse
from scorely.publisher import event_topic

if TYPE_CHECKING:
    from collections.abc import Callable
    from logging import Logger

    from scorely.models import PairingRequest
    from scorely.publisher import StatePublisher
    from scorely.scheduler import ExpiryScheduler
    from scorely.state import Session, SessionStore
    from scorely.types import TeamId


class PairingResult(NamedTuple):
    session_id: str
    team: TeamId
    changed: bool  # False when the device was already paired


def pick_team(session: Session) -> TeamId:
    """Team with fewer members; ties resolve to team 1."""
    return 1 if len(session.paired_devices[1]) <= len(session.paired_devices[2]) else 2


class PairingManager:
    """Owns pairing windows and their expiry timers (one per session)."""

    def __init__(
        self,
        store: SessionStore,
        publisher: StatePublisher,
        scheduler: ExpiryScheduler,
        now: Callable[[], int] = time_now_ms,
    ) -> None:
        self._store = store
        self._publisher = publisher
        self._scheduler = scheduler
        self._now = now
        self._log: Logger = logging.getLogger("PairingManager")

    # ==================== Windows ====================

    def open_pairing(self, session_id: str, duration_ms: int) -> Session:
        """Open (or extend) the pairing window for `duration_ms` from now."""
        deadline = self._now() + duration_ms

        def _open(session: Session) -> None:
            if session.status == "ended":
                msg = f"Cannot open pairing: session {session_id} is ended"
                raise InvalidTransition(msg)
            session.pairing_open = True
            session.pairing_expires_at = deadline

        session = self._store.mutate(session_id, _open)
        self.schedule_expiry(session_id, deadline)
        self._log.info("Opened pairing for [bright_green]%s[/] (%.0fs)", session_id, duration_ms / 1000)
        return session

    def schedule_expiry(self, session_id: str, deadline: int) -> None:
        """Close the window of `session_id` at `deadline` unless closed or reopened before then."""
        delay_s = (deadline - self._now()) / 1000
        self._scheduler.schedule(session_id, delay_s, lambda: self._expire(session_id, deadline))

    def close_pairing(self, session_id: str) -> None:
        """Close the window now and cancel its pending expiry job."""
        self._scheduler.cancel(session_id)

        def _close(session: Session) -> None:
            session.pairing_open = False

        try:
            self._store.mutate(session_id, _close)
        except SessionNotFound:
            return

    def cancel_expiry(self, session_id: str) -> None:
        self._scheduler.cancel(session_id)

    def _expire(self, session_id: str, deadline: int) -> None:
        closed = False

        def _close_if_current(session: Session) -> None:
            nonlocal closed
            # A later open_pairing moved the deadline; that window has its own job
            if session.pairing_open and session.pairing_expires_at == deadline:
                session.pairing_open = False
                closed = True

        try:
            self._store.mutate(session_id, _close_if_current)
        except SessionNotFound:
            return

        if closed:
            self._log.info("Pairing closed for session [bright_green]%s[/]", session_id)

    # ==================== Pairing ====================

    def pair(self, session_id: str, device_id: str) -> PairingResult:
        """Assign `device_id` to a team of `session_id`.

        Raises:
            SessionNotFound: Unknown session id
            PairingClosed: Window closed
            PairingExpired: Window deadline passed
        """
        assigned: TeamId = 1
        changed = False

        def _pair(session: Session) -> None:
            nonlocal assigned, changed
            if not session.pairing_open:
                msg = f"Pairing is closed for session: {session_id}"
                raise PairingClosed(msg)

            if session.pairing_expires_at is not None and self._now() > session.pairing_expires_at:
                msg = f"Pairing window has expired for session: {session_id}"
                raise PairingExpired(msg)

            existing = session.team_of(device_id)
            if existing is not None:
                assigned = existing
                return

            assigned = pick_team(session)
            session.paired_devices[assigned].append(device_id)
            session.last_update = self._now()
            changed = True

        session = self._store.mutate(session_id, _pair)

        if changed:
            self._log.info(
                "Paired [bright_green]%s[/] to team %d of %s (%d vs %d)",
                device_id,
                assigned,
                session_id,
                len(session.paired_devices[1]),
                len(session.paired_devices[2]),
            )
            self._publisher.publish(session)
        else:
            self._log.info("Device [bright_green]%s[/] already paired to team %d", device_id, assigned)

        return PairingResult(session_id=session_id, team=assigned, changed=changed)

    def handle_request(self, request: PairingRequest) -> PairingResponse:
        """Resolve the target session, pair the device and send it a direct response."""
        try:
            session_id = self._target_session(request)
            result = self.pair(session_id, request.device_id)
        except (PairingClosed, SessionNotFound) as e:
            self._log.warning("Pairing refused for [bright_green]%s[/]: %s", request.device_id, e)
            response = PairingResponse(status="error", error=str(e))
        else:
            response = PairingResponse(
                status="ok",
                session_id=result.session_id,
                team=result.team,
                topic=event_topic(result.session_id),
            )

        self._publisher.publish_pairing_response(request.device_id, response)
        return response

    def _target_session(self, request: PairingRequest) -> str:
        if request.session_id is not None:
            if request.session_id not in self._store:
                raise SessionNotFound(request.session_id)
            return request.session_id

        session = self._store.find_open_pairing()
        if session is None:
            msg = "No active pairing session"
            raise PairingClosed(msg)
        return session.session_id
