"""
Command/event dispatcher and the single worker loop that drives the engine.

Topics:
    session/<id>/event    -> admission filter -> ScoreStateMachine.apply -> snapshot
    session/<id>/command  -> start | stop | end | reset | request_state | open_pairing | close_pairing
    pairing/request       -> PairingManager.handle_request

Messages are handled one at a time, each to completion, by the thread running
`run()`. Errors are handled per message and never stop the loop.

Every path that mutates or evicts sessions (message handling, HTTP creation and
deletion, the retention sweep) holds the dispatcher lock, so retained snapshots
go out in the same order as the changes they describe.

Retention:
    ended sessions           -> evicted `retention_ms` after `ended_at`
    waiting/running sessions -> evicted after `idle_ttl_ms` without an update
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import TYPE_CHECKING, Final

from pydantic import BaseModel, ValidationError

from scorely.admission import Admission
from scorely.errors import MalformedMessage, ScorelyError, SessionNotFound
from scorely.misc.utils import time_now_ms
from scorely.models import PairingRequest, ScoreEvent, SessionCommand
from scorely.state import DEFAULT_LOCATION, DEFAULT_PAIRING_WINDOW_MS, Session

if TYPE_CHECKING:
    from collections.abc import Callable
    from logging import Logger

    from scorely.admission import AdmissionFilter
    from scorely.pairing import PairingManager
    from scorely.publisher import StatePublisher
    from scorely.scoring import ScoreStateMachine
    from scorely.state import SessionStore

SUBSCRIPTIONS: Final = ["session/+/event", "session/+/command", "pairing/request"]
PAIRING_REQUEST_TOPIC: Final = "pairing/request"

_POLL_INTERVAL: Final = 0.5  # secs between stop checks while idle

DEFAULT_RETENTION_MS: Final = 60 * 60 * 1000
DEFAULT_IDLE_TTL_MS: Final = 6 * 60 * 60 * 1000
SWEEP_INTERVAL_MS: Final = 60 * 1000


def _decode[M: BaseModel](model: type[M], payload: bytes) -> M:
    try:
        return model.model_validate_json(payload)
    except ValidationError as e:
        msg = f"invalid {model.__name__} payload {payload[:200]!r}: {e.error_count()} error(s)"
        raise MalformedMessage(msg) from e


def _provisioned_session(session_id: str, now: int) -> Session:
    """Session created on the fly for a score event naming an unknown id."""
    return Session(
        session_id=session_id,
        location_id=DEFAULT_LOCATION,
        status="running",
        created_at=now,
        started_at=now,
        last_update=now,
    )


class Dispatcher:
    """Routes inbound messages to the admission filter, state machine and pairing manager."""

    def __init__(
        self,
        *,
        store: SessionStore,
        admission: AdmissionFilter,
        machine: ScoreStateMachine,
        pairing: PairingManager,
        publisher: StatePublisher,
        pairing_window_ms: int = DEFAULT_PAIRING_WINDOW_MS,
        auto_provision: bool = True,
        retention_ms: int = DEFAULT_RETENTION_MS,
        idle_ttl_ms: int = DEFAULT_IDLE_TTL_MS,
        now: Callable[[], int] = time_now_ms,
    ) -> None:
        self.store = store
        self.admission = admission
        self.machine = machine
        self.pairing = pairing
        self.publisher = publisher
        self.pairing_window_ms = pairing_window_ms
        self.auto_provision = auto_provision
        self.retention_ms = retention_ms
        self.idle_ttl_ms = idle_ttl_ms
        self._now = now
        self._lock = threading.RLock()
        self._last_sweep = now()
        self._log: Logger = logging.getLogger("Dispatcher")

    # ==================== Worker loop ====================

    def run(self, inbox: queue.Queue[tuple[str, bytes]], stop: threading.Event) -> None:
        """Drain `inbox` until `stop` is set."""
        self._log.debug("Dispatcher worker started")
        while not stop.is_set():
            try:
                topic, payload = inbox.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                self._maybe_sweep()
                continue

            try:
                self.handle(topic, payload)
                self._maybe_sweep()
            finally:
                inbox.task_done()

        self._log.debug("Dispatcher worker stopped")

    def _maybe_sweep(self) -> None:
        if self._now() - self._last_sweep < SWEEP_INTERVAL_MS:
            return
        try:
            self.sweep()
        except Exception:
            self._log.exception("Session sweep failed")

    def handle(self, topic: str, payload: bytes) -> None:
        """Decode and route one message. Never raises."""
        try:
            with self._lock:
                self._route(topic, payload)
        except MalformedMessage as e:
            self._log.warning("[bright_yellow on grey30][IGNORING][/] Malformed message on %s: %s", topic, e)
        except ScorelyError as e:
            self._log.warning("%s: %s", type(e).__name__, e)
        except Exception:
            self._log.exception("Unexpected error handling message on %s", topic)

    def _route(self, topic: str, payload: bytes) -> None:
        if topic == PAIRING_REQUEST_TOPIC:
            self.pairing.handle_request(_decode(PairingRequest, payload))
            return

        parts = topic.split("/")
        if len(parts) != 3 or parts[0] != "session" or not parts[1]:
            self._log.debug("Ignoring message on unrelated topic %s", topic)
            return

        _, session_id, kind = parts
        match kind:
            case "event":
                self.handle_score_event(session_id, _decode(ScoreEvent, payload))
            case "command":
                self.handle_command(session_id, _decode(SessionCommand, payload))
            case _:
                self._log.debug("Ignoring message on unrelated topic %s", topic)

    # ==================== Handlers ====================

    def handle_score_event(self, session_id: str, event: ScoreEvent) -> None:
        if self.admission.admit(event) is not Admission.ACCEPTED:
            return

        if self.auto_provision:
            _, created = self.store.ensure(session_id, _provisioned_session)
            if created:
                self._log.warning("Session [bright_green]%s[/] not found, created it in running state", session_id)
        elif session_id not in self.store:
            raise SessionNotFound(session_id)

        session = self.machine.apply(session_id, event)
        self.publisher.publish(session)

    def handle_command(self, session_id: str, command: SessionCommand) -> None:
        self._log.info("Command [bright_cyan]%s[/] for session [bright_green]%s[/]", command.action, session_id)

        match command.action:
            case "start":
                session = self.machine.start(session_id)
                self.pairing.cancel_expiry(session_id)
                self.publisher.publish(session)
            case "stop" | "end":
                self.end_session(session_id)
            case "reset":
                self.publisher.publish(self.machine.reset(session_id))
            case "request_state":
                self.publisher.publish(self.store.get(session_id))
            case "open_pairing":
                self.pairing.open_pairing(session_id, command.duration or self.pairing_window_ms)
            case "close_pairing":
                self.pairing.close_pairing(session_id)

    # ==================== Session lifecycle ====================

    def create_session(self, location_id: str) -> Session:
        """Create a waiting session with an open pairing window and publish its first snapshot."""
        with self._lock:
            created = self.store.create(location_id, self.pairing_window_ms)
            if created.pairing_expires_at is not None:
                self.pairing.schedule_expiry(created.session_id, created.pairing_expires_at)

            # Re-read: the session is pairable as soon as it is in the store
            session = self.store.get(created.session_id)
            self.publisher.publish(session)

        self._log.info("Created session [bright_green]%s[/] at %s", session.session_id, location_id)
        return session

    def end_session(self, session_id: str) -> Session:
        with self._lock:
            session = self.machine.end(session_id)
            self.pairing.cancel_expiry(session_id)
            self.publisher.publish(session)
            return session

    def cleanup(self, session_id: str) -> None:
        """Evict a session from memory and drop its retained snapshot.

        Raises:
            SessionNotFound: Unknown session id
        """
        with self._lock:
            self.store.remove(session_id)
            self.pairing.cancel_expiry(session_id)
            self.publisher.clear(session_id)
        self._log.info("Cleaned up session [bright_green]%s[/]", session_id)

    def sweep(self) -> list[str]:
        """Evict ended sessions past retention and sessions idle past the idle TTL.

        Returns:
            Evicted session ids
        """
        evicted: list[str] = []
        with self._lock:
            now = self._now()
            self._last_sweep = now
            for session_id in self.store.ids():
                session = self.store.get(session_id)
                if session.status == "ended" and session.ended_at is not None:
                    expired = now - session.ended_at >= self.retention_ms
                else:
                    expired = now - session.last_update >= self.idle_ttl_ms
                if expired:
                    self.cleanup(session_id)
                    evicted.append(session_id)

        if evicted:
            self._log.info("Evicted %d stale session(s), %d live", len(evicted), len(self.store))
        return evicted
