"""Retained state snapshots and direct pairing responses."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Final, Protocol

from scorely.misc.utils import time_now_ms
from scorely.models import StateSnapshot, TeamDevices, TeamScore

if TYPE_CHECKING:
    from collections.abc import Callable
    from logging import Logger

    from scorely.models import PairingResponse
    from scorely.state import Session

STATE_QOS: Final = 1
RESPONSE_QOS: Final = 1


def state_topic(session_id: str) -> str:
    return f"session/{session_id}/state"


def event_topic(session_id: str) -> str:
    return f"session/{session_id}/event"


def pairing_response_topic(device_id: str) -> str:
    return f"pairing/response/{device_id}"


class Transport(Protocol):
    def publish(self, topic: str, payload: str | bytes, *, qos: int, retain: bool) -> bool: ...


def build_snapshot(session: Session, timestamp: int) -> StateSnapshot:
    """Project `session` into an immutable snapshot taken at `timestamp`."""
    return StateSnapshot(
        id=session.session_id,
        score=TeamScore(team1=session.score[1], team2=session.score[2]),
        status=session.status,
        paired_devices=TeamDevices(
            team1=list(session.paired_devices[1]),
            team2=list(session.paired_devices[2]),
        ),
        last_update=session.last_update,
        timestamp=timestamp,
    )


class StatePublisher:
    """Emits session snapshots as retained messages so new subscribers get the latest state at once."""

    def __init__(self, transport: Transport, now: Callable[[], int] = time_now_ms) -> None:
        self._transport = transport
        self._now = now
        self._log: Logger = logging.getLogger("Publisher")

    def publish(self, session: Session) -> StateSnapshot:
        snapshot = build_snapshot(session, self._now())
        topic = state_topic(session.session_id)

        self._log.debug("[bright_white on grey30][Engine -> MQTT][/] %s %s", topic, snapshot.to_json())
        if not self._transport.publish(topic, snapshot.to_json(), qos=STATE_QOS, retain=True):
            self._log.error("Failed to publish snapshot for session [bright_green]%s[/]", session.session_id)

        return snapshot

    def publish_pairing_response(self, device_id: str, response: PairingResponse) -> None:
        topic = pairing_response_topic(device_id)

        self._log.debug("[bright_white on grey30][Engine -> Device][/] %s %s", topic, response.to_json())
        if not self._transport.publish(topic, response.to_json(), qos=RESPONSE_QOS, retain=False):
            self._log.error("Failed to publish pairing response to [bright_green]%s[/]", device_id)

    def clear(self, session_id: str) -> None:
        """Drop the retained snapshot for `session_id` (empty retained payload)."""
        if not self._transport.publish(state_topic(session_id), b"", qos=STATE_QOS, retain=True):
            self._log.error("Failed to clear retained snapshot for session [bright_green]%s[/]", session_id)
