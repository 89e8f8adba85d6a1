"""
Shared fixtures: a controllable clock, an in-memory broker that honours retained
messages, and a fully wired engine built on both.
"""

import json
from collections.abc import Callable
from typing import Any

import pytest

from scorely.admission import AdmissionFilter
from scorely.dispatcher import Dispatcher
from scorely.models import ScoreEvent
from scorely.pairing import PairingManager
from scorely.publisher import StatePublisher
from scorely.scoring import ScoreStateMachine
from scorely.state import SessionStore
from scorely.storage import MatchHistoryStore

T0 = 1_700_000_000_000


class FakeClock:
    def __init__(self, start: int = T0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeBroker:
    """Records publishes and replays retained messages to late subscribers, like an MQTT broker."""

    def __init__(self) -> None:
        self.published: list[tuple[str, bytes, int, bool]] = []
        self.retained: dict[str, bytes] = {}
        self._subs: dict[str, list[Callable[[str, bytes], None]]] = {}

    def publish(self, topic: str, payload: str | bytes, *, qos: int, retain: bool) -> bool:
        data = payload.encode() if isinstance(payload, str) else payload
        self.published.append((topic, data, qos, retain))
        if retain:
            if data:
                self.retained[topic] = data
            else:
                self.retained.pop(topic, None)
        for cb in self._subs.get(topic, []):
            cb(topic, data)
        return True

    def subscribe(self, topic: str, callback: Callable[[str, bytes], None]) -> None:
        self._subs.setdefault(topic, []).append(callback)
        if topic in self.retained:
            callback(topic, self.retained[topic])

    def messages(self, topic: str) -> list[dict[str, Any]]:
        return [json.loads(p) for t, p, _, _ in self.published if t == topic and p]


class FakeScheduler:
    """ExpiryScheduler stand-in whose jobs only run when fired by the test."""

    def __init__(self) -> None:
        self.jobs: dict[str, tuple[float, Callable[[], None]]] = {}

    def schedule(self, key: str, delay_s: float, fn: Callable[[], None]) -> None:
        self.jobs[key] = (delay_s, fn)

    def cancel(self, key: str) -> bool:
        return self.jobs.pop(key, None) is not None

    def pending(self, key: str) -> bool:
        return key in self.jobs

    def cancel_all(self) -> None:
        self.jobs.clear()

    def fire(self, key: str) -> None:
        _, fn = self.jobs.pop(key)
        fn()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def store(clock: FakeClock) -> SessionStore:
    return SessionStore(now=clock)


@pytest.fixture
def history(tmp_path, clock: FakeClock) -> MatchHistoryStore:
    return MatchHistoryStore(tmp_path / "matches.json", now=clock)


@pytest.fixture
def publisher(broker: FakeBroker, clock: FakeClock) -> StatePublisher:
    return StatePublisher(broker, now=clock)


@pytest.fixture
def machine(store: SessionStore, history: MatchHistoryStore, clock: FakeClock) -> ScoreStateMachine:
    return ScoreStateMachine(store, history, now=clock)


@pytest.fixture
def pairing(store, publisher, scheduler, clock) -> PairingManager:
    return PairingManager(store, publisher, scheduler, now=clock)


@pytest.fixture
def dispatcher(store, machine, pairing, publisher, clock) -> Dispatcher:
    return Dispatcher(
        store=store,
        admission=AdmissionFilter(now=clock),
        machine=machine,
        pairing=pairing,
        publisher=publisher,
        now=clock,
    )


@pytest.fixture
def make_event(clock: FakeClock) -> Callable[..., ScoreEvent]:
    def _make(device_id: str = "dev1", team: int = 1, action: str = "increment", ts: int | None = None) -> ScoreEvent:
        return ScoreEvent(device_id=device_id, team=team, action=action, timestamp=clock.now if ts is None else ts)

    return _make
