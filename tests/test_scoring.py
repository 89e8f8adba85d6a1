import pytest

from scorely.errors import InvalidTransition, SessionNotRunning, TeamMismatch
from scorely.scoring import ScoreStateMachine, build_match_record
from scorely.state import Session


def make_running(store, machine, team1=("a1",), team2=("b1",)) -> str:
    sid = store.create("court-7").session_id

    def seat(s: Session) -> None:
        s.paired_devices[1].extend(team1)
        s.paired_devices[2].extend(team2)

    store.mutate(sid, seat)
    machine.start(sid)
    return sid


def test_start_closes_pairing_and_sets_started_at(store, machine, clock):
    sid = store.create("loc").session_id
    clock.advance(1_234)
    session = machine.start(sid)

    assert session.status == "running"
    assert session.started_at == clock.now
    assert not session.pairing_open


def test_start_twice_is_invalid(store, machine):
    sid = make_running(store, machine)
    with pytest.raises(InvalidTransition):
        machine.start(sid)


def test_start_after_end_is_invalid(store, machine):
    sid = make_running(store, machine)
    machine.end(sid)
    with pytest.raises(InvalidTransition):
        machine.start(sid)
    assert store.get(sid).status == "ended"


def test_end_is_not_repeatable(store, machine):
    sid = make_running(store, machine)
    first = machine.end(sid)
    with pytest.raises(InvalidTransition):
        machine.end(sid)
    assert store.get(sid).ended_at == first.ended_at


def test_end_from_waiting_skips_history(store, machine, history):
    sid = store.create("loc").session_id
    session = machine.end(sid)

    assert session.status == "ended"
    assert not session.pairing_open
    assert history.get_match_history() == []


def test_increment_and_decrement_floor(store, machine, make_event):
    sid = make_running(store, machine)

    machine.apply(sid, make_event("a1", 1, "increment"))
    for _ in range(3):
        session = machine.apply(sid, make_event("a1", 1, "decrement"))
        # Scores never go negative
        assert session.score[1] >= 0

    assert session.score == {1: 0, 2: 0}


def test_team_scoped_reset_action(store, machine, make_event):
    sid = make_running(store, machine)
    machine.apply(sid, make_event("a1", 1, "increment"))
    machine.apply(sid, make_event("b1", 2, "increment"))

    session = machine.apply(sid, make_event("b1", 2, "reset"))
    assert session.score == {1: 1, 2: 0}


def test_score_event_requires_running(store, machine, make_event):
    sid = store.create("loc").session_id
    store.mutate(sid, lambda s: s.paired_devices[1].append("a1"))

    with pytest.raises(SessionNotRunning):
        machine.apply(sid, make_event("a1", 1))
    assert store.get(sid).score[1] == 0


def test_team_mismatch_and_unpaired_device_dropped(store, machine, make_event):
    sid = make_running(store, machine)

    with pytest.raises(TeamMismatch):
        machine.apply(sid, make_event("a1", 2))
    with pytest.raises(TeamMismatch):
        machine.apply(sid, make_event("stranger", 1))

    assert store.get(sid).score == {1: 0, 2: 0}


def test_reset_keeps_status_and_devices(store, machine, make_event):
    sid = make_running(store, machine, team1=("a1", "a2"), team2=("b1",))
    machine.apply(sid, make_event("a1", 1))
    machine.apply(sid, make_event("b1", 2))

    session = machine.reset(sid)

    assert session.score == {1: 0, 2: 0}
    assert session.status == "running"
    assert session.paired_devices == {1: ["a1", "a2"], 2: ["b1"]}


def test_end_saves_one_history_record(store, machine, history, clock, make_event):
    sid = make_running(store, machine)
    started = store.get(sid).started_at
    machine.apply(sid, make_event("a1", 1))
    clock.advance(90_000)

    session = machine.end(sid)

    matches = history.get_match_history()
    assert len(matches) == 1
    record = matches[0]
    assert record.session_id == sid
    assert record.location_id == "court-7"
    assert record.duration == session.ended_at - started == 90_000
    assert record.winner == "team1"
    assert record.match_id == f"match_{sid}_{session.ended_at}"


def test_history_failure_does_not_undo_end(store, clock, make_event):
    class BrokenHistory:
        def save_match(self, record):
            raise OSError("disk full")

    machine = ScoreStateMachine(store, BrokenHistory(), now=clock)
    sid = make_running(store, machine)

    assert machine.end(sid).status == "ended"
    assert store.get(sid).status == "ended"


@pytest.mark.parametrize(
    ("score", "winner"),
    [({1: 3, 2: 1}, "team1"), ({1: 0, 2: 2}, "team2"), ({1: 4, 2: 4}, "draw")],
)
def test_match_record_winner(score, winner):
    s = Session(session_id="S1", status="ended", score=score, started_at=1_000, ended_at=61_000)
    record = build_match_record(s)

    assert record is not None
    assert record.winner == winner
    assert record.duration == 60_000


def test_match_record_needs_start():
    assert build_match_record(Session(session_id="S1", status="ended", ended_at=5)) is None
