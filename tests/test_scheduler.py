import threading
import time

from scorely.scheduler import ExpiryScheduler

WAIT_S = 2.0


def test_job_fires_once_and_clears():
    sched = ExpiryScheduler()
    fired = threading.Event()

    sched.schedule("S1", 0.01, fired.set)

    assert fired.wait(WAIT_S)
    # Give the timer thread a moment to return after running fn
    for _ in range(100):
        if not sched.pending("S1"):
            break
        time.sleep(0.01)
    assert not sched.pending("S1")


def test_cancel_prevents_job():
    sched = ExpiryScheduler()
    fired = threading.Event()

    sched.schedule("S1", 0.2, fired.set)
    assert sched.cancel("S1")

    assert not fired.wait(0.4)
    assert not sched.cancel("S1")


def test_reschedule_replaces_previous_job():
    sched = ExpiryScheduler()
    calls: list[str] = []
    done = threading.Event()

    sched.schedule("S1", 0.2, lambda: calls.append("old"))

    def new() -> None:
        calls.append("new")
        done.set()

    sched.schedule("S1", 0.01, new)

    assert done.wait(WAIT_S)
    time.sleep(0.3)
    assert calls == ["new"]


def test_keys_are_independent():
    sched = ExpiryScheduler()
    a, b = threading.Event(), threading.Event()

    sched.schedule("A", 0.01, a.set)
    sched.schedule("B", 0.3, b.set)
    sched.cancel("B")

    assert a.wait(WAIT_S)
    assert not b.wait(0.4)


def test_failing_job_is_contained():
    sched = ExpiryScheduler()
    after = threading.Event()

    def boom() -> None:
        raise RuntimeError("boom")

    sched.schedule("A", 0.01, boom)
    sched.schedule("B", 0.05, after.set)

    assert after.wait(WAIT_S)


def test_cancel_all():
    sched = ExpiryScheduler()
    fired = threading.Event()
    for key in ("A", "B", "C"):
        sched.schedule(key, 0.2, fired.set)

    sched.cancel_all()

    assert not any(sched.pending(k) for k in ("A", "B", "C"))
    assert not fired.wait(0.4)
