"""
Tests for the Debouncer.
"""
import threading

from servicedir.utils import Debouncer


def test_burst_collapses_into_one_call():
    fired = threading.Event()
    calls = []

    def record(value):
        calls.append(value)
        fired.set()

    debouncer = Debouncer("test")
    for i in range(5):
        debouncer.schedule(lambda i=i: record(i), delay=0.05)

    assert fired.wait(timeout=2)
    assert calls == [4]
    assert debouncer.pending is False


def test_cancel_drops_pending_call():
    calls = []
    debouncer = Debouncer("test")
    debouncer.schedule(lambda: calls.append(1), delay=10)

    assert debouncer.cancel() is True
    assert debouncer.cancel() is False
    assert calls == []


def test_flush_runs_pending_call_now():
    calls = []
    debouncer = Debouncer("test")
    debouncer.schedule(lambda: calls.append("saved"), delay=10)

    assert debouncer.flush() is True
    assert calls == ["saved"]
    assert debouncer.flush() is False


def test_failing_call_does_not_escape_timer():
    fired = threading.Event()
    debouncer = Debouncer("test")

    def boom():
        fired.set()
        raise RuntimeError("nope")

    debouncer.schedule(boom, delay=0.01)
    assert fired.wait(timeout=2)
