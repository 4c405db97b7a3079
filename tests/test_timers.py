import threading

from card_idler.utils.timers import PeriodicTimer, TimerFactory


def test_periodic_timer_survives_callback_error():
    calls = []
    done = threading.Event()

    def callback():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first run fails")
        done.set()

    timer = TimerFactory().periodic(0.01, callback, name="test-periodic")
    try:
        assert done.wait(2)
    finally:
        timer.cancel()
    assert len(calls) >= 2


def test_cancelled_periodic_timer_never_fires():
    calls = []
    timer = PeriodicTimer(0.05, lambda: calls.append(1))
    timer.cancel()
    timer.start()
    timer._thread.join(1)

    assert calls == []
    assert timer.active is False


def test_once_timer_fires_once():
    fired = threading.Event()

    timer = TimerFactory().once(0.01, fired.set, name="test-once")

    assert fired.wait(2)
    assert timer.name == "test-once"
