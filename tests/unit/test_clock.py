"""Tests for the clock implementations."""

import threading

from liquidcache_admin.console.clock import ManualClock, TimerLoop


class TestManualClock:
    def test_advance_runs_due_callbacks_in_order(self):
        clock = ManualClock(start=100.0)
        fired = []
        clock.schedule(2, lambda: fired.append(("b", clock.time())))
        clock.schedule(1, lambda: fired.append(("a", clock.time())))
        clock.schedule(5, lambda: fired.append(("c", clock.time())))

        assert clock.advance(3) == 2
        assert fired == [("a", 101.0), ("b", 102.0)]
        assert clock.time() == 103.0
        assert clock.pending_delays() == [2.0]

    def test_cancel(self):
        clock = ManualClock()
        fired = []
        handle = clock.schedule(1, lambda: fired.append(1))
        clock.cancel(handle)
        clock.cancel(None)
        clock.advance(10)
        assert fired == []
        assert clock.pending_count == 0

    def test_callbacks_scheduled_during_advance(self):
        clock = ManualClock()
        fired = []

        def first():
            fired.append("first")
            clock.schedule(1, lambda: fired.append("second"))

        clock.schedule(1, first)
        clock.advance(5)
        assert fired == ["first", "second"]

    def test_call_soon_runs_on_run_ready(self):
        clock = ManualClock()
        fired = []
        clock.call_soon(lambda: fired.append(1))
        assert fired == []
        assert clock.run_ready() == 1
        assert fired == [1]

    def test_failing_callback_does_not_stop_others(self):
        clock = ManualClock()
        fired = []

        def broken():
            raise RuntimeError("bug")

        clock.schedule(1, broken)
        clock.schedule(2, lambda: fired.append(1))
        clock.advance(3)
        assert fired == [1]


class TestTimerLoop:
    def test_runs_callbacks_on_its_thread(self):
        loop = TimerLoop(name="test-clock")
        loop.start()
        try:
            done = threading.Event()
            seen = []

            def callback():
                seen.append(threading.current_thread().name)
                done.set()

            loop.schedule(0.01, callback)
            assert done.wait(2.0)
            assert seen == ["test-clock"]
        finally:
            loop.stop()
        assert not loop.is_alive()

    def test_stop_drops_pending(self):
        loop = TimerLoop()
        loop.start()
        fired = []
        loop.schedule(60, lambda: fired.append(1))
        loop.stop()
        assert fired == []
        assert not loop.is_alive()
