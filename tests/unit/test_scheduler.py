"""
Tests for the scheduler implementations.

Reference:
- error_monitor/utils/scheduler.py
"""

import threading

import pytest

from error_monitor.utils.scheduler import SerializedScheduler, ThreadedScheduler, VirtualScheduler


class TestVirtualScheduler:

    def test_call_later_fires_at_deadline(self, scheduler):
        calls = []
        scheduler.call_later(10, lambda: calls.append(scheduler.now()))

        scheduler.advance(9.5)
        assert calls == []
        scheduler.advance(0.5)
        assert calls == [1_700_000_010.0]

    def test_callbacks_fire_in_deadline_order(self, scheduler):
        calls = []
        scheduler.call_later(5, lambda: calls.append("b"))
        scheduler.call_later(1, lambda: calls.append("a"))
        scheduler.call_later(5, lambda: calls.append("c"))

        scheduler.advance(10)
        assert calls == ["a", "b", "c"]

    def test_call_every_repeats(self, scheduler):
        calls = []
        handle = scheduler.call_every(60, lambda: calls.append(scheduler.now()))

        scheduler.advance(180)
        assert len(calls) == 3

        handle.cancel()
        scheduler.advance(180)
        assert len(calls) == 3

    def test_zero_delay_callbacks_run_on_run_pending(self, scheduler):
        calls = []
        scheduler.call_later(0, lambda: calls.append(1))
        assert scheduler.pending == 1

        scheduler.run_pending()
        assert calls == [1]
        assert scheduler.pending == 0

    def test_callback_scheduled_during_advance_fires_if_due(self, scheduler):
        calls = []
        scheduler.call_later(1, lambda: scheduler.call_later(1, lambda: calls.append(scheduler.now())))

        scheduler.advance(5)
        assert calls == [1_700_000_002.0]

    def test_failing_callback_does_not_stop_others(self, scheduler):
        calls = []

        def explode():
            raise RuntimeError("boom")

        scheduler.call_later(1, explode)
        scheduler.call_later(2, lambda: calls.append("ok"))

        scheduler.advance(5)
        assert calls == ["ok"]

    def test_shutdown_drops_pending(self, scheduler):
        calls = []
        scheduler.call_later(1, lambda: calls.append(1))
        scheduler.shutdown()

        scheduler.call_later(1, lambda: calls.append(2))
        scheduler.advance(5)
        assert calls == []

    def test_invalid_interval(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.call_every(0, lambda: None)


class TestSerializedScheduler:

    def test_callbacks_run_under_lock(self, scheduler):
        lock = threading.RLock()
        observed = []

        def check():
            # RLock exposes no public "is held"; a non-blocking acquire from
            # another thread must fail while the callback runs
            result = []
            probe = threading.Thread(target=lambda: result.append(lock.acquire(blocking=False)))
            probe.start()
            probe.join()
            observed.append(result[0])

        SerializedScheduler(scheduler, lock).call_later(1, check)
        scheduler.advance(1)
        assert observed == [False]

    def test_cancel_handle(self, scheduler):
        calls = []
        handle = SerializedScheduler(scheduler, threading.RLock()).call_later(1, lambda: calls.append(1))
        handle.cancel()
        scheduler.advance(5)
        assert calls == []


class TestThreadedScheduler:

    def test_runs_callback_on_worker_thread(self):
        scheduler = ThreadedScheduler(name="test-scheduler")
        done = threading.Event()
        thread_names = []

        def callback():
            thread_names.append(threading.current_thread().name)
            done.set()

        try:
            scheduler.call_later(0.01, callback)
            assert done.wait(timeout=5)
        finally:
            scheduler.shutdown()

        assert thread_names == ["test-scheduler"]

    def test_cancelled_call_does_not_run(self):
        scheduler = ThreadedScheduler()
        cancelled = threading.Event()
        marker = threading.Event()
        try:
            handle = scheduler.call_later(0.05, cancelled.set)
            handle.cancel()
            scheduler.call_later(0.1, marker.set)
            assert marker.wait(timeout=5)
        finally:
            scheduler.shutdown()

        assert not cancelled.is_set()
