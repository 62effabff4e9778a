"""
Jigu Backend: Graceful Shutdown Tests
=====================================

What:  Tests for the GracefulShutdown coordinator.
How:   exit_func is replaced with a recorder, so nothing calls sys.exit.

What we test:
    ✅ Every callback runs even when an earlier one fails
    ✅ Phases run in ascending order; one phase runs concurrently
    ✅ Concurrent shutdown requests run the sequence once
    ✅ Timeout exits with code 1, success with 0
    ✅ Faults trigger the sequence; repeated faults do not
    ✅ Signals keep a reference to the shutdown they start
    ✅ Registrations keep their names and phases
"""

import asyncio

import pytest

from jigu.shutdown import GracefulShutdown, ShutdownState


class TestCleanupSequence:
    def setup_method(self):
        self.exit_codes = []
        self.shutdown = GracefulShutdown(timeout_ms=1000, exit_func=self.exit_codes.append)

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_the_next(self):
        ran = []

        async def broken():
            raise RuntimeError("cannot close")

        async def fine():
            ran.append("fine")

        self.shutdown.register_cleanup(broken, "broken")
        self.shutdown.register_cleanup(fine, "fine")

        await self.shutdown.shutdown("test")

        assert ran == ["fine"]
        assert set(self.shutdown.attempted) == {"broken", "fine"}
        assert isinstance(self.shutdown.failed["broken"], RuntimeError)
        assert self.exit_codes == [0]
        assert self.shutdown.state is ShutdownState.TERMINATED

    @pytest.mark.asyncio
    async def test_sync_callbacks_are_supported(self):
        ran = []
        self.shutdown.register_cleanup(lambda: ran.append("sync"), "sync")
        assert await self.shutdown.run_cleanup() is True
        assert ran == ["sync"]

    @pytest.mark.asyncio
    async def test_phases_run_in_order(self):
        order = []

        def recorder(label, delay):
            async def callback():
                await asyncio.sleep(delay)
                order.append(label)
            return callback

        # Registered out of order; the slow phase-0 callback must still finish first
        self.shutdown.register_cleanup(recorder("mongo", 0), "mongo", phase=2)
        self.shutdown.register_cleanup(recorder("logs", 0), "logs", phase=1)
        self.shutdown.register_cleanup(recorder("http", 0.05), "http", phase=0)

        await self.shutdown.run_cleanup()

        assert order == ["http", "logs", "mongo"]

    @pytest.mark.asyncio
    async def test_same_phase_runs_concurrently(self):
        started = []
        release = asyncio.Event()

        async def waits(name):
            started.append(name)
            await release.wait()

        async def releaser():
            started.append("releaser")
            await asyncio.sleep(0)
            release.set()

        self.shutdown.register_cleanup(lambda: waits("a"), "a", phase=1)
        self.shutdown.register_cleanup(releaser, "releaser", phase=1)

        assert await self.shutdown.run_cleanup() is True
        assert sorted(started) == ["a", "releaser"]

    @pytest.mark.asyncio
    async def test_no_callbacks_completes(self):
        await self.shutdown.shutdown()
        assert self.exit_codes == [0]


class TestShutdownOnce:
    @pytest.mark.asyncio
    async def test_concurrent_requests_run_sequence_once(self):
        exit_codes = []
        shutdown = GracefulShutdown(timeout_ms=1000, exit_func=exit_codes.append)
        calls = []

        async def slow():
            calls.append("slow")
            await asyncio.sleep(0.05)

        shutdown.register_cleanup(slow, "slow")

        await asyncio.gather(shutdown.shutdown("SIGTERM"), shutdown.shutdown("SIGINT"))

        assert calls == ["slow"]
        assert exit_codes == [0]

    @pytest.mark.asyncio
    async def test_run_cleanup_after_termination_is_ignored(self):
        shutdown = GracefulShutdown(timeout_ms=1000, exit_func=lambda code: None)
        assert await shutdown.run_cleanup() is True
        assert await shutdown.run_cleanup() is None


class TestShutdownTimeout:
    @pytest.mark.asyncio
    async def test_timeout_exits_with_failure(self):
        exit_codes = []
        shutdown = GracefulShutdown(timeout_ms=50, exit_func=exit_codes.append)
        never = asyncio.Event()

        async def hangs():
            await never.wait()

        shutdown.register_cleanup(hangs, "hangs")
        await shutdown.shutdown("test")

        assert exit_codes == [1]
        assert shutdown.state is ShutdownState.TERMINATED
        never.set()
        await asyncio.sleep(0)

    def test_timeout_is_configurable(self):
        shutdown = GracefulShutdown()
        assert shutdown.timeout_ms == 30000
        shutdown.set_shutdown_timeout(5000)
        assert shutdown.timeout_ms == 5000


class TestFaultHandling:
    @pytest.mark.asyncio
    async def test_fault_starts_shutdown_once(self):
        exit_codes = []
        shutdown = GracefulShutdown(timeout_ms=1000, exit_func=exit_codes.append)

        first = shutdown.handle_fault(RuntimeError("boom"), "test")
        assert first is not None
        await asyncio.sleep(0)
        assert shutdown.is_shutting_down

        assert shutdown.handle_fault(RuntimeError("again"), "test") is None
        await first
        assert exit_codes == [0]

    @pytest.mark.asyncio
    async def test_signal_triggers_shutdown(self):
        exit_codes = []
        shutdown = GracefulShutdown(timeout_ms=1000, exit_func=exit_codes.append)
        shutdown._on_signal("SIGTERM")
        task = shutdown.shutdown_task
        assert task is not None

        shutdown._on_signal("SIGINT")
        assert shutdown.shutdown_task is task

        await task
        assert exit_codes == [0]
        assert shutdown.state is ShutdownState.TERMINATED

    @pytest.mark.asyncio
    async def test_fault_shutdown_is_kept(self):
        shutdown = GracefulShutdown(timeout_ms=1000, exit_func=lambda code: None)
        future = shutdown.handle_fault(RuntimeError("boom"), "test")
        assert shutdown.shutdown_task is future
        await future


class TestRegistration:
    def test_registrations_keep_name_and_phase(self):
        shutdown = GracefulShutdown(exit_func=lambda code: None)

        async def close_database():
            pass

        shutdown.register_cleanup(close_database, phase=2)
        shutdown.register_cleanup(lambda: None, "flush logs", phase=1)

        registrations = shutdown.registrations
        assert [(r.name, r.phase) for r in registrations] == [
            ("TestRegistration.test_registrations_keep_name_and_phase.<locals>.close_database", 2),
            ("flush logs", 1),
        ]

        # The returned list is a copy
        registrations.clear()
        assert len(shutdown.registrations) == 2
