"""
Unit tests for TaskSupervisor

Covers:
- Failed tasks are logged, recorded and reported to the error hook
- The failure record is bounded, oldest entries dropped first
- drain() and pending
"""

import pytest

from acquirarr.services.background import MAX_RECORDED_FAILURES, TaskSupervisor


async def explode(message):
    raise RuntimeError(message)


async def succeed():
    return "ok"


class TestSupervisor:

    @pytest.mark.asyncio
    async def test_failure_recorded_and_hooked(self):
        seen = []
        supervisor = TaskSupervisor(on_error=lambda name, error: seen.append((name, str(error))))

        supervisor.spawn(explode("webhook down"), name="notify:grab")
        supervisor.spawn(succeed(), name="notify:import")
        await supervisor.drain()

        assert supervisor.pending == 0
        assert list(supervisor.failures) == ["notify:grab: webhook down"]
        assert seen == [("notify:grab", "webhook down")]

    @pytest.mark.asyncio
    async def test_failure_record_is_bounded(self):
        supervisor = TaskSupervisor()
        total = MAX_RECORDED_FAILURES + 25

        for i in range(total):
            supervisor.spawn(explode(f"error {i}"), name=f"research:{i}")
        await supervisor.drain()

        assert len(supervisor.failures) == MAX_RECORDED_FAILURES
        assert supervisor.failures[0] == "research:25: error 25"
        assert supervisor.recent_failures(2) == [
            f"research:{total - 2}: error {total - 2}",
            f"research:{total - 1}: error {total - 1}",
        ]

    @pytest.mark.asyncio
    async def test_broken_hook_does_not_propagate(self):
        def hook(name, error):
            raise ValueError("hook bug")

        supervisor = TaskSupervisor(on_error=hook)
        supervisor.spawn(explode("boom"), name="notify:fail")
        await supervisor.drain()

        assert supervisor.recent_failures() == ["notify:fail: boom"]
