"""Tests for the run scheduler (wait timers and scheduled starts)."""

import asyncio
from datetime import timedelta

import pytest

from scenarioflow.services.orchestrator import RunOrchestrator
from scenarioflow.services.scheduler import RunScheduler
from tests.conftest import TENANT, create_playbook, create_scenario, make_step


async def _eventually(check, timeout: float = 5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not await check():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.02)


async def _run_status(orchestrator, run_id):
    return (await orchestrator.get_run(TENANT, run_id)).status


class TestRunScheduler:
    @pytest.mark.asyncio
    async def test_wait_timer_fires(self, session_factory, orchestrator, clock):
        scheduler = RunScheduler(orchestrator, clock=clock, poll_interval=0.01)
        await scheduler.start()
        try:
            template = await create_playbook(
                session_factory, steps=[make_step("Cool-off", wait_duration_minutes=10)]
            )
            scenario = await create_scenario(session_factory, template.id)
            run = await orchestrator.start_run(TENANT, scenario.id)
            assert scheduler.armed == {run.id: clock() + timedelta(minutes=10)}

            await asyncio.sleep(0.05)
            assert await _run_status(orchestrator, run.id) == "running"

            clock.advance(minutes=10)

            async def completed():
                return await _run_status(orchestrator, run.id) == "completed"

            await _eventually(completed)
            assert scheduler.armed == {}
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_scheduled_start_fires(self, session_factory, orchestrator, clock):
        scheduler = RunScheduler(orchestrator, clock=clock, poll_interval=0.01)
        await scheduler.start()
        try:
            template = await create_playbook(session_factory)
            scenario = await create_scenario(session_factory, template.id)
            run = await orchestrator.start_run(
                TENANT, scenario.id, scheduled_at=clock() + timedelta(hours=3)
            )
            assert run.id in scheduler.armed

            clock.advance(hours=3)

            async def completed():
                return await _run_status(orchestrator, run.id) == "completed"

            await _eventually(completed)
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_pause_disarms_and_resume_rearms(self, session_factory, orchestrator, clock):
        scheduler = RunScheduler(orchestrator, clock=clock, poll_interval=0.01)
        await scheduler.start()
        try:
            template = await create_playbook(
                session_factory, steps=[make_step("Cool-off", wait_duration_minutes=30)]
            )
            scenario = await create_scenario(session_factory, template.id)
            run = await orchestrator.start_run(TENANT, scenario.id)

            clock.advance(minutes=10)
            await orchestrator.pause_run(TENANT, run.id)
            assert scheduler.armed == {}

            await orchestrator.resume_run(TENANT, run.id)
            assert scheduler.armed == {run.id: clock() + timedelta(minutes=20)}
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_rehydrate_after_restart(self, session_factory, dispatcher, clock):
        before_restart = RunOrchestrator(session_factory, dispatcher, clock=clock)
        template = await create_playbook(
            session_factory, steps=[make_step("Cool-off", wait_duration_minutes=15)]
        )
        scenario = await create_scenario(session_factory, template.id)
        waiting = await before_restart.start_run(TENANT, scenario.id)
        scheduled = await before_restart.start_run(
            TENANT, scenario.id, scheduled_at=clock() + timedelta(days=2)
        )

        restarted = RunOrchestrator(session_factory, dispatcher, clock=clock)
        scheduler = RunScheduler(restarted, clock=clock, poll_interval=0.01)
        try:
            assert await scheduler.start() == 2
            assert scheduler.armed == {
                waiting.id: clock() + timedelta(minutes=15),
                scheduled.id: clock() + timedelta(days=2),
            }

            clock.advance(minutes=15)

            async def completed():
                return await _run_status(restarted, waiting.id) == "completed"

            await _eventually(completed)
            assert list(scheduler.armed) == [scheduled.id]
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_arm_ignored_until_started(self, orchestrator, clock):
        scheduler = RunScheduler(orchestrator, clock=clock, poll_interval=0.01)
        scheduler.arm("run-x", clock() + timedelta(minutes=1))
        assert scheduler.armed == {}

        await scheduler.start()
        scheduler.arm("run-x", clock() + timedelta(minutes=1))
        assert "run-x" in scheduler.armed
        await scheduler.stop()
        assert scheduler.armed == {}
