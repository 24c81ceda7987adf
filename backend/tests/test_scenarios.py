"""Tests for the scenario registry."""

import pytest

from scenarioflow.core.exceptions import NotFoundError, StateConflictError, ValidationError
from scenarioflow.db.models import ScenarioRun
from scenarioflow.services.audit import list_audit_logs
from scenarioflow.services.playbooks import PlaybookDefinitionStore
from scenarioflow.services.scenarios import ScenarioRegistry
from tests.conftest import (
    OTHER_TENANT,
    TENANT,
    approval_playbook_steps,
    count_rows,
    create_playbook,
    create_scenario,
    make_step,
)


class TestScenarioCreate:
    @pytest.mark.asyncio
    async def test_pins_current_version(self, session_factory):
        template = await create_playbook(session_factory)
        async with session_factory() as session:
            await PlaybookDefinitionStore(session).edit(
                TENANT, template.id, [make_step("a"), make_step("b")], expected_version=1
            )
            await session.commit()

        scenario = await create_scenario(
            session_factory, template.id,
            context_parameters={"industry": "retail"}, baseline_risk="high",
        )
        assert scenario.playbook_version == 2
        assert scenario.baseline_risk == "high"
        assert scenario.context_parameters == {"industry": "retail"}

        # A later edit does not move an existing scenario
        async with session_factory() as session:
            await PlaybookDefinitionStore(session).edit(
                TENANT, template.id, [make_step("c")], expected_version=2
            )
            await session.commit()
        async with session_factory() as session:
            reloaded = await ScenarioRegistry(session).get(TENANT, scenario.id)
        assert reloaded.playbook_version == 2

    @pytest.mark.asyncio
    async def test_default_horizon(self, session_factory):
        template = await create_playbook(session_factory)
        scenario = await create_scenario(session_factory, template.id)
        assert scenario.horizon_days == 30

    @pytest.mark.asyncio
    @pytest.mark.parametrize("horizon", [0, -5, 366])
    async def test_horizon_out_of_bounds(self, session_factory, horizon):
        template = await create_playbook(session_factory)
        with pytest.raises(ValidationError):
            await create_scenario(session_factory, template.id, horizon_days=horizon)

    @pytest.mark.asyncio
    async def test_unknown_baseline_risk(self, session_factory):
        template = await create_playbook(session_factory)
        with pytest.raises(ValidationError):
            await create_scenario(session_factory, template.id, baseline_risk="apocalyptic")

    @pytest.mark.asyncio
    async def test_archived_playbook_rejected(self, session_factory):
        template = await create_playbook(session_factory)
        async with session_factory() as session:
            await PlaybookDefinitionStore(session).archive(TENANT, template.id)
            await session.commit()
        with pytest.raises(StateConflictError):
            await create_scenario(session_factory, template.id)

    @pytest.mark.asyncio
    async def test_draft_playbook_rejected(self, session_factory):
        template = await create_playbook(session_factory, activate=False)
        with pytest.raises(StateConflictError) as exc:
            await create_scenario(session_factory, template.id)
        assert exc.value.current_status == "draft"

    @pytest.mark.asyncio
    async def test_draft_edited_then_activated_binds_runnable_version(
        self, session_factory, orchestrator
    ):
        template = await create_playbook(session_factory, activate=False)
        async with session_factory() as session:
            store = PlaybookDefinitionStore(session)
            await store.edit(TENANT, template.id, [make_step("a"), make_step("b")],
                             expected_version=1)
            await store.activate(TENANT, template.id)
            await session.commit()

        scenario = await create_scenario(session_factory, template.id)
        assert scenario.playbook_version == 2
        run = await orchestrator.start_run(TENANT, scenario.id)
        assert run.status == "completed"
        assert [s.name for s in run.steps] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_other_tenant_playbook_not_found(self, session_factory):
        template = await create_playbook(session_factory)
        with pytest.raises(NotFoundError):
            await create_scenario(session_factory, template.id, tenant=OTHER_TENANT)


class TestScenarioUpdate:
    @pytest.mark.asyncio
    async def test_update_fields_keeps_binding(self, session_factory):
        template = await create_playbook(session_factory)
        scenario = await create_scenario(session_factory, template.id)
        async with session_factory() as session:
            await PlaybookDefinitionStore(session).edit(
                TENANT, template.id, [make_step("c")], expected_version=1
            )
            await session.commit()

        async with session_factory() as session:
            updated = await ScenarioRegistry(session).update(TENANT, scenario.id, {
                "name": "Recall in APAC",
                "horizon_days": 90,
                "baseline_risk": "critical",
                "context_parameters": {"incident": "recall"},
            })
            await session.commit()
        assert updated.name == "Recall in APAC"
        assert updated.horizon_days == 90
        assert updated.baseline_risk == "critical"
        assert updated.context_parameters == {"incident": "recall"}
        assert updated.playbook_version == 1

        async with session_factory() as session:
            entries, total = await list_audit_logs(
                session, TENANT, scenario_id=scenario.id, event_type="scenario_updated"
            )
        assert total == 1
        assert entries[0].payload["fields"] == [
            "baseline_risk", "context_parameters", "horizon_days", "name",
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("changes", [
        {"playbook_id": "other"},
        {"playbook_version": 2},
        {"horizon_days": 0},
        {"horizon_days": 366},
        {"scenario_type": "war_game"},
        {"baseline_risk": None},
        {"name": ""},
    ])
    async def test_update_rejects_invalid_changes(self, session_factory, changes):
        template = await create_playbook(session_factory)
        scenario = await create_scenario(session_factory, template.id)
        async with session_factory() as session:
            with pytest.raises(ValidationError):
                await ScenarioRegistry(session).update(TENANT, scenario.id, changes)

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_update(self, session_factory):
        template = await create_playbook(session_factory)
        scenario = await create_scenario(session_factory, template.id)
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await ScenarioRegistry(session).update(OTHER_TENANT, scenario.id, {"name": "x"})


class TestScenarioListAndDelete:
    @pytest.mark.asyncio
    async def test_list_filters(self, session_factory):
        template = await create_playbook(session_factory)
        await create_scenario(session_factory, template.id, name="Recall",
                              scenario_type="crisis_sim")
        await create_scenario(session_factory, template.id, name="Launch",
                              scenario_type="campaign_sim")
        async with session_factory() as session:
            registry = ScenarioRegistry(session)
            items, total = await registry.list_scenarios(TENANT)
            crisis, crisis_total = await registry.list_scenarios(TENANT, scenario_type="crisis_sim")
            _, other_total = await registry.list_scenarios(OTHER_TENANT)
        assert total == 2
        assert crisis_total == 1 and crisis[0].name == "Recall"
        assert other_total == 0

    @pytest.mark.asyncio
    async def test_delete_blocked_while_run_is_live(self, session_factory, orchestrator):
        template = await create_playbook(session_factory, steps=approval_playbook_steps())
        scenario = await create_scenario(session_factory, template.id)
        run = await orchestrator.start_run(TENANT, scenario.id)
        assert run.status == "awaiting_approval"

        async with session_factory() as session:
            with pytest.raises(StateConflictError):
                await ScenarioRegistry(session).delete(TENANT, scenario.id)

    @pytest.mark.asyncio
    async def test_delete_removes_finished_runs(self, session_factory, orchestrator):
        template = await create_playbook(session_factory)
        scenario = await create_scenario(session_factory, template.id)
        run = await orchestrator.start_run(TENANT, scenario.id)
        assert run.status == "completed"

        async with session_factory() as session:
            await ScenarioRegistry(session).delete(TENANT, scenario.id)
            await session.commit()
        assert await count_rows(session_factory, ScenarioRun) == 0
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await ScenarioRegistry(session).get(TENANT, scenario.id)

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_delete(self, session_factory):
        template = await create_playbook(session_factory)
        scenario = await create_scenario(session_factory, template.id)
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await ScenarioRegistry(session).delete(OTHER_TENANT, scenario.id)
