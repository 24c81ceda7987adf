"""Tests for the playbook definition store: validation, versioning, lifecycle."""

import random

import pytest

from scenarioflow.core.enums import ActionType, PlaybookStatus
from scenarioflow.core.exceptions import (
    ConcurrencyError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from scenarioflow.services.playbooks import (
    PlaybookDefinitionStore,
    PlaybookInput,
    StepInput,
    validate_steps,
)
from tests.conftest import (
    OTHER_TENANT,
    TENANT,
    create_playbook,
    create_scenario,
    make_step,
)


def _random_steps(rng: random.Random) -> tuple[list[StepInput], bool]:
    """Random step list plus whether its indexes are a valid 0..n-1 sequence."""
    n = rng.randint(1, 8)
    indexes = list(range(n))
    rng.shuffle(indexes)
    mode = rng.choice(["valid", "duplicate", "gap", "offset"])
    if mode == "duplicate" and n > 1:
        indexes[rng.randrange(n)] = indexes[rng.randrange(n)]
    elif mode == "gap":
        indexes[rng.randrange(n)] = n + rng.randint(0, 3)
    elif mode == "offset":
        indexes = [i + 1 for i in indexes]
    actions = list(ActionType)
    steps = [
        StepInput(
            name=f"step-{i}",
            action_type=rng.choice(actions).value,
            action_payload={"n": i},
            step_index=idx,
        )
        for i, idx in enumerate(indexes)
    ]
    return steps, sorted(indexes) == list(range(n))


class TestStepValidation:
    @pytest.mark.parametrize("seed", range(40))
    def test_indexes_must_be_contiguous(self, seed):
        steps, valid = _random_steps(random.Random(seed))
        if not valid:
            with pytest.raises(ValidationError):
                validate_steps(steps)
            return
        normalized = validate_steps(steps)
        assert [s.step_index for s in normalized] == list(range(len(steps)))
        by_name = {s.name: s.step_index for s in steps}
        assert all(by_name[s.name] == s.step_index for s in normalized)

    def test_steps_without_index_are_numbered_in_order(self):
        normalized = validate_steps([make_step("a"), make_step("b"), make_step("c")])
        assert [(s.step_index, s.name) for s in normalized] == [(0, "a"), (1, "b"), (2, "c")]

    def test_mixed_indexes_rejected(self):
        with pytest.raises(ValidationError):
            validate_steps([make_step("a", step_index=0), make_step("b")])

    def test_empty_rejected(self):
        with pytest.raises(ValidationError):
            validate_steps([])

    def test_approval_requires_roles(self):
        with pytest.raises(ValidationError) as exc:
            validate_steps([make_step("gate", requires_approval=True, approval_roles=[" "])])
        assert "steps[0].approval_roles" in exc.value.details

    def test_negative_wait_rejected(self):
        with pytest.raises(ValidationError):
            validate_steps([make_step("slow", wait_duration_minutes=-1)])

    def test_unknown_action_type_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_steps([make_step("x", action_type="teleport")])
        assert "steps[0].action_type" in exc.value.details

    def test_roles_dropped_when_no_approval(self):
        (step,) = validate_steps([make_step("x", approval_roles=["legal"])])
        assert step.approval_roles == []


class TestPlaybookLifecycle:
    @pytest.mark.asyncio
    async def test_create_starts_as_draft_v1(self, db_session):
        store = PlaybookDefinitionStore(db_session)
        template = await store.create(
            TENANT, PlaybookInput(name="Launch", steps=[make_step(), make_step("Follow up")])
        )
        assert template.version == 1
        assert template.status == PlaybookStatus.DRAFT.value
        assert template.is_latest
        assert [s.step_index for s in template.steps] == [0, 1]

    @pytest.mark.asyncio
    async def test_activate_is_idempotent(self, db_session):
        store = PlaybookDefinitionStore(db_session)
        template = await store.create(TENANT, PlaybookInput(name="Launch", steps=[make_step()]))
        await store.activate(TENANT, template.id)
        again = await store.activate(TENANT, template.id)
        assert again.status == PlaybookStatus.ACTIVE.value
        assert again.version == 1

    @pytest.mark.asyncio
    async def test_activate_archived_conflicts(self, db_session):
        store = PlaybookDefinitionStore(db_session)
        template = await store.create(TENANT, PlaybookInput(name="Launch", steps=[make_step()]))
        await store.archive(TENANT, template.id)
        with pytest.raises(StateConflictError):
            await store.activate(TENANT, template.id)

    @pytest.mark.asyncio
    async def test_edit_creates_new_version_and_keeps_old(self, session_factory):
        template = await create_playbook(session_factory, steps=[make_step("a"), make_step("b")])
        async with session_factory() as session:
            store = PlaybookDefinitionStore(session)
            edited = await store.edit(
                TENANT, template.id, [make_step("b"), make_step("a"), make_step("c")],
                expected_version=1,
            )
            await session.commit()
        assert edited.version == 2
        assert edited.status == PlaybookStatus.ACTIVE.value

        async with session_factory() as session:
            store = PlaybookDefinitionStore(session)
            latest = await store.get(TENANT, template.id)
            v1 = await store.get(TENANT, template.id, version=1)
            versions = await store.list_versions(TENANT, template.id)
        assert latest.version == 2
        assert [s.name for s in latest.steps] == ["b", "a", "c"]
        assert [s.name for s in v1.steps] == ["a", "b"]
        assert not v1.is_latest
        assert [v.version for v in versions] == [1, 2]

    @pytest.mark.asyncio
    async def test_stale_edit_raises_concurrency_error(self, session_factory):
        template = await create_playbook(session_factory)
        async with session_factory() as session:
            await PlaybookDefinitionStore(session).edit(
                TENANT, template.id, [make_step("new")], expected_version=1
            )
            await session.commit()
        async with session_factory() as session:
            with pytest.raises(ConcurrencyError) as exc:
                await PlaybookDefinitionStore(session).edit(
                    TENANT, template.id, [make_step("lost")], expected_version=1
                )
        assert exc.value.actual == 2

    @pytest.mark.asyncio
    async def test_invalid_edit_leaves_latest_untouched(self, session_factory):
        template = await create_playbook(session_factory)
        async with session_factory() as session:
            with pytest.raises(ValidationError):
                await PlaybookDefinitionStore(session).edit(
                    TENANT, template.id,
                    [make_step("a", step_index=0), make_step("b", step_index=2)],
                    expected_version=1,
                )
        async with session_factory() as session:
            latest = await PlaybookDefinitionStore(session).get(TENANT, template.id)
        assert latest.version == 1

    @pytest.mark.asyncio
    async def test_edit_archived_conflicts(self, session_factory):
        template = await create_playbook(session_factory)
        async with session_factory() as session:
            store = PlaybookDefinitionStore(session)
            await store.archive(TENANT, template.id)
            with pytest.raises(StateConflictError):
                await store.edit(TENANT, template.id, [make_step()], expected_version=1)

    @pytest.mark.asyncio
    async def test_update_metadata_keeps_steps_and_version(self, session_factory):
        template = await create_playbook(session_factory, steps=[make_step("a"), make_step("b")])
        async with session_factory() as session:
            updated = await PlaybookDefinitionStore(session).update_metadata(
                TENANT, template.id,
                {"name": "  Recall response ", "risk_level": "critical", "tags": ["recall"]},
            )
            await session.commit()
        assert updated.name == "Recall response"
        assert updated.version == 1

        async with session_factory() as session:
            store = PlaybookDefinitionStore(session)
            latest = await store.get(TENANT, template.id)
            versions = await store.list_versions(TENANT, template.id)
        assert latest.risk_level == "critical"
        assert latest.tags == ["recall"]
        assert latest.status == PlaybookStatus.ACTIVE.value
        assert [s.name for s in latest.steps] == ["a", "b"]
        assert [v.version for v in versions] == [1]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("changes", [
        {"steps": []},
        {"version": 7},
        {"status": "active"},
        {"risk_level": "apocalyptic"},
        {"trigger_type": "whenever"},
        {"name": "   "},
    ])
    async def test_update_metadata_rejects_invalid_changes(self, session_factory, changes):
        template = await create_playbook(session_factory)
        async with session_factory() as session:
            with pytest.raises(ValidationError):
                await PlaybookDefinitionStore(session).update_metadata(TENANT, template.id, changes)

    @pytest.mark.asyncio
    async def test_update_metadata_archived_conflicts(self, session_factory):
        template = await create_playbook(session_factory)
        async with session_factory() as session:
            store = PlaybookDefinitionStore(session)
            await store.archive(TENANT, template.id)
            with pytest.raises(StateConflictError):
                await store.update_metadata(TENANT, template.id, {"name": "Renamed"})

    @pytest.mark.asyncio
    async def test_archive_marks_every_version(self, session_factory):
        template = await create_playbook(session_factory)
        async with session_factory() as session:
            store = PlaybookDefinitionStore(session)
            await store.edit(TENANT, template.id, [make_step("x")], expected_version=1)
            await store.archive(TENANT, template.id)
            await session.commit()
        async with session_factory() as session:
            versions = await PlaybookDefinitionStore(session).list_versions(TENANT, template.id)
        assert {v.status for v in versions} == {PlaybookStatus.ARCHIVED.value}

    @pytest.mark.asyncio
    async def test_delete_blocked_by_bound_scenario(self, session_factory):
        template = await create_playbook(session_factory)
        await create_scenario(session_factory, template.id)
        async with session_factory() as session:
            with pytest.raises(StateConflictError):
                await PlaybookDefinitionStore(session).delete(TENANT, template.id)

    @pytest.mark.asyncio
    async def test_delete_removes_all_versions(self, session_factory):
        template = await create_playbook(session_factory)
        async with session_factory() as session:
            store = PlaybookDefinitionStore(session)
            await store.edit(TENANT, template.id, [make_step("x")], expected_version=1)
            await store.delete(TENANT, template.id)
            await session.commit()
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await PlaybookDefinitionStore(session).get(TENANT, template.id, version=1)

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_see_playbook(self, session_factory):
        template = await create_playbook(session_factory)
        async with session_factory() as session:
            store = PlaybookDefinitionStore(session)
            with pytest.raises(NotFoundError):
                await store.get(OTHER_TENANT, template.id)
            with pytest.raises(NotFoundError):
                await store.archive(OTHER_TENANT, template.id)
            items, total = await store.list_playbooks(OTHER_TENANT)
        assert items == [] and total == 0

    @pytest.mark.asyncio
    async def test_list_returns_latest_versions_only(self, session_factory):
        first = await create_playbook(session_factory, name="One", category="crisis")
        await create_playbook(session_factory, name="Two", activate=False)
        async with session_factory() as session:
            await PlaybookDefinitionStore(session).edit(
                TENANT, first.id, [make_step("x")], expected_version=1
            )
            await session.commit()
        async with session_factory() as session:
            store = PlaybookDefinitionStore(session)
            items, total = await store.list_playbooks(TENANT)
            crisis, crisis_total = await store.list_playbooks(TENANT, category="crisis")
            drafts, _ = await store.list_playbooks(TENANT, status="draft")
        assert total == 2
        assert {(t.name, t.version) for t in items} == {("One", 2), ("Two", 1)}
        assert crisis_total == 1 and crisis[0].id == first.id
        assert [t.name for t in drafts] == ["Two"]
