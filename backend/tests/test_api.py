"""HTTP-level tests for the scenarioflow API."""

import pytest

from tests.conftest import OTHER_TENANT

PLAYBOOK = {
    "name": "Product recall response",
    "category": "crisis",
    "risk_level": "high",
    "steps": [
        {"name": "Draft holding statement", "action_type": "crisis_response",
         "action_payload": {"channel": "press"}},
        {"name": "Sign-off", "action_type": "approval_gate",
         "requires_approval": True, "approval_roles": ["comms_lead"]},
        {"name": "Publish statement", "action_type": "content_publish",
         "action_payload": {"channel": "web"}, "wait_duration_minutes": 5},
    ],
}


async def _active_playbook(client, body=None) -> dict:
    resp = await client.post("/api/playbooks", json=body or PLAYBOOK)
    assert resp.status_code == 201
    playbook_id = resp.json()["id"]
    resp = await client.post(f"/api/playbooks/{playbook_id}/activate")
    assert resp.status_code == 200
    return resp.json()


async def _scenario(client, playbook_id, **extra) -> dict:
    body = {"name": "Recall in EMEA", "playbook_id": playbook_id, "scenario_type": "crisis_sim",
            "context_parameters": {"incident": "battery recall", "audience": "retail"},
            "horizon_days": 10, **extra}
    resp = await client.post("/api/scenarios", json=body)
    assert resp.status_code == 201
    return resp.json()


class TestHealth:
    @pytest.mark.asyncio
    async def test_root(self, client):
        resp = await client.get("/")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "running"
        assert data["service"] == "scenarioflow API"

    @pytest.mark.asyncio
    async def test_org_header_required(self, client):
        resp = await client.get("/api/playbooks", headers={"X-Org-Id": ""})
        assert resp.status_code == 422


class TestPlaybookRoutes:
    @pytest.mark.asyncio
    async def test_create_and_activate(self, client):
        resp = await client.post("/api/playbooks", json=PLAYBOOK)
        assert resp.status_code == 201
        data = resp.json()
        assert data["version"] == 1
        assert data["status"] == "draft"
        assert data["status_display"] == {"label": "Draft", "color": "gray"}
        assert data["risk_display"]["label"] == "High"
        assert [s["step_index"] for s in data["steps"]] == [0, 1, 2]
        assert data["steps"][1]["action_label"] == "Approval Gate"
        assert data["created_by"] == "alice"

        resp = await client.post(f"/api/playbooks/{data['id']}/activate")
        assert resp.json()["status"] == "active"

    @pytest.mark.asyncio
    async def test_invalid_steps(self, client):
        body = {"name": "Broken", "steps": [
            {"name": "Gate", "action_type": "approval_gate", "requires_approval": True},
        ]}
        resp = await client.post("/api/playbooks", json=body)
        assert resp.status_code == 422
        assert "steps[0].approval_roles" in resp.json()["errors"]

    @pytest.mark.asyncio
    async def test_edit_versions_and_stale_edit(self, client):
        playbook = await _active_playbook(client)
        pid = playbook["id"]
        new_steps = [{"name": "Single step", "action_type": "governance"}]

        resp = await client.put(f"/api/playbooks/{pid}/steps",
                                json={"expected_version": 1, "steps": new_steps})
        assert resp.status_code == 200
        assert resp.json()["version"] == 2

        resp = await client.put(f"/api/playbooks/{pid}/steps",
                                json={"expected_version": 1, "steps": new_steps})
        assert resp.status_code == 409
        data = resp.json()
        assert data["error"] == "ConcurrencyError"
        assert data["expected_version"] == 1
        assert data["current_version"] == 2

        resp = await client.get(f"/api/playbooks/{pid}", params={"version": 1})
        assert len(resp.json()["steps"]) == 3
        resp = await client.get(f"/api/playbooks/{pid}/versions")
        assert [v["version"] for v in resp.json()] == [1, 2]

    @pytest.mark.asyncio
    async def test_list_and_tenant_isolation(self, client):
        playbook = await _active_playbook(client)
        resp = await client.get("/api/playbooks", params={"category": "crisis"})
        assert resp.json()["total"] == 1

        other = {"X-Org-Id": OTHER_TENANT.org_id}
        resp = await client.get(f"/api/playbooks/{playbook['id']}", headers=other)
        assert resp.status_code == 404
        assert resp.json()["resource"] == "PlaybookTemplate"
        resp = await client.get("/api/playbooks", headers=other)
        assert resp.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_delete_rules(self, client):
        playbook = await _active_playbook(client)
        scenario = await _scenario(client, playbook["id"])

        resp = await client.delete(f"/api/playbooks/{playbook['id']}")
        assert resp.status_code == 409

        assert (await client.delete(f"/api/scenarios/{scenario['id']}")).status_code == 200
        resp = await client.delete(f"/api/playbooks/{playbook['id']}")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Playbook deleted", "id": playbook["id"]}

    @pytest.mark.asyncio
    async def test_patch_metadata(self, client):
        playbook = await _active_playbook(client)
        resp = await client.patch(f"/api/playbooks/{playbook['id']}",
                                  json={"name": "Recall response v2", "risk_level": "critical"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["name"] == "Recall response v2"
        assert data["risk_display"]["label"] == "Critical"
        assert data["version"] == 1
        assert len(data["steps"]) == 3
        assert data["category"] == "crisis"

        resp = await client.patch(f"/api/playbooks/{playbook['id']}",
                                  json={"trigger_type": "whenever"})
        assert resp.status_code == 422
        audit = await client.get("/api/audit", params={"event_type": "playbook_updated"})
        assert audit.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_archive_blocks_activation(self, client):
        playbook = await _active_playbook(client)
        resp = await client.post(f"/api/playbooks/{playbook['id']}/archive")
        assert resp.json()["status"] == "archived"
        resp = await client.post(f"/api/playbooks/{playbook['id']}/activate")
        assert resp.status_code == 409
        assert resp.json()["current_status"] == "archived"


class TestScenarioRoutes:
    @pytest.mark.asyncio
    async def test_create_and_simulate(self, client):
        playbook = await _active_playbook(client)
        scenario = await _scenario(client, playbook["id"])
        assert scenario["playbook_version"] == 1
        assert scenario["scenario_type_label"] == "Crisis Simulation"

        resp = await client.post(f"/api/scenarios/{scenario['id']}/simulate")
        assert resp.status_code == 200
        data = resp.json()
        assert len(data["timeline"]) == 10
        assert len(data["step_previews"]) == 3
        assert 0 <= data["risk_score"] <= 100
        assert 0 <= data["confidence_score"] <= 1

        runs = await client.get("/api/runs")
        assert runs.json()["total"] == 0
        audit = await client.get("/api/audit", params={"event_type": "scenario_simulated"})
        assert audit.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_create_on_draft_playbook_conflicts(self, client):
        resp = await client.post("/api/playbooks", json=PLAYBOOK)
        draft_id = resp.json()["id"]
        resp = await client.post("/api/scenarios", json={"name": "Early", "playbook_id": draft_id})
        assert resp.status_code == 409
        assert resp.json()["current_status"] == "draft"

    @pytest.mark.asyncio
    async def test_patch_scenario(self, client):
        playbook = await _active_playbook(client)
        scenario = await _scenario(client, playbook["id"])
        resp = await client.patch(f"/api/scenarios/{scenario['id']}", json={
            "name": "Recall in APAC", "horizon_days": 14, "playbook_id": "ignored",
        })
        assert resp.status_code == 200
        data = resp.json()
        assert data["name"] == "Recall in APAC"
        assert data["horizon_days"] == 14
        assert data["playbook_id"] == playbook["id"]
        assert data["playbook_version"] == 1
        assert data["context_parameters"] == scenario["context_parameters"]

        resp = await client.patch(f"/api/scenarios/{scenario['id']}",
                                  json={"horizon_days": 400})
        assert resp.status_code == 422
        resp = await client.patch("/api/scenarios/nope", json={"name": "x"})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_horizon_validation(self, client):
        playbook = await _active_playbook(client)
        resp = await client.post("/api/scenarios", json={
            "name": "Too long", "playbook_id": playbook["id"], "horizon_days": 1000,
        })
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_scenario(self, client):
        resp = await client.post("/api/scenarios/nope/simulate")
        assert resp.status_code == 404
        resp = await client.post("/api/scenarios/nope/runs")
        assert resp.status_code == 404


class TestRunRoutes:
    @pytest.mark.asyncio
    async def test_approval_flow(self, client, app, clock):
        playbook = await _active_playbook(client)
        scenario = await _scenario(client, playbook["id"])

        resp = await client.post(f"/api/scenarios/{scenario['id']}/runs")
        assert resp.status_code == 201
        run = resp.json()
        assert run["status"] == "awaiting_approval"
        assert run["status_display"]["label"] == "Awaiting Approval"
        gate = run["steps"][1]
        assert gate["status"] == "ready"

        resp = await client.post(f"/api/runs/steps/{gate['id']}/approve",
                                 json={"approved": False})
        assert resp.status_code == 422

        resp = await client.post(f"/api/runs/steps/{gate['id']}/approve",
                                 json={"approved": True, "notes": "go"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "completed"
        assert resp.json()["approved_by"] == "alice"

        clock.advance(minutes=5)
        await app.state.orchestrator.fire_due_timers()

        resp = await client.get(f"/api/runs/{run['id']}")
        assert resp.status_code == 200
        detail = resp.json()
        assert detail["run"]["status"] == "completed"
        assert detail["run"]["risk_score"] is not None
        assert {e["event_type"] for e in detail["timeline"]} >= {
            "run_started", "step_approved", "run_completed",
        }

        stats = (await client.get("/api/stats")).json()
        assert stats["runs_by_status"]["completed"] == 1
        assert stats["risk_trend"] == "unknown"

    @pytest.mark.asyncio
    async def test_cancel_then_approve_conflicts(self, client):
        playbook = await _active_playbook(client)
        scenario = await _scenario(client, playbook["id"])
        run = (await client.post(f"/api/scenarios/{scenario['id']}/runs")).json()

        resp = await client.post(f"/api/runs/{run['id']}/cancel", json={"reason": "duplicate"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "cancelled"
        assert data["cancel_reason"] == "duplicate"
        assert [s["status"] for s in data["steps"]] == ["completed", "skipped", "skipped"]

        resp = await client.post(f"/api/runs/{run['id']}/cancel")
        assert resp.status_code == 200

        resp = await client.post(f"/api/runs/steps/{run['steps'][1]['id']}/approve",
                                 json={"approved": True})
        assert resp.status_code == 409
        assert resp.json()["current_status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_pause_resume(self, client):
        body = {"name": "Slow burn", "steps": [
            {"name": "Wait out the news cycle", "action_type": "wait",
             "wait_duration_minutes": 60},
        ]}
        playbook = await _active_playbook(client, body)
        scenario = await _scenario(client, playbook["id"])
        run = (await client.post(f"/api/scenarios/{scenario['id']}/runs")).json()
        assert run["status"] == "running"

        resp = await client.post(f"/api/runs/{run['id']}/pause")
        assert resp.json()["status"] == "paused"
        assert resp.json()["steps"][0]["wait_remaining_seconds"] == 3600
        resp = await client.post(f"/api/runs/{run['id']}/resume")
        assert resp.json()["status"] == "running"

    @pytest.mark.asyncio
    async def test_list_validation_and_not_found(self, client):
        resp = await client.get("/api/runs", params={"sort_by": "name"})
        assert resp.status_code == 422
        resp = await client.get("/api/runs/missing")
        assert resp.status_code == 404
        assert resp.json()["resource"] == "ScenarioRun"
        resp = await client.post("/api/runs/missing/pause")
        assert resp.status_code == 404
