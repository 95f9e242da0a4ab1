"""
TRUST API TESTS

Router wiring and error mapping through FastAPI's TestClient.
The app runs on TestClient's own event loop, so the engine uses NullPool
and no connection outlives the loop that opened it.
"""
import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import NullPool

from exceptions import TransientStorageError
from database import build_engine, build_session_factory, create_schema
from main import create_app
from trust_config import TrustThresholds


@pytest.fixture
def client(tmp_path, policy_table):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
    asyncio.run(create_schema(engine))
    app = create_app(build_session_factory(engine), policy_table, TrustThresholds())
    with TestClient(app) as test_client:
        yield test_client


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestEligibility:

    def test_new_pair_denied(self, client):
        response = client.post("/trust/eligibility", json={
            "website_id": "site-1", "action_code": "FIX_CANONICAL", "action_category": "tech-seo"
        })
        assert response.status_code == 200
        body = response.json()
        assert body["allowed"] is False
        assert body["current_trust_level"] == 1
        assert body["required_trust_level"] == 2
        assert body["execution_mode"] == "denied"

    def test_unknown_action_is_a_denial_not_an_error(self, client):
        response = client.post("/trust/eligibility", json={
            "website_id": "site-1", "action_code": "NOPE", "action_category": "tech-seo"
        })
        assert response.status_code == 200
        assert "unknown action" in response.json()["reason"]

    def test_missing_fields_rejected(self, client):
        response = client.post("/trust/eligibility", json={"website_id": "site-1"})
        assert response.status_code == 422


class TestOutcomes:

    def test_record_outcome_and_history(self, client):
        response = client.post("/trust/outcomes", json={
            "website_id": "site-1",
            "action_category": "tech-seo",
            "outcome": "success",
            "action_code": "FIX_CANONICAL",
            "evidence": ["canonical fixed", {"kind": "crawl", "detail": "recrawl clean"}],
            "impact_metrics": {"before": {"errors": 3}, "after": {"errors": 0}}
        })
        assert response.status_code == 200
        assert response.json()["success_count"] == 1
        assert response.json()["confidence"] == 100

        history = client.get("/trust/websites/site-1/history", params={"category": "tech-seo"}).json()
        assert len(history) == 1
        assert history[0]["evidence"][1]["kind"] == "crawl"

    def test_denied_outcome_value_rejected_by_schema(self, client):
        response = client.post("/trust/outcomes", json={
            "website_id": "site-1", "action_category": "tech-seo", "outcome": "denied"
        })
        assert response.status_code == 422

    def test_record_denial(self, client):
        response = client.post("/trust/denials", json={
            "website_id": "site-1",
            "action_code": "FIX_CANONICAL",
            "action_category": "tech-seo",
            "reason": "requires level 2, currently level 1"
        })
        assert response.status_code == 200
        assert response.json()["outcome"] == "denied"

    def test_history_paging_validated(self, client):
        response = client.get("/trust/websites/site-1/history", params={"limit": 0})
        assert response.status_code == 422


class TestTrustRecords:

    def test_get_record_and_progress(self, client):
        record = client.get("/trust/websites/site-1/categories/tech-seo").json()
        assert record["trust_level"] == 1

        progress = client.get("/trust/websites/site-1/categories/tech-seo/progress").json()
        assert progress["next_level"] == 2
        assert progress["samples_needed"] == 10

    def test_override_and_transitions(self, client):
        response = client.post("/trust/websites/site-1/categories/tech-seo/override", json={
            "level": 3, "actor": "ops@example.com", "reason": "trusted"
        })
        assert response.status_code == 200
        assert response.json()["trust_level"] == 3

        transitions = client.get("/trust/websites/site-1/transitions").json()
        assert transitions[0]["kind"] == "admin_override"
        assert transitions[0]["to_level"] == 3

    def test_override_out_of_range(self, client):
        response = client.post("/trust/websites/site-1/categories/tech-seo/override", json={
            "level": 5, "actor": "ops@example.com"
        })
        assert response.status_code == 422

    def test_seed(self, client):
        response = client.post("/trust/websites/site-1/seed", json={"categories": ["tech-seo", "content"]})
        assert response.status_code == 200
        assert [r["action_category"] for r in response.json()] == ["tech-seo", "content"]


class TestControls:

    def test_kill_switch_blocks_eligibility(self, client):
        client.post("/trust/websites/site-1/categories/tech-seo/override", json={
            "level": 3, "actor": "ops@example.com"
        })
        response = client.post("/trust/controls/kill-switch", json={
            "enabled": True, "triggered_by": "ops@example.com", "reason": "incident"
        })
        assert response.status_code == 200
        assert response.json()["allowed"] is False

        result = client.post("/trust/eligibility", json={
            "website_id": "site-1", "action_code": "FIX_CANONICAL", "action_category": "tech-seo"
        }).json()
        assert result["allowed"] is False
        assert "kill switch" in result["reason"]

    def test_pause_resume(self, client):
        paused = client.post("/trust/controls/websites/site-1/pause", json={"triggered_by": "ops"}).json()
        assert paused["checks"]["website_paused"] is True

        resumed = client.post("/trust/controls/websites/site-1/resume", json={"triggered_by": "ops"}).json()
        assert resumed["allowed"] is True

        state = client.get("/trust/controls/safety", params={"website_id": "site-1"}).json()
        assert state["allowed"] is True

    def test_category_disable_enable(self, client):
        disabled = client.post("/trust/controls/categories/tech-seo/disable", json={
            "triggered_by": "ops", "reason": "bad rollout"
        }).json()
        assert disabled["checks"]["category_disabled"] is True

        result = client.post("/trust/eligibility", json={
            "website_id": "site-1", "action_code": "AUDIT_TITLES", "action_category": "tech-seo"
        }).json()
        assert result["allowed"] is False
        assert "category tech-seo is disabled" in result["reason"]

        state = client.get("/trust/controls/safety", params={"action_category": "tech-seo"}).json()
        assert state["allowed"] is False

        enabled = client.post("/trust/controls/categories/tech-seo/enable", json={"triggered_by": "ops"}).json()
        assert enabled["allowed"] is True

    def test_mode(self, client):

        response = client.post("/trust/controls/mode", json={"mode": "observe_only", "triggered_by": "ops"})
        assert response.json()["checks"]["observe_only_mode"] is True

        bad = client.post("/trust/controls/mode", json={"mode": "yolo", "triggered_by": "ops"})
        assert bad.status_code == 422


class TestErrorMapping:

    def test_domain_error_mapped_to_status(self, client):
        service = client.app.state.trust_service

        async def unavailable(*args, **kwargs):
            raise TransientStorageError("get_trust_record", cause="connection reset")

        service.get_trust_record = unavailable
        response = client.get("/trust/websites/site-1/categories/tech-seo")

        assert response.status_code == 503
        assert response.json()["detail"]["error"]["code"] == "TransientStorageError"
