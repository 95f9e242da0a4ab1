"""
ELIGIBILITY CHECKER TESTS

Policy resolution, operator switches, degraded categories and level gaps.
"""
import pytest

from schemas import ExecutionMode

pytestmark = pytest.mark.asyncio(loop_scope="function")


class TestPolicyResolution:

    async def test_new_pair_denied_for_level_two_action(self, service, website_id):
        """
        SCENARIO: fresh (website, tech-seo), action requires level 2

        EXPECTED: denied, current level 1, gap in reason
        """
        result = await service.check_eligibility(website_id, "FIX_CANONICAL", "tech-seo")

        assert result.allowed is False
        assert result.current_trust_level == 1
        assert result.required_trust_level == 2
        assert result.execution_mode == ExecutionMode.DENIED
        assert "requires level 2" in result.reason
        assert "currently level 1" in result.reason
        assert result.retryable is False

    async def test_first_check_creates_level_one_record(self, service, website_id):
        await service.check_eligibility(website_id, "FIX_CANONICAL", "tech-seo")
        records = await service.list_trust_records(website_id)
        assert [(r.action_category, r.trust_level) for r in records] == [("tech-seo", 1)]

    async def test_unknown_action_denied_without_ledger_mutation(self, service, website_id):
        """
        SCENARIO: action code with no policy entry

        EXPECTED: denied with "unknown action", no TrustRecord written
        """
        result = await service.check_eligibility(website_id, "DROP_ALL_PAGES", "tech-seo")

        assert result.allowed is False
        assert "unknown action" in result.reason
        assert result.required_trust_level is None
        assert result.current_trust_level is None
        assert await service.list_trust_records(website_id) == []

    async def test_category_mismatch_denied(self, service, website_id):
        result = await service.check_eligibility(website_id, "FIX_CANONICAL", "content")

        assert result.allowed is False
        assert "tech-seo" in result.reason
        assert await service.list_trust_records(website_id) == []

    async def test_level_one_action_allowed_at_level_one(self, service, website_id):
        result = await service.check_eligibility(website_id, "AUDIT_TITLES", "tech-seo")

        assert result.allowed is True
        assert result.current_trust_level == 1
        assert result.execution_mode == ExecutionMode.ASSISTED


class TestTrustLevels:

    async def test_allowed_once_level_reached(self, service, website_id):
        await service.admin_set_trust_level(website_id, "tech-seo", 2, actor="ops@example.com")
        result = await service.check_eligibility(website_id, "FIX_CANONICAL", "tech-seo")

        assert result.allowed is True
        assert result.current_trust_level == 2
        assert result.execution_mode == ExecutionMode.ASSISTED

    async def test_level_three_runs_autonomously(self, service, website_id):
        await service.admin_set_trust_level(website_id, "tech-seo", 3, actor="ops@example.com")
        result = await service.check_eligibility(website_id, "UPDATE_ROBOTS_TXT", "tech-seo")

        assert result.allowed is True
        assert result.execution_mode == ExecutionMode.AUTONOMOUS

    async def test_levels_tracked_per_category(self, service, website_id):
        await service.admin_set_trust_level(website_id, "tech-seo", 3, actor="ops@example.com")
        result = await service.check_eligibility(website_id, "REWRITE_META_DESCRIPTION", "content")

        assert result.allowed is False
        assert result.current_trust_level == 1

    async def test_check_is_repeatable(self, service, website_id):
        first = await service.check_eligibility(website_id, "FIX_CANONICAL", "tech-seo")
        second = await service.check_eligibility(website_id, "FIX_CANONICAL", "tech-seo")
        assert first == second
        record = await service.get_trust_record(website_id, "tech-seo")
        assert record.success_count == 0
        assert record.failure_count == 0


class TestDegraded:

    async def test_degraded_category_denied_regardless_of_level(self, service, website_id):
        await service.admin_set_trust_level(website_id, "tech-seo", 3, actor="ops@example.com")
        for _ in range(3):
            await service.record_outcome(website_id, "tech-seo", "failure")

        record = await service.get_trust_record(website_id, "tech-seo")
        assert record.is_degraded is True
        assert record.trust_level == 2

        # level 2 would normally allow a level-1 action
        result = await service.check_eligibility(website_id, "AUDIT_TITLES", "tech-seo")
        assert result.allowed is False
        assert "category degraded" in result.reason
        assert result.current_trust_level == 2


class TestOperatorSwitches:

    async def test_global_kill_switch_denies(self, service, website_id):
        await service.admin_set_trust_level(website_id, "tech-seo", 3, actor="ops@example.com")
        await service.set_global_kill_switch(True, triggered_by="ops@example.com", reason="incident")

        result = await service.check_eligibility(website_id, "FIX_CANONICAL", "tech-seo")
        assert result.allowed is False
        assert "kill switch" in result.reason

        await service.set_global_kill_switch(False, triggered_by="ops@example.com")
        result = await service.check_eligibility(website_id, "FIX_CANONICAL", "tech-seo")
        assert result.allowed is True

    async def test_paused_website_denies_only_that_website(self, service, website_id):
        for site in (website_id, "site-2"):
            await service.admin_set_trust_level(site, "tech-seo", 2, actor="ops@example.com")
        await service.pause_website(website_id, triggered_by="ops@example.com", reason="migration")

        paused = await service.check_eligibility(website_id, "FIX_CANONICAL", "tech-seo")
        other = await service.check_eligibility("site-2", "FIX_CANONICAL", "tech-seo")

        assert paused.allowed is False
        assert "paused" in paused.reason
        assert other.allowed is True

    async def test_disabled_category_denies_only_that_category(self, service, website_id):
        await service.admin_set_trust_level(website_id, "tech-seo", 3, actor="ops@example.com")
        await service.admin_set_trust_level(website_id, "content", 3, actor="ops@example.com")
        await service.disable_category("tech-seo", triggered_by="ops@example.com", reason="bad rollout")

        disabled = await service.check_eligibility(website_id, "FIX_CANONICAL", "tech-seo")
        other = await service.check_eligibility(website_id, "REWRITE_META_DESCRIPTION", "content")

        assert disabled.allowed is False
        assert disabled.reason == "category tech-seo is disabled"
        assert other.allowed is True

    async def test_observe_only_mode_denies(self, service, website_id):

        await service.set_system_mode("observe_only", triggered_by="ops@example.com")
        result = await service.check_eligibility(website_id, "AUDIT_TITLES", "tech-seo")

        assert result.allowed is False
        assert "observe-only" in result.reason

    async def test_safe_mode_does_not_block_by_itself(self, service, website_id):
        state = await service.set_system_mode("safe_mode", triggered_by="ops@example.com")
        result = await service.check_eligibility(website_id, "AUDIT_TITLES", "tech-seo")

        assert state.checks["safe_mode"] is True
        assert result.allowed is True

    async def test_unknown_action_denied_before_switches(self, service, website_id):
        await service.set_global_kill_switch(True, triggered_by="ops@example.com", reason="incident")
        result = await service.check_eligibility(website_id, "NOT_A_REAL_ACTION", "tech-seo")
        assert "unknown action" in result.reason
