"""
ELIGIBILITY CHECKER
===================

Decides whether one requested action may run without human review.

Order of checks (first deny wins):
1. Policy resolution - unknown action code -> deny, ledger untouched
2. Category match    - action code must belong to the requested category
3. Operator switches - kill switch / disabled category / paused website / observe-only
4. Degraded category - deny regardless of trust level
5. Trust level       - allow iff current >= required

A denial is a normal return value. Storage failures propagate to the caller,
which turns them into fail-closed denials.
"""
from sqlalchemy.ext.asyncio import AsyncSession

from autonomy_controls import AutonomyControls
from exceptions import UnknownAction
from logging_config import get_logger
from policy_table import PolicyTable
from schemas import EligibilityResult, ExecutionMode
from trust_config import MAX_TRUST_LEVEL, trust_level_name
from trust_ledger import TrustLedger

logger = get_logger(__name__)


class EligibilityChecker:

    def __init__(self, policy_table: PolicyTable, ledger: TrustLedger, controls: AutonomyControls):
        self._policy_table = policy_table
        self._ledger = ledger
        self._controls = controls

    async def check(
        self,
        session: AsyncSession,
        website_id: str,
        action_code: str,
        action_category: str
    ) -> EligibilityResult:
        try:
            policy = self._policy_table.resolve(action_code)
        except UnknownAction as e:
            return self._deny(website_id, action_code, action_category, e.message)

        required = policy.required_trust_level
        if policy.action_category != action_category:
            return self._deny(
                website_id, action_code, action_category,
                f"action {action_code} belongs to category {policy.action_category!r}, "
                f"not {action_category!r}",
                required=required
            )

        safety = await self._controls.safety_check(session, website_id, action_category)
        if not safety.allowed:
            return self._deny(website_id, action_code, action_category, safety.reason, required=required)

        record = await self._ledger.get(session, website_id, action_category)
        current = record.trust_level

        if record.is_degraded:
            return self._deny(
                website_id, action_code, action_category,
                f"category degraded since {record.degraded_since} "
                f"after {record.consecutive_failures} consecutive failures",
                required=required,
                current=current
            )

        if current < required:
            return self._deny(
                website_id, action_code, action_category,
                f"requires level {required} ({trust_level_name(required)}), "
                f"currently level {current} ({trust_level_name(current)})",
                required=required,
                current=current
            )

        mode = ExecutionMode.AUTONOMOUS if current >= MAX_TRUST_LEVEL else ExecutionMode.ASSISTED
        logger.debug(
            "eligibility_allowed",
            website_id=website_id,
            action_code=action_code,
            action_category=action_category,
            required_level=required,
            current_level=current,
            execution_mode=mode.value
        )
        return EligibilityResult(
            allowed=True,
            reason=f"level {current} ({trust_level_name(current)}) meets required level {required}",
            required_trust_level=required,
            current_trust_level=current,
            execution_mode=mode,
            action_code=action_code,
            action_category=action_category
        )

    def _deny(
        self,
        website_id: str,
        action_code: str,
        action_category: str,
        reason: str,
        required: int = None,
        current: int = None
    ) -> EligibilityResult:
        logger.info(
            "eligibility_denied",
            website_id=website_id,
            action_code=action_code,
            action_category=action_category,
            reason=reason
        )
        return EligibilityResult(
            allowed=False,
            reason=reason,
            required_trust_level=required,
            current_trust_level=current,
            execution_mode=ExecutionMode.DENIED,
            action_code=action_code,
            action_category=action_category
        )
