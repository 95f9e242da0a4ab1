"""
TRUST TRANSITION ENGINE
=======================

Runs right after every recorded outcome and decides whether the ledger entry
moves one level.

Demotion (checked first):
    consecutive_failures >= demotion_threshold
        -> level max(1, n - 1), counters reset if the level changed,
           category marked degraded (cleared only by the next success)

Promotion (only when not degraded and n < 3):
    samples at this level >= min_sample AND confidence >= promotion_threshold
        -> level n + 1, counters reset so the next level is earned from scratch

Every applied change is a conditional UPDATE against the snapshot it was
decided on, and leaves a trust_level_transitions row citing the latest audit
records as evidence. The evidence read shares the transaction with the
UPDATE, so a failed read fails the whole evaluation.
"""
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from execution_audit_log import ExecutionAuditLog
from logging_config import get_logger, log_trust_transition
from models import TrustLevelTransition
from schemas import TransitionKind, TrustRecord, TrustTransitionRecord
from trust_config import MAX_TRUST_LEVEL, MIN_TRUST_LEVEL, TRANSITION_ACTOR, TrustThresholds
from trust_ledger import TrustLedger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TransitionPlan:
    kind: TransitionKind
    to_level: int
    reason: str
    reset_counters: bool
    degrade: bool


@dataclass(frozen=True)
class TransitionDecision:
    """What evaluate() did. kind is None when the level did not change."""
    record: TrustRecord
    from_level: int
    to_level: int
    kind: Optional[TransitionKind] = None
    reason: str = ""
    degraded: bool = False

    @property
    def changed(self) -> bool:
        return self.kind is not None


class TrustTransitionEngine:

    def __init__(self, ledger: TrustLedger, audit_log: ExecutionAuditLog, thresholds: TrustThresholds):
        self._ledger = ledger
        self._audit_log = audit_log
        self._thresholds = thresholds

    def plan(self, record: TrustRecord) -> Optional[TransitionPlan]:
        """Pure decision for one snapshot; None means leave the record alone."""
        t = self._thresholds
        level = record.trust_level

        if record.consecutive_failures >= t.demotion_threshold:
            to_level = max(MIN_TRUST_LEVEL, level - 1)
            if to_level == level and record.is_degraded:
                return None
            return TransitionPlan(
                kind=TransitionKind.DEMOTION,
                to_level=to_level,
                reason=(
                    f"{record.consecutive_failures} consecutive failures "
                    f"(threshold {t.demotion_threshold})"
                ),
                reset_counters=to_level != level,
                degrade=True
            )

        if record.is_degraded or level >= MAX_TRUST_LEVEL:
            return None

        if record.sample_count >= t.min_sample and record.confidence >= t.promotion_threshold:
            return TransitionPlan(
                kind=TransitionKind.PROMOTION,
                to_level=level + 1,
                reason=(
                    f"confidence {record.confidence}% over {record.sample_count} samples "
                    f"(needs {t.promotion_threshold}% over {t.min_sample})"
                ),
                reset_counters=True,
                degrade=False
            )
        return None

    async def evaluate(
        self,
        session: AsyncSession,
        website_id: str,
        action_category: str,
        snapshot: Optional[TrustRecord] = None
    ) -> TransitionDecision:
        """
        Apply the plan for ``snapshot`` (or the current record when None).

        Raises ConcurrentUpdateConflict if the record moved since the snapshot;
        the caller re-evaluates from a fresh read.
        """
        record = snapshot or await self._ledger.get(session, website_id, action_category)
        plan = self.plan(record)
        if plan is None:
            return TransitionDecision(record=record, from_level=record.trust_level, to_level=record.trust_level)

        evidence_ids = await self._evidence_ids(session, website_id, action_category)
        updated = await self._ledger.set_trust_level(
            session,
            website_id,
            action_category,
            plan.to_level,
            plan.reset_counters,
            expected=record,
            degrade=plan.degrade
        )

        level_changed = plan.to_level != record.trust_level
        if level_changed:
            session.add(TrustLevelTransition(
                website_id=website_id,
                action_category=action_category,
                from_level=record.trust_level,
                to_level=plan.to_level,
                kind=plan.kind.value,
                reason=plan.reason,
                triggered_by=TRANSITION_ACTOR,
                evidence_audit_ids=evidence_ids
            ))
            await session.flush()
            log_trust_transition(
                website_id=website_id,
                action_category=action_category,
                from_level=record.trust_level,
                to_level=plan.to_level,
                kind=plan.kind.value,
                actor=TRANSITION_ACTOR,
                reason=plan.reason
            )

        newly_degraded = plan.degrade and not record.is_degraded
        if newly_degraded:
            logger.warning(
                "trust_degraded",
                website_id=website_id,
                action_category=action_category,
                trust_level=updated.trust_level,
                consecutive_failures=record.consecutive_failures
            )

        return TransitionDecision(
            record=updated,
            from_level=record.trust_level,
            to_level=updated.trust_level,
            kind=plan.kind if level_changed else None,
            reason=plan.reason,
            degraded=newly_degraded
        )

    async def _evidence_ids(self, session: AsyncSession, website_id: str, action_category: str) -> List[str]:
        limit = max(self._thresholds.min_sample, self._thresholds.demotion_threshold)
        return await self._audit_log.recent_ids(session, website_id, action_category, limit)

    async def history(
        self,
        session: AsyncSession,
        website_id: str,
        action_category: Optional[str] = None,
        limit: int = 50
    ) -> List[TrustTransitionRecord]:
        """Level changes for a website, newest first."""
        if limit < 1:
            raise ValueError("limit must be >= 1")
        limit = min(limit, self._thresholds.audit_query_max_limit)

        stmt = select(TrustLevelTransition).where(TrustLevelTransition.website_id == website_id)
        if action_category is not None:
            stmt = stmt.where(TrustLevelTransition.action_category == action_category)
        stmt = stmt.order_by(TrustLevelTransition.seq.desc()).limit(limit)

        result = await session.execute(stmt)
        return [TrustTransitionRecord.model_validate(row) for row in result.scalars().all()]
