"""
TRUST SERVICE
=============

Public entry point of the trust engine for the orchestration layer.

Architecture contract:
- Business rules live in the components (ledger, checker, audit log, transitions)
- This facade owns transaction boundaries (one UnitOfWork per operation)
- Eligibility fails closed: storage trouble or timeout -> allowed=False, retryable=True
- Transition evaluation runs after the outcome commits; its failure is logged,
  never propagated, and never undoes the outcome

Usage:
    service = TrustService(session_factory, PolicyTable.from_yaml(path))
    result = await service.check_eligibility("site-1", "FIX_CANONICAL", "tech-seo")
    if result.allowed:
        ...  # caller performs the action
        await service.record_outcome("site-1", "tech-seo", "success", evidence=["canonical fixed"])
"""
import asyncio
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autonomy_controls import AutonomyControls
from eligibility_checker import EligibilityChecker
from error_handler import ErrorHandler, retry_on_conflict
from exceptions import InvariantViolation, TransientStorageError
from execution_audit_log import ExecutionAuditLog
from infrastructure.uow import UnitOfWork
from logging_config import get_logger, log_trust_transition
from models import TrustLevelTransition
from policy_table import PolicyTable
from schemas import (
    ActionOutcome,
    AuditRecord,
    EligibilityResult,
    EvidenceEntry,
    EvidenceInput,
    ExecutionMode,
    PromotionProgress,
    SafetyCheck,
    SystemMode,
    TransitionKind,
    TrustRecord,
    TrustTransitionRecord,
    normalize_evidence,
)
from trust_config import ADMIN_OVERRIDE_ACTOR, MAX_TRUST_LEVEL, MIN_TRUST_LEVEL, TrustThresholds, trust_level_name
from trust_ledger import TrustLedger
from trust_transition_engine import TransitionDecision, TrustTransitionEngine

logger = get_logger(__name__)

UNSPECIFIED_ACTION_CODE = "unspecified"
ADMIN_OVERRIDE_ACTION_CODE = "ADMIN_SET_TRUST_LEVEL"


class TrustService:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        policy_table: PolicyTable,
        thresholds: Optional[TrustThresholds] = None
    ):
        self._session_factory = session_factory
        self.policy_table = policy_table
        self.thresholds = thresholds or TrustThresholds()

        self.ledger = TrustLedger()
        self.audit_log = ExecutionAuditLog(max_limit=self.thresholds.audit_query_max_limit)
        self.controls = AutonomyControls()
        self.checker = EligibilityChecker(policy_table, self.ledger, self.controls)
        self.transitions = TrustTransitionEngine(self.ledger, self.audit_log, self.thresholds)

    # =========================================================================
    # Eligibility
    # =========================================================================

    async def check_eligibility(self, website_id: str, action_code: str, action_category: str) -> EligibilityResult:
        """
        Allow/deny decision for one action. Never raises for storage trouble.

        A record for (website_id, action_category) is created on first check
        once the action code resolves; unknown codes never touch the ledger.
        """
        try:
            return await asyncio.wait_for(
                self._check(website_id, action_code, action_category),
                timeout=self.thresholds.storage_timeout_seconds
            )
        except (TransientStorageError, asyncio.TimeoutError) as e:
            cause = e.message if isinstance(e, TransientStorageError) else (
                f"storage timed out after {self.thresholds.storage_timeout_seconds}s"
            )
            logger.warning(
                "eligibility_fail_closed",
                website_id=website_id,
                action_code=action_code,
                action_category=action_category,
                cause=cause
            )
            policy = self.policy_table.get(action_code)
            return EligibilityResult(
                allowed=False,
                reason=f"trust state unavailable, denying by default: {cause}",
                required_trust_level=policy.required_trust_level if policy else None,
                current_trust_level=None,
                execution_mode=ExecutionMode.DENIED,
                action_code=action_code,
                action_category=action_category,
                retryable=True
            )

    async def _check(self, website_id: str, action_code: str, action_category: str) -> EligibilityResult:
        async with UnitOfWork(self._session_factory, "check_eligibility") as uow:
            return await self.checker.check(uow.session, website_id, action_code, action_category)

    # =========================================================================
    # Outcomes
    # =========================================================================

    async def record_outcome(
        self,
        website_id: str,
        action_category: str,
        outcome: ActionOutcome,
        evidence: Optional[List[EvidenceInput]] = None,
        impact_metrics: Optional[Dict[str, Any]] = None,
        *,
        action_code: Optional[str] = None,
        execution_mode: ExecutionMode = ExecutionMode.ASSISTED,
        executed_by: str = "system",
        error_message: Optional[str] = None
    ) -> TrustRecord:
        """
        Count a success/failure, append its AuditRecord, then evaluate transitions.

        Counter update and audit append commit together. The returned record
        reflects any promotion or demotion that followed.
        """
        outcome = ActionOutcome(outcome)
        execution_mode = ExecutionMode(execution_mode)
        if outcome == ActionOutcome.DENIED or execution_mode == ExecutionMode.DENIED:
            raise InvariantViolation(
                "denied attempts are recorded with record_denied_attempt",
                website_id=website_id,
                action_category=action_category
            )

        async with UnitOfWork(self._session_factory, "record_outcome") as uow:
            record = await self.ledger.record_outcome(
                uow.session, website_id, action_category, outcome, error_message=error_message
            )
            audit = await self.audit_log.append(uow.session, AuditRecord(
                website_id=website_id,
                action_code=action_code or UNSPECIFIED_ACTION_CODE,
                action_category=action_category,
                trust_level_at_execution=record.trust_level,
                execution_mode=execution_mode,
                evidence=evidence or [],
                outcome=outcome,
                impact_metrics=impact_metrics,
                executed_by=executed_by
            ))

        logger.info(
            "trust_outcome_recorded",
            website_id=website_id,
            action_category=action_category,
            outcome=outcome.value,
            audit_id=audit.id,
            trust_level=record.trust_level,
            success_count=record.success_count,
            failure_count=record.failure_count,
            confidence=record.confidence,
            consecutive_failures=record.consecutive_failures
        )

        decision = await ErrorHandler.safe_execute_async(
            self._evaluate_transition(website_id, action_category, record),
            default=None,
            context={"website_id": website_id, "action_category": action_category},
            event="trust_transition_failed"
        )
        return decision.record if decision is not None else record

    async def _evaluate_transition(
        self,
        website_id: str,
        action_category: str,
        snapshot: TrustRecord
    ) -> TransitionDecision:
        # First attempt uses the post-outcome snapshot, retries re-read.
        pending = [snapshot]

        async def attempt() -> TransitionDecision:
            current = pending.pop() if pending else None
            async with UnitOfWork(self._session_factory, "evaluate_transition") as uow:
                return await self.transitions.evaluate(uow.session, website_id, action_category, current)

        return await retry_on_conflict(
            attempt,
            self.thresholds.conflict_retries,
            context={"website_id": website_id, "action_category": action_category}
        )

    async def record_denied_attempt(
        self,
        website_id: str,
        action_code: str,
        action_category: str,
        reason: str,
        evidence: Optional[List[EvidenceInput]] = None,
        executed_by: str = "system"
    ) -> AuditRecord:
        """Audit an attempt that was not allowed to run. Counters are untouched."""
        entries = [EvidenceEntry(kind="denial_reason", detail=reason)] + normalize_evidence(evidence)
        async with UnitOfWork(self._session_factory, "record_denied_attempt") as uow:
            existing = await self.ledger.find(uow.session, website_id, action_category)
            return await self.audit_log.append(uow.session, AuditRecord(
                website_id=website_id,
                action_code=action_code,
                action_category=action_category,
                trust_level_at_execution=existing.trust_level if existing else MIN_TRUST_LEVEL,
                execution_mode=ExecutionMode.DENIED,
                evidence=entries,
                outcome=ActionOutcome.DENIED,
                executed_by=executed_by
            ))

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_trust_record(self, website_id: str, action_category: str) -> TrustRecord:
        async with UnitOfWork(self._session_factory, "get_trust_record") as uow:
            return await self.ledger.get(uow.session, website_id, action_category)

    async def list_trust_records(self, website_id: str) -> List[TrustRecord]:
        async with UnitOfWork(self._session_factory, "list_trust_records") as uow:
            return await self.ledger.list_for_website(uow.session, website_id)

    async def get_audit_history(
        self,
        website_id: str,
        action_category: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[AuditRecord]:
        async with UnitOfWork(self._session_factory, "get_audit_history") as uow:
            return await self.audit_log.query(uow.session, website_id, action_category, limit, offset)

    async def get_transition_history(
        self,
        website_id: str,
        action_category: Optional[str] = None,
        limit: int = 50
    ) -> List[TrustTransitionRecord]:
        async with UnitOfWork(self._session_factory, "get_transition_history") as uow:
            return await self.transitions.history(uow.session, website_id, action_category, limit)

    async def promotion_progress(self, website_id: str, action_category: str) -> PromotionProgress:
        """Distance to the next promotion. Read-only: a missing record reads as a fresh one."""
        async with UnitOfWork(self._session_factory, "promotion_progress") as uow:
            record = await self.ledger.find(uow.session, website_id, action_category)
        if record is None:
            record = TrustRecord(website_id=website_id, action_category=action_category)

        t = self.thresholds
        at_top = record.trust_level >= MAX_TRUST_LEVEL
        samples_needed = 0 if at_top else max(0, t.min_sample - record.sample_count)
        confidence_gap = 0 if at_top else max(0, t.promotion_threshold - record.confidence)

        return PromotionProgress(
            website_id=website_id,
            action_category=action_category,
            trust_level=record.trust_level,
            trust_level_name=trust_level_name(record.trust_level),
            next_level=None if at_top else record.trust_level + 1,
            sample_count=record.sample_count,
            samples_needed=samples_needed,
            confidence=record.confidence,
            confidence_gap=confidence_gap,
            is_degraded=record.is_degraded,
            eligible=not at_top and not record.is_degraded and samples_needed == 0 and confidence_gap == 0
        )

    # =========================================================================
    # Administration
    # =========================================================================

    async def seed_website(self, website_id: str, categories: List[str]) -> List[TrustRecord]:
        """Materialize Level-1 records; existing records come back unchanged."""
        async with UnitOfWork(self._session_factory, "seed_website") as uow:
            records = [
                await self.ledger.get(uow.session, website_id, category)
                for category in dict.fromkeys(categories)
            ]
        logger.info("website_seeded", website_id=website_id, categories=[r.action_category for r in records])
        return records

    async def admin_set_trust_level(
        self,
        website_id: str,
        action_category: str,
        level: int,
        actor: str,
        reason: str = ""
    ) -> TrustRecord:
        """
        Administrative override. Any level 1-3, counters always reset.

        Writes an AuditRecord (executed_by="admin-override") and a transition
        history row in the same transaction as the level change.
        """
        async with UnitOfWork(self._session_factory, "admin_set_trust_level") as uow:
            before = await self.ledger.get(uow.session, website_id, action_category)
            updated = await self.ledger.set_trust_level(
                uow.session, website_id, action_category, level, reset_counters=True
            )
            detail = reason or f"level {before.trust_level} -> {level}"
            audit = await self.audit_log.append(uow.session, AuditRecord(
                website_id=website_id,
                action_code=ADMIN_OVERRIDE_ACTION_CODE,
                action_category=action_category,
                trust_level_at_execution=before.trust_level,
                execution_mode=ExecutionMode.ASSISTED,
                evidence=[EvidenceEntry(
                    kind="admin_override",
                    detail=detail,
                    extensions={"actor": actor, "from_level": before.trust_level, "to_level": level}
                )],
                outcome=ActionOutcome.SUCCESS,
                executed_by=ADMIN_OVERRIDE_ACTOR
            ))
            uow.session.add(TrustLevelTransition(
                website_id=website_id,
                action_category=action_category,
                from_level=before.trust_level,
                to_level=level,
                kind=TransitionKind.ADMIN_OVERRIDE.value,
                reason=detail,
                triggered_by=actor,
                evidence_audit_ids=[audit.id]
            ))

        log_trust_transition(
            website_id=website_id,
            action_category=action_category,
            from_level=before.trust_level,
            to_level=level,
            kind=TransitionKind.ADMIN_OVERRIDE.value,
            actor=actor,
            reason=detail
        )
        return updated

    # =========================================================================
    # Autonomy controls
    # =========================================================================

    async def safety_check(self, website_id: Optional[str] = None, action_category: Optional[str] = None) -> SafetyCheck:
        async with UnitOfWork(self._session_factory, "safety_check") as uow:
            return await self.controls.safety_check(uow.session, website_id, action_category)

    async def set_global_kill_switch(self, enabled: bool, triggered_by: str, reason: Optional[str] = None) -> SafetyCheck:
        async with UnitOfWork(self._session_factory, "set_global_kill_switch") as uow:
            if enabled:
                await self.controls.activate_global_kill_switch(
                    uow.session, reason or "Manually activated", triggered_by
                )
            else:
                await self.controls.deactivate_global_kill_switch(uow.session, triggered_by, reason)
        return await self.safety_check()

    async def disable_category(self, action_category: str, triggered_by: str, reason: Optional[str] = None) -> SafetyCheck:
        async with UnitOfWork(self._session_factory, "disable_category") as uow:
            await self.controls.disable_category(uow.session, action_category, reason or "Manually disabled", triggered_by)
        return await self.safety_check(action_category=action_category)

    async def enable_category(self, action_category: str, triggered_by: str, reason: Optional[str] = None) -> SafetyCheck:
        async with UnitOfWork(self._session_factory, "enable_category") as uow:
            await self.controls.enable_category(uow.session, action_category, triggered_by, reason)
        return await self.safety_check(action_category=action_category)

    async def pause_website(self, website_id: str, triggered_by: str, reason: Optional[str] = None) -> SafetyCheck:
        async with UnitOfWork(self._session_factory, "pause_website") as uow:
            await self.controls.pause_website(uow.session, website_id, reason or "Manually paused", triggered_by)
        return await self.safety_check(website_id)

    async def resume_website(self, website_id: str, triggered_by: str, reason: Optional[str] = None) -> SafetyCheck:
        async with UnitOfWork(self._session_factory, "resume_website") as uow:
            await self.controls.resume_website(uow.session, website_id, triggered_by, reason)
        return await self.safety_check(website_id)

    async def set_system_mode(self, mode: SystemMode, triggered_by: str, reason: Optional[str] = None) -> SafetyCheck:
        async with UnitOfWork(self._session_factory, "set_system_mode") as uow:
            await self.controls.set_system_mode(uow.session, mode, triggered_by, reason)
        return await self.safety_check()
