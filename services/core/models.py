from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Text, Integer, JSON, Boolean, UniqueConstraint, Index, CheckConstraint, event

from database import Base
from exceptions import InvariantViolation


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# TRUST LEDGER
# =============================================================================

class TrustLevelRecord(Base):
    """
    Trust state for one (website, action category) pair.

    🔒 Mutated only by trust_ledger.TrustLedger through single-statement
    conditional UPDATEs. Never read-modify-write these columns in application code.
    """
    __tablename__ = "website_trust_levels"
    __table_args__ = (
        UniqueConstraint("website_id", "action_category", name="uq_trust_website_category"),
        CheckConstraint("trust_level BETWEEN 1 AND 3", name="ck_trust_level_range"),
        CheckConstraint("confidence BETWEEN 0 AND 100", name="ck_trust_confidence_range"),
        CheckConstraint(
            "success_count >= 0 AND failure_count >= 0 AND consecutive_failures >= 0",
            name="ck_trust_counters_non_negative"
        ),
        CheckConstraint("consecutive_failures <= failure_count", name="ck_trust_consecutive_le_failures"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    website_id = Column(String(255), nullable=False, index=True)
    action_category = Column(String(100), nullable=False)

    trust_level = Column(Integer, nullable=False, default=1)
    # 1 = Suggest-only, 2 = Assisted, 3 = Autonomous
    confidence = Column(Integer, nullable=False, default=0)
    # round(100 * success / (success + failure)), 0 when no samples

    success_count = Column(Integer, nullable=False, default=0)
    failure_count = Column(Integer, nullable=False, default=0)

    # Transient health state
    is_degraded = Column(Boolean, nullable=False, default=False)
    degraded_since = Column(DateTime(timezone=True), nullable=True)
    consecutive_failures = Column(Integer, nullable=False, default=0)
    last_error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class TrustLevelTransition(Base):
    """History of every trust level change (automatic or administrative)."""
    __tablename__ = "trust_level_transitions"
    __table_args__ = (
        Index("ix_trust_transitions_lookup", "website_id", "action_category", "seq"),
    )

    seq = Column(Integer, primary_key=True, autoincrement=True)
    website_id = Column(String(255), nullable=False)
    action_category = Column(String(100), nullable=False)
    from_level = Column(Integer, nullable=False)
    to_level = Column(Integer, nullable=False)
    kind = Column(String(20), nullable=False)  # promotion | demotion | admin_override
    reason = Column(Text, nullable=False)
    triggered_by = Column(String(100), nullable=False)
    evidence_audit_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


# =============================================================================
# EXECUTION AUDIT (append-only)
# =============================================================================

class ActionExecutionAudit(Base):
    """
    One row per execution attempt, allowed or denied.

    Write-once: ORM updates and deletes are rejected (see listeners below).
    """
    __tablename__ = "action_execution_audit"
    __table_args__ = (
        Index("ix_action_audit_lookup", "website_id", "action_category", "seq"),
    )

    seq = Column(Integer, primary_key=True, autoincrement=True)
    # Append order; newest-first queries sort on it.
    id = Column(String(36), nullable=False, unique=True)
    website_id = Column(String(255), nullable=False, index=True)
    action_code = Column(String(100), nullable=False)
    action_category = Column(String(100), nullable=False)
    trust_level_at_execution = Column(Integer, nullable=False)
    execution_mode = Column(String(20), nullable=False)  # autonomous | assisted | denied
    evidence = Column(JSON, nullable=False, default=list)
    # [{"kind": "observation", "detail": "...", "extensions": {...}}]
    outcome = Column(String(20), nullable=False)  # success | failure | denied
    impact_metrics = Column(JSON, nullable=True)
    # {"before": {...}, "after": {...}} - opaque to the engine
    executed_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    executed_by = Column(String(100), nullable=False, default="system")


@event.listens_for(ActionExecutionAudit, "before_update")
def _block_audit_update(mapper, connection, target):
    raise InvariantViolation(
        "audit records are write-once",
        website_id=target.website_id,
        action_category=target.action_category
    )


@event.listens_for(ActionExecutionAudit, "before_delete")
def _block_audit_delete(mapper, connection, target):
    raise InvariantViolation(
        "audit records cannot be deleted",
        website_id=target.website_id,
        action_category=target.action_category
    )


# =============================================================================
# AUTONOMY CONTROLS (kill switches, system mode)
# =============================================================================

class AutonomyControl(Base):
    """Key/value switch state: global_kill_switch, system_mode, website_pause:<id>"""
    __tablename__ = "autonomy_controls"

    key = Column(String(300), primary_key=True)
    value = Column(JSON, nullable=False)
    updated_by = Column(String(255), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class AutonomyControlEvent(Base):
    """Audit trail for every switch / mode change."""
    __tablename__ = "autonomy_control_events"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(String(50), nullable=False)
    # kill_switch_activated | kill_switch_deactivated | website_paused | website_resumed | mode_changed
    actor = Column(String(255), nullable=False)
    target_type = Column(String(20), nullable=False)  # global | website
    target_id = Column(String(255), nullable=True)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
