from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Literal, Optional, List, Dict, Any, Union
from datetime import datetime
from enum import Enum

from trust_config import MAX_TRUST_LEVEL, MIN_TRUST_LEVEL, trust_level_name


# =============================================================================
# Enumerations
# =============================================================================

class ExecutionMode(str, Enum):
    AUTONOMOUS = "autonomous"
    ASSISTED = "assisted"
    DENIED = "denied"


class ActionOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SystemMode(str, Enum):
    NORMAL = "normal"
    OBSERVE_ONLY = "observe_only"
    SAFE_MODE = "safe_mode"


class TransitionKind(str, Enum):
    PROMOTION = "promotion"
    DEMOTION = "demotion"
    ADMIN_OVERRIDE = "admin_override"


# =============================================================================
# Trust ledger
# =============================================================================

class TrustRecord(BaseModel):
    """Snapshot of one (website, category) ledger row."""
    model_config = ConfigDict(from_attributes=True)

    website_id: str
    action_category: str
    trust_level: int = Field(MIN_TRUST_LEVEL, ge=MIN_TRUST_LEVEL, le=MAX_TRUST_LEVEL)
    confidence: int = Field(0, ge=0, le=100)
    success_count: int = Field(0, ge=0)
    failure_count: int = Field(0, ge=0)
    is_degraded: bool = False
    degraded_since: Optional[datetime] = None
    consecutive_failures: int = Field(0, ge=0)
    last_error_message: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def sample_count(self) -> int:
        return self.success_count + self.failure_count

    @property
    def trust_level_name(self) -> str:
        return trust_level_name(self.trust_level)


class TrustTransitionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    website_id: str
    action_category: str
    from_level: int
    to_level: int
    kind: TransitionKind
    reason: str
    triggered_by: str
    evidence_audit_ids: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class PromotionProgress(BaseModel):
    """How far a category is from its next promotion."""
    website_id: str
    action_category: str
    trust_level: int
    trust_level_name: str
    next_level: Optional[int] = None
    sample_count: int
    samples_needed: int
    confidence: int
    confidence_gap: int
    is_degraded: bool
    eligible: bool


# =============================================================================
# Execution audit
# =============================================================================

class EvidenceEntry(BaseModel):
    """
    One justification for an action.

    Plain strings are accepted anywhere evidence is expected and become
    kind="note" entries. ``extensions`` carries producer-specific fields.
    """
    kind: str = "note"
    detail: str
    extensions: Dict[str, Any] = Field(default_factory=dict)


EvidenceInput = Union[str, EvidenceEntry, Dict[str, Any]]


def normalize_evidence(items: Optional[List[EvidenceInput]]) -> List[EvidenceEntry]:
    entries = []
    for item in items or []:
        if isinstance(item, EvidenceEntry):
            entries.append(item)
        elif isinstance(item, str):
            entries.append(EvidenceEntry(detail=item))
        else:
            entries.append(EvidenceEntry.model_validate(item))
    return entries


class AuditRecord(BaseModel):
    """One execution attempt. ``id`` and ``executed_at`` are assigned on append if absent."""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    website_id: str
    action_code: str
    action_category: str
    trust_level_at_execution: int = Field(ge=MIN_TRUST_LEVEL, le=MAX_TRUST_LEVEL)
    execution_mode: ExecutionMode
    evidence: List[EvidenceEntry] = Field(default_factory=list)
    outcome: ActionOutcome
    impact_metrics: Optional[Dict[str, Any]] = None
    executed_at: Optional[datetime] = None
    executed_by: str = "system"

    @field_validator("evidence", mode="before")
    @classmethod
    def _coerce_evidence(cls, value):
        return normalize_evidence(value)

    @model_validator(mode="after")
    def _denied_mode_matches_outcome(self):
        denied_mode = self.execution_mode == ExecutionMode.DENIED
        denied_outcome = self.outcome == ActionOutcome.DENIED
        if denied_mode != denied_outcome:
            raise ValueError("execution_mode 'denied' and outcome 'denied' must appear together")
        return self


# =============================================================================
# Eligibility / safety
# =============================================================================

class EligibilityResult(BaseModel):
    allowed: bool
    reason: str
    required_trust_level: Optional[int] = None
    current_trust_level: Optional[int] = None
    execution_mode: ExecutionMode = ExecutionMode.DENIED
    action_code: str
    action_category: str
    retryable: bool = False
    # True only for fail-closed denials caused by storage trouble


class SafetyCheck(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    checks: Dict[str, bool] = Field(default_factory=dict)


# =============================================================================
# Internal RPC request bodies
# =============================================================================

class EligibilityRequest(BaseModel):
    website_id: str
    action_code: str
    action_category: str


class OutcomeRequest(BaseModel):
    website_id: str
    action_category: str
    outcome: Literal["success", "failure"]
    evidence: List[EvidenceInput] = Field(default_factory=list)
    impact_metrics: Optional[Dict[str, Any]] = None
    action_code: Optional[str] = None
    execution_mode: Literal["autonomous", "assisted"] = "assisted"
    executed_by: str = "system"
    error_message: Optional[str] = None


class DeniedAttemptRequest(BaseModel):
    website_id: str
    action_code: str
    action_category: str
    reason: str
    evidence: List[EvidenceInput] = Field(default_factory=list)
    executed_by: str = "system"


class TrustOverrideRequest(BaseModel):
    level: int = Field(ge=MIN_TRUST_LEVEL, le=MAX_TRUST_LEVEL)
    actor: str
    reason: str = ""


class SeedRequest(BaseModel):
    categories: List[str] = Field(min_length=1)


class KillSwitchRequest(BaseModel):
    enabled: bool
    triggered_by: str
    reason: Optional[str] = None


class ControlRequest(BaseModel):
    triggered_by: str
    reason: Optional[str] = None


class SystemModeRequest(BaseModel):
    mode: SystemMode
    triggered_by: str
    reason: Optional[str] = None
