"""
TRUST API ENDPOINTS

Internal RPC surface of the trust engine for the orchestration layer.

Endpoints:
- POST /trust/eligibility - Allow/deny decision for one action
- POST /trust/outcomes - Record success/failure (+ audit, + transitions)
- POST /trust/denials - Audit a denied attempt
- GET  /trust/websites/{website_id}/categories/{category} - Trust record
- GET  /trust/websites/{website_id}/categories/{category}/progress - Promotion progress
- POST /trust/websites/{website_id}/categories/{category}/override - Admin override
- POST /trust/websites/{website_id}/seed - Create Level-1 records
- GET  /trust/websites/{website_id}/history - Audit history (newest first)
- GET  /trust/websites/{website_id}/transitions - Level change history
- GET  /trust/controls/safety - Kill switch / category / pause / mode state
- POST /trust/controls/kill-switch - Toggle global kill switch
- POST /trust/controls/categories/{category}/disable - Disable an action category
- POST /trust/controls/categories/{category}/enable - Re-enable an action category
- POST /trust/controls/websites/{website_id}/pause - Pause website
- POST /trust/controls/websites/{website_id}/resume - Resume website
- POST /trust/controls/mode - Set system mode
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from exceptions import BaseTrustException, EXCEPTION_TO_STATUS
from schemas import (
    AuditRecord,
    ControlRequest,
    DeniedAttemptRequest,
    EligibilityRequest,
    EligibilityResult,
    KillSwitchRequest,
    OutcomeRequest,
    PromotionProgress,
    SafetyCheck,
    SeedRequest,
    SystemModeRequest,
    TrustOverrideRequest,
    TrustRecord,
    TrustTransitionRecord,
)
from trust_service import TrustService

router = APIRouter(prefix="/trust", tags=["trust"])


def get_trust_service(request: Request) -> TrustService:
    """TrustService wired in main.create_app lifespan"""
    return request.app.state.trust_service


def map_exception_to_http(exc: BaseTrustException) -> HTTPException:
    """Map domain exception to HTTP response with structured error payload"""
    status_code = EXCEPTION_TO_STATUS.get(type(exc), 500)
    return HTTPException(status_code=status_code, detail=exc.to_dict())


# =============================================================================
# Eligibility & outcomes
# =============================================================================

@router.post("/eligibility", response_model=EligibilityResult)
async def check_eligibility(req: EligibilityRequest, service: TrustService = Depends(get_trust_service)):
    """
    Allow/deny for one action. Always 200: denials (including fail-closed
    storage trouble, retryable=true) are results, not errors.
    """
    return await service.check_eligibility(req.website_id, req.action_code, req.action_category)


@router.post("/outcomes", response_model=TrustRecord)
async def record_outcome(req: OutcomeRequest, service: TrustService = Depends(get_trust_service)):
    try:
        return await service.record_outcome(
            req.website_id,
            req.action_category,
            req.outcome,
            evidence=req.evidence,
            impact_metrics=req.impact_metrics,
            action_code=req.action_code,
            execution_mode=req.execution_mode,
            executed_by=req.executed_by,
            error_message=req.error_message
        )
    except BaseTrustException as e:
        raise map_exception_to_http(e)


@router.post("/denials", response_model=AuditRecord)
async def record_denied_attempt(req: DeniedAttemptRequest, service: TrustService = Depends(get_trust_service)):
    try:
        return await service.record_denied_attempt(
            req.website_id,
            req.action_code,
            req.action_category,
            req.reason,
            evidence=req.evidence,
            executed_by=req.executed_by
        )
    except BaseTrustException as e:
        raise map_exception_to_http(e)


# =============================================================================
# Trust records
# =============================================================================

@router.get("/websites/{website_id}/categories/{category}", response_model=TrustRecord)
async def get_trust_record(website_id: str, category: str, service: TrustService = Depends(get_trust_service)):
    try:
        return await service.get_trust_record(website_id, category)
    except BaseTrustException as e:
        raise map_exception_to_http(e)


@router.get("/websites/{website_id}/categories/{category}/progress", response_model=PromotionProgress)
async def get_promotion_progress(website_id: str, category: str, service: TrustService = Depends(get_trust_service)):
    try:
        return await service.promotion_progress(website_id, category)
    except BaseTrustException as e:
        raise map_exception_to_http(e)


@router.post("/websites/{website_id}/categories/{category}/override", response_model=TrustRecord)
async def override_trust_level(
    website_id: str,
    category: str,
    req: TrustOverrideRequest,
    service: TrustService = Depends(get_trust_service)
):
    """Administrative override; audited and recorded in transition history"""
    try:
        return await service.admin_set_trust_level(website_id, category, req.level, req.actor, req.reason)
    except BaseTrustException as e:
        raise map_exception_to_http(e)


@router.post("/websites/{website_id}/seed", response_model=List[TrustRecord])
async def seed_website(website_id: str, req: SeedRequest, service: TrustService = Depends(get_trust_service)):
    try:
        return await service.seed_website(website_id, req.categories)
    except BaseTrustException as e:
        raise map_exception_to_http(e)


@router.get("/websites/{website_id}/history", response_model=List[AuditRecord])
async def get_audit_history(
    website_id: str,
    category: Optional[str] = None,
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    service: TrustService = Depends(get_trust_service)
):
    try:
        return await service.get_audit_history(website_id, category, limit, offset)
    except BaseTrustException as e:
        raise map_exception_to_http(e)


@router.get("/websites/{website_id}/transitions", response_model=List[TrustTransitionRecord])
async def get_transition_history(
    website_id: str,
    category: Optional[str] = None,
    limit: int = Query(50, ge=1),
    service: TrustService = Depends(get_trust_service)
):
    try:
        return await service.get_transition_history(website_id, category, limit)
    except BaseTrustException as e:
        raise map_exception_to_http(e)


# =============================================================================
# Autonomy controls
# =============================================================================

@router.get("/controls/safety", response_model=SafetyCheck)
async def get_safety_state(
    website_id: Optional[str] = None,
    action_category: Optional[str] = None,
    service: TrustService = Depends(get_trust_service)
):
    try:
        return await service.safety_check(website_id, action_category)
    except BaseTrustException as e:
        raise map_exception_to_http(e)


@router.post("/controls/kill-switch", response_model=SafetyCheck)
async def set_kill_switch(req: KillSwitchRequest, service: TrustService = Depends(get_trust_service)):
    try:
        return await service.set_global_kill_switch(req.enabled, req.triggered_by, req.reason)
    except BaseTrustException as e:
        raise map_exception_to_http(e)


@router.post("/controls/categories/{category}/disable", response_model=SafetyCheck)
async def disable_category(category: str, req: ControlRequest, service: TrustService = Depends(get_trust_service)):
    try:
        return await service.disable_category(category, req.triggered_by, req.reason)
    except BaseTrustException as e:
        raise map_exception_to_http(e)


@router.post("/controls/categories/{category}/enable", response_model=SafetyCheck)
async def enable_category(category: str, req: ControlRequest, service: TrustService = Depends(get_trust_service)):
    try:
        return await service.enable_category(category, req.triggered_by, req.reason)
    except BaseTrustException as e:
        raise map_exception_to_http(e)


@router.post("/controls/websites/{website_id}/pause", response_model=SafetyCheck)
async def pause_website(website_id: str, req: ControlRequest, service: TrustService = Depends(get_trust_service)):
    try:
        return await service.pause_website(website_id, req.triggered_by, req.reason)
    except BaseTrustException as e:
        raise map_exception_to_http(e)


@router.post("/controls/websites/{website_id}/resume", response_model=SafetyCheck)
async def resume_website(website_id: str, req: ControlRequest, service: TrustService = Depends(get_trust_service)):
    try:
        return await service.resume_website(website_id, req.triggered_by, req.reason)
    except BaseTrustException as e:
        raise map_exception_to_http(e)


@router.post("/controls/mode", response_model=SafetyCheck)
async def set_system_mode(req: SystemModeRequest, service: TrustService = Depends(get_trust_service)):
    try:
        return await service.set_system_mode(req.mode, req.triggered_by, req.reason)
    except BaseTrustException as e:
        raise map_exception_to_http(e)
