"""
AUTONOMY CONTROLS - Operator Kill Switches

Emergency controls that sit above trust levels:
- Global kill switch (no autonomous execution anywhere)
- Per-category disable (one action category off across all websites)
- Per-website pause
- System mode: normal | observe_only | safe_mode

observe_only blocks every change; safe_mode is reported to callers but does
not block on its own. Every change is written to autonomy_control_events.

Usage:
    controls = AutonomyControls()
    check = await controls.safety_check(session, website_id="site-1")
    if not check.allowed:
        logger.warning("autonomy_blocked", reason=check.reason)
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from logging_config import get_logger
from models import AutonomyControl, AutonomyControlEvent
from schemas import SafetyCheck, SystemMode

logger = get_logger(__name__)

GLOBAL_KILL_SWITCH_KEY = "global_kill_switch"
SYSTEM_MODE_KEY = "system_mode"
WEBSITE_PAUSE_PREFIX = "website_pause:"
CATEGORY_DISABLED_PREFIX = "category_disabled:"


def website_pause_key(website_id: str) -> str:
    return f"{WEBSITE_PAUSE_PREFIX}{website_id}"


def category_disabled_key(action_category: str) -> str:
    return f"{CATEGORY_DISABLED_PREFIX}{action_category}"


def _switch_state(enabled: bool, reason: Optional[str]) -> Dict[str, Any]:
    return {
        "enabled": enabled,
        "reason": reason,
        "activated_at": datetime.now(timezone.utc).isoformat(),
    }


class AutonomyControls:
    """Reads and writes operator switches in autonomy_controls."""

    # =========================================================================
    # Global kill switch
    # =========================================================================

    async def activate_global_kill_switch(self, session: AsyncSession, reason: str, triggered_by: str) -> None:
        await self._set_value(
            session,
            GLOBAL_KILL_SWITCH_KEY,
            _switch_state(True, reason),
            action="kill_switch_activated",
            target_type="global",
            target_id=None,
            reason=reason,
            triggered_by=triggered_by
        )
        logger.warning("kill_switch_activated", triggered_by=triggered_by, reason=reason)

    async def deactivate_global_kill_switch(
        self,
        session: AsyncSession,
        triggered_by: str,
        reason: Optional[str] = None
    ) -> None:
        reason = reason or "Manually deactivated"
        await self._set_value(
            session,
            GLOBAL_KILL_SWITCH_KEY,
            _switch_state(False, reason),
            action="kill_switch_deactivated",
            target_type="global",
            target_id=None,
            reason=reason,
            triggered_by=triggered_by
        )
        logger.info("kill_switch_deactivated", triggered_by=triggered_by, reason=reason)

    # =========================================================================
    # Per-category disable
    # =========================================================================

    async def disable_category(self, session: AsyncSession, action_category: str, reason: str, triggered_by: str) -> None:
        await self._set_value(
            session,
            category_disabled_key(action_category),
            _switch_state(True, reason),
            action="category_disabled",
            target_type="category",
            target_id=action_category,
            reason=reason,
            triggered_by=triggered_by
        )
        logger.warning("category_disabled", action_category=action_category, triggered_by=triggered_by, reason=reason)

    async def enable_category(
        self,
        session: AsyncSession,
        action_category: str,
        triggered_by: str,
        reason: Optional[str] = None
    ) -> None:
        reason = reason or "Manually enabled"
        await self._set_value(
            session,
            category_disabled_key(action_category),
            _switch_state(False, reason),
            action="category_enabled",
            target_type="category",
            target_id=action_category,
            reason=reason,
            triggered_by=triggered_by
        )
        logger.info("category_enabled", action_category=action_category, triggered_by=triggered_by)

    # =========================================================================
    # Per-website pause
    # =========================================================================

    async def pause_website(self, session: AsyncSession, website_id: str, reason: str, triggered_by: str) -> None:
        await self._set_value(
            session,
            website_pause_key(website_id),
            _switch_state(True, reason),
            action="website_paused",
            target_type="website",
            target_id=website_id,
            reason=reason,
            triggered_by=triggered_by
        )
        logger.warning("website_paused", website_id=website_id, triggered_by=triggered_by, reason=reason)

    async def resume_website(
        self,
        session: AsyncSession,
        website_id: str,
        triggered_by: str,
        reason: Optional[str] = None
    ) -> None:
        reason = reason or "Manually resumed"
        await self._set_value(
            session,
            website_pause_key(website_id),
            _switch_state(False, reason),
            action="website_resumed",
            target_type="website",
            target_id=website_id,
            reason=reason,
            triggered_by=triggered_by
        )
        logger.info("website_resumed", website_id=website_id, triggered_by=triggered_by)

    # =========================================================================
    # System mode
    # =========================================================================

    async def set_system_mode(
        self,
        session: AsyncSession,
        mode: SystemMode,
        triggered_by: str,
        reason: Optional[str] = None
    ) -> None:
        mode = SystemMode(mode)
        await self._set_value(
            session,
            SYSTEM_MODE_KEY,
            {"mode": mode.value, "reason": reason, "changed_at": datetime.now(timezone.utc).isoformat()},
            action="mode_changed",
            target_type="global",
            target_id=None,
            reason=reason,
            triggered_by=triggered_by
        )
        logger.info("system_mode_changed", mode=mode.value, triggered_by=triggered_by, reason=reason)

    # =========================================================================
    # Safety check (before any autonomous change)
    # =========================================================================

    async def safety_check(
        self,
        session: AsyncSession,
        website_id: Optional[str] = None,
        action_category: Optional[str] = None
    ) -> SafetyCheck:
        """
        First blocking switch wins:
        global kill switch -> category disabled -> website paused -> observe-only mode.
        """
        category_key = category_disabled_key(action_category) if action_category is not None else None
        website_key = website_pause_key(website_id) if website_id is not None else None
        keys = [k for k in (GLOBAL_KILL_SWITCH_KEY, SYSTEM_MODE_KEY, category_key, website_key) if k]

        result = await session.execute(select(AutonomyControl).where(AutonomyControl.key.in_(keys)))
        values = {row.key: row.value for row in result.scalars().all()}

        def enabled(key: Optional[str]) -> bool:
            return key is not None and bool((values.get(key) or {}).get("enabled"))

        mode_state = values.get(SYSTEM_MODE_KEY)
        mode = SystemMode(mode_state["mode"]) if mode_state else SystemMode.NORMAL

        checks = {
            "global_kill_switch": enabled(GLOBAL_KILL_SWITCH_KEY),
            "category_disabled": enabled(category_key),
            "website_paused": enabled(website_key),
            "observe_only_mode": mode == SystemMode.OBSERVE_ONLY,
            "safe_mode": mode == SystemMode.SAFE_MODE,
        }

        reason = None
        if checks["global_kill_switch"]:
            reason = "global kill switch is active"
        elif checks["category_disabled"]:
            reason = f"category {action_category} is disabled"
        elif checks["website_paused"]:
            reason = f"website {website_id} is paused"
        elif checks["observe_only_mode"]:
            reason = "system is in observe-only mode (no changes allowed)"

        return SafetyCheck(allowed=reason is None, reason=reason, checks=checks)

    # =========================================================================
    # Internals
    # =========================================================================

    async def _set_value(
        self,
        session: AsyncSession,
        key: str,
        new_value: Dict[str, Any],
        *,
        action: str,
        target_type: str,
        target_id: Optional[str],
        reason: Optional[str],
        triggered_by: str
    ) -> None:
        now = datetime.now(timezone.utc)
        row = await session.get(AutonomyControl, key)
        old_value = row.value if row is not None else None

        if row is None:
            session.add(AutonomyControl(key=key, value=new_value, updated_by=triggered_by, updated_at=now))
        else:
            row.value = new_value
            row.updated_by = triggered_by
            row.updated_at = now

        session.add(AutonomyControlEvent(
            action=action,
            actor=triggered_by,
            target_type=target_type,
            target_id=target_id,
            old_value=old_value,
            new_value=new_value,
            reason=reason,
            created_at=now
        ))
        await session.flush()
