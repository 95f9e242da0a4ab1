"""
EXECUTION AUDIT LOG
===================

Append-only record of every execution attempt (allowed or denied).

There is no update or delete path: rows are written once and read many
times (compliance reporting, evidence for trust transitions). The ORM
listeners in models.py reject any attempt to modify a stored row.

Reads are newest first (append order) and restartable with offset.
"""
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from logging_config import get_logger
from models import ActionExecutionAudit
from schemas import ActionOutcome, AuditRecord

logger = get_logger(__name__)


class ExecutionAuditLog:
    """Write-once audit trail in action_execution_audit."""

    def __init__(self, max_limit: int = 500):
        self._max_limit = max_limit

    async def append(self, session: AsyncSession, record: AuditRecord) -> AuditRecord:
        """
        Persist ``record``; id and executed_at are assigned when absent.

        Durability comes from the caller's UnitOfWork commit; the row is
        flushed here so ordering (seq) is fixed before returning.
        """
        stored = record.model_copy(
            update={
                "id": record.id or str(uuid.uuid4()),
                "executed_at": record.executed_at or datetime.now(timezone.utc),
            }
        )

        row = ActionExecutionAudit(
            id=stored.id,
            website_id=stored.website_id,
            action_code=stored.action_code,
            action_category=stored.action_category,
            trust_level_at_execution=stored.trust_level_at_execution,
            execution_mode=stored.execution_mode.value,
            evidence=[entry.model_dump() for entry in stored.evidence],
            outcome=stored.outcome.value,
            impact_metrics=stored.impact_metrics,
            executed_at=stored.executed_at,
            executed_by=stored.executed_by,
        )
        session.add(row)
        await session.flush()

        log = logger.info if stored.outcome != ActionOutcome.DENIED else logger.warning
        log(
            "action_execution_logged",
            audit_id=stored.id,
            website_id=stored.website_id,
            action_code=stored.action_code,
            action_category=stored.action_category,
            execution_mode=stored.execution_mode.value,
            outcome=stored.outcome.value,
            executed_by=stored.executed_by
        )
        return stored

    async def query(
        self,
        session: AsyncSession,
        website_id: str,
        action_category: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[AuditRecord]:
        """
        Newest-first page of audit records.

        For a fixed dataset the same (limit, offset) always returns the same page;
        new appends only ever shift older rows to later offsets.
        """
        if limit < 1 or offset < 0:
            raise ValueError("limit must be >= 1 and offset >= 0")
        limit = min(limit, self._max_limit)

        stmt = select(ActionExecutionAudit).where(ActionExecutionAudit.website_id == website_id)
        if action_category is not None:
            stmt = stmt.where(ActionExecutionAudit.action_category == action_category)
        stmt = stmt.order_by(ActionExecutionAudit.seq.desc()).limit(limit).offset(offset)

        result = await session.execute(stmt)
        return [AuditRecord.model_validate(row) for row in result.scalars().all()]

    async def recent_ids(
        self,
        session: AsyncSession,
        website_id: str,
        action_category: str,
        limit: int
    ) -> List[str]:
        """Ids of the latest attempts in a category (evidence for transitions)."""
        stmt = (
            select(ActionExecutionAudit.id)
            .where(
                ActionExecutionAudit.website_id == website_id,
                ActionExecutionAudit.action_category == action_category,
            )
            .order_by(ActionExecutionAudit.seq.desc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())
