"""
TRUST LEDGER
============

Durable trust state per (website_id, action_category).

Concurrency contract:
- Counter changes are ONE conditional UPDATE against the row
  (success_count = success_count + 1, ...), never read-modify-write in Python.
  Two outcomes for the same key arriving together both land.
- Level changes carry the snapshot they were decided on; the UPDATE matches
  only if level and counters are unchanged, otherwise ConcurrentUpdateConflict.
- Every write transaction starts with its UPDATE, so the row (or on SQLite the
  database) is write-locked for the rest of the transaction, which makes the
  follow-up confidence write part of the same atomic step.

Methods take the session explicitly; transactions belong to UnitOfWork.
"""
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from exceptions import ConcurrentUpdateConflict, InvariantViolation
from logging_config import get_logger
from models import TrustLevelRecord
from schemas import ActionOutcome, TrustRecord
from trust_config import MAX_TRUST_LEVEL, MIN_TRUST_LEVEL

logger = get_logger(__name__)

_SNAPSHOT_COLUMNS = (
    TrustLevelRecord.id,
    TrustLevelRecord.website_id,
    TrustLevelRecord.action_category,
    TrustLevelRecord.trust_level,
    TrustLevelRecord.confidence,
    TrustLevelRecord.success_count,
    TrustLevelRecord.failure_count,
    TrustLevelRecord.is_degraded,
    TrustLevelRecord.degraded_since,
    TrustLevelRecord.consecutive_failures,
    TrustLevelRecord.last_error_message,
    TrustLevelRecord.updated_at,
)


def compute_confidence(success_count: int, failure_count: int) -> int:
    """round(100 * s / (s + f)) with half-up rounding; 0 without samples."""
    if success_count < 0 or failure_count < 0:
        raise InvariantViolation("counters must be non-negative")
    total = success_count + failure_count
    if total == 0:
        return 0
    return (200 * success_count + total) // (2 * total)


def _key(website_id: str, action_category: str):
    return (
        TrustLevelRecord.website_id == website_id,
        TrustLevelRecord.action_category == action_category,
    )


class TrustLedger:
    """Invariant-preserving access to website_trust_levels."""

    async def get(self, session: AsyncSession, website_id: str, action_category: str) -> TrustRecord:
        """
        Existing record, or a freshly persisted Level-1 record.

        Creation is idempotent: concurrent first references converge on one row.
        """
        row = await self._select(session, website_id, action_category)
        if row is None:
            await self._insert_default(session, website_id, action_category)
            row = await self._select(session, website_id, action_category)
        return TrustRecord.model_validate(dict(row))

    async def find(
        self,
        session: AsyncSession,
        website_id: str,
        action_category: str
    ) -> Optional[TrustRecord]:
        """Read without creating."""
        row = await self._select(session, website_id, action_category)
        return TrustRecord.model_validate(dict(row)) if row is not None else None

    async def list_for_website(self, session: AsyncSession, website_id: str) -> List[TrustRecord]:
        stmt = (
            select(*_SNAPSHOT_COLUMNS)
            .where(TrustLevelRecord.website_id == website_id)
            .order_by(TrustLevelRecord.action_category)
        )
        result = await session.execute(stmt)
        return [TrustRecord.model_validate(dict(row)) for row in result.mappings().all()]

    async def record_outcome(
        self,
        session: AsyncSession,
        website_id: str,
        action_category: str,
        outcome: ActionOutcome,
        error_message: Optional[str] = None
    ) -> TrustRecord:
        """
        Atomically count one outcome and refresh confidence.

        success: success_count += 1, consecutive_failures = 0, degraded cleared
        failure: failure_count += 1, consecutive_failures += 1
        """
        outcome = ActionOutcome(outcome)
        if outcome == ActionOutcome.DENIED:
            raise InvariantViolation(
                "denied attempts do not change trust counters",
                website_id=website_id,
                action_category=action_category
            )

        now = datetime.now(timezone.utc)
        if outcome == ActionOutcome.SUCCESS:
            values = {
                "success_count": TrustLevelRecord.success_count + 1,
                "consecutive_failures": 0,
                "is_degraded": False,
                "degraded_since": None,
                "updated_at": now,
            }
        else:
            values = {
                "failure_count": TrustLevelRecord.failure_count + 1,
                "consecutive_failures": TrustLevelRecord.consecutive_failures + 1,
                "updated_at": now,
            }
            if error_message:
                values["last_error_message"] = error_message

        stmt = (
            update(TrustLevelRecord)
            .where(*_key(website_id, action_category))
            .values(**values)
            .returning(*_SNAPSHOT_COLUMNS)
            .execution_options(synchronize_session=False)
        )
        row = (await session.execute(stmt)).mappings().one_or_none()
        if row is None:
            # First reference to this pair happens to be an outcome.
            await self._insert_default(session, website_id, action_category)
            row = (await session.execute(stmt)).mappings().one()

        confidence = compute_confidence(row["success_count"], row["failure_count"])
        await session.execute(
            update(TrustLevelRecord)
            .where(TrustLevelRecord.id == row["id"])
            .values(confidence=confidence)
            .execution_options(synchronize_session=False)
        )

        snapshot = dict(row)
        snapshot["confidence"] = confidence
        return TrustRecord.model_validate(snapshot)

    async def set_trust_level(
        self,
        session: AsyncSession,
        website_id: str,
        action_category: str,
        level: int,
        reset_counters: bool,
        *,
        expected: Optional[TrustRecord] = None,
        degrade: bool = False
    ) -> TrustRecord:
        """
        Move a record to ``level``.

        With ``expected`` (automatic transitions) the change is one step at most
        and applies only if the row still matches that snapshot. Without it
        (administrative override) the row must already exist.
        reset_counters zeroes success/failure/consecutive counters and confidence.
        degrade marks the category degraded, keeping an earlier degraded_since.
        """
        if not MIN_TRUST_LEVEL <= level <= MAX_TRUST_LEVEL:
            logger.error(
                "invariant_violation",
                invariant="trust_level_range",
                website_id=website_id,
                action_category=action_category,
                requested_level=level
            )
            raise InvariantViolation(
                f"trust level {level} outside [{MIN_TRUST_LEVEL}, {MAX_TRUST_LEVEL}]",
                website_id=website_id,
                action_category=action_category
            )
        if expected is not None and abs(level - expected.trust_level) > 1:
            logger.error(
                "invariant_violation",
                invariant="single_step_transition",
                website_id=website_id,
                action_category=action_category,
                from_level=expected.trust_level,
                requested_level=level
            )
            raise InvariantViolation(
                f"automatic transition {expected.trust_level} -> {level} skips a level",
                website_id=website_id,
                action_category=action_category
            )

        now = datetime.now(timezone.utc)
        values = {"trust_level": level, "updated_at": now}
        if reset_counters:
            values.update(success_count=0, failure_count=0, consecutive_failures=0, confidence=0)
        if degrade:
            keep_since = expected is not None and expected.is_degraded and expected.degraded_since
            values.update(
                is_degraded=True,
                degraded_since=expected.degraded_since if keep_since else now
            )

        stmt = update(TrustLevelRecord).where(*_key(website_id, action_category))
        if expected is not None:
            stmt = stmt.where(
                TrustLevelRecord.trust_level == expected.trust_level,
                TrustLevelRecord.success_count == expected.success_count,
                TrustLevelRecord.failure_count == expected.failure_count,
            )
        stmt = (
            stmt.values(**values)
            .returning(*_SNAPSHOT_COLUMNS)
            .execution_options(synchronize_session=False)
        )

        row = (await session.execute(stmt)).mappings().one_or_none()
        if row is None:
            if expected is not None:
                raise ConcurrentUpdateConflict(website_id, action_category, expected.trust_level)
            raise InvariantViolation(
                "cannot set trust level on a record that does not exist",
                website_id=website_id,
                action_category=action_category
            )
        return TrustRecord.model_validate(dict(row))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _select(self, session: AsyncSession, website_id: str, action_category: str):
        stmt = select(*_SNAPSHOT_COLUMNS).where(*_key(website_id, action_category))
        return (await session.execute(stmt)).mappings().one_or_none()

    async def _insert_default(self, session: AsyncSession, website_id: str, action_category: str) -> None:
        now = datetime.now(timezone.utc)
        values = {
            "website_id": website_id,
            "action_category": action_category,
            "trust_level": MIN_TRUST_LEVEL,
            "confidence": 0,
            "success_count": 0,
            "failure_count": 0,
            "is_degraded": False,
            "consecutive_failures": 0,
            "created_at": now,
            "updated_at": now,
        }
        dialect = session.bind.dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as dialect_insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as dialect_insert
        else:
            dialect_insert = None

        if dialect_insert is not None:
            stmt = dialect_insert(TrustLevelRecord).values(**values).on_conflict_do_nothing(
                index_elements=["website_id", "action_category"]
            )
            result = await session.execute(stmt)
            created = result.rowcount == 1
        else:
            try:
                async with session.begin_nested():
                    await session.execute(insert(TrustLevelRecord).values(**values))
                created = True
            except IntegrityError:
                created = False

        if created:
            logger.info(
                "trust_record_created",
                website_id=website_id,
                action_category=action_category,
                trust_level=MIN_TRUST_LEVEL
            )
