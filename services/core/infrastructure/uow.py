"""
Unit of Work - Infrastructure Layer
===================================

One UnitOfWork = one database transaction. Commit on clean exit,
rollback on exception. Storage failures leave this layer as domain errors:

- constraint violations (CHECK, NOT NULL)    -> InvariantViolation
- any other SQLAlchemy or OS-level failure    -> TransientStorageError
  (pool exhausted, DNS failure, dropped connection, driver timeout)
"""
import asyncio

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exceptions import BaseTrustException, InvariantViolation, TransientStorageError
from logging_config import get_logger

logger = get_logger(__name__)

# OSError covers ConnectionError, socket.gaierror and the builtin TimeoutError.
TRANSIENT_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)


def translate_storage_error(operation: str, error: BaseException) -> BaseException:
    """Map a driver/SQLAlchemy failure onto the engine's error kinds."""
    if isinstance(error, BaseTrustException):
        return error
    if isinstance(error, IntegrityError):
        return InvariantViolation(f"storage rejected {operation}: {error.orig}")
    if isinstance(error, TRANSIENT_ERRORS):
        return TransientStorageError(operation, cause=str(error))
    return error


class UnitOfWork:
    """
    Thin Unit of Work for transaction management.

    Usage:
        async with UnitOfWork(session_factory, "record_outcome") as uow:
            record = await ledger.record_outcome(uow.session, website_id, category, outcome)
            await audit_log.append(uow.session, audit_record)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], operation: str = "storage"):
        self._session_factory = session_factory
        self._operation = operation
        self._session: AsyncSession | None = None

    async def __aenter__(self) -> "UnitOfWork":
        self._session = self._session_factory()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        session = self._session
        self._session = None
        try:
            if exc_type is None:
                try:
                    await session.commit()
                except Exception as commit_error:
                    await self._rollback_quietly(session)
                    raise translate_storage_error(self._operation, commit_error) from commit_error
            else:
                await self._rollback_quietly(session)
        finally:
            await session.close()

        if exc_val is not None:
            translated = translate_storage_error(self._operation, exc_val)
            if translated is not exc_val:
                raise translated from exc_val
        return False

    async def _rollback_quietly(self, session: AsyncSession) -> None:
        # A dead connection cannot roll back; the original error is what matters.
        try:
            await session.rollback()
        except TRANSIENT_ERRORS as rollback_error:
            logger.warning(
                "uow_rollback_failed",
                operation=self._operation,
                error=str(rollback_error)
            )

    @property
    def session(self) -> AsyncSession:
        """Current session"""
        if self._session is None:
            raise RuntimeError(
                "Session not available. Use 'async with UnitOfWork(...) as uow:' pattern."
            )
        return self._session
