"""
EXECUTION AUDIT LOG TESTS

Append, newest-first pagination and write-once guarantees.
"""
import pytest
from sqlalchemy import select

from exceptions import InvariantViolation
from execution_audit_log import ExecutionAuditLog
from infrastructure.uow import UnitOfWork
from models import ActionExecutionAudit
from schemas import ActionOutcome, AuditRecord, EvidenceEntry, ExecutionMode

pytestmark = pytest.mark.asyncio(loop_scope="function")


def make_record(website_id, n, category="tech-seo", outcome=ActionOutcome.SUCCESS, mode=ExecutionMode.ASSISTED):
    return AuditRecord(
        website_id=website_id,
        action_code=f"ACTION_{n}",
        action_category=category,
        trust_level_at_execution=1,
        execution_mode=mode,
        evidence=[f"observation {n}"],
        outcome=outcome,
        impact_metrics={"before": {"errors": n}, "after": {"errors": 0}}
    )


async def append_many(session_factory, website_id, count, category="tech-seo"):
    log = ExecutionAuditLog()
    stored = []
    for n in range(count):
        async with UnitOfWork(session_factory) as uow:
            stored.append(await log.append(uow.session, make_record(website_id, n, category)))
    return stored


class TestAppend:

    async def test_assigns_id_and_timestamp(self, session_factory, website_id):
        async with UnitOfWork(session_factory) as uow:
            stored = await ExecutionAuditLog().append(uow.session, make_record(website_id, 1))

        assert stored.id
        assert stored.executed_at is not None
        assert stored.executed_by == "system"

    async def test_ids_are_unique(self, session_factory, website_id):
        stored = await append_many(session_factory, website_id, 5)
        assert len({r.id for r in stored}) == 5

    async def test_keeps_caller_supplied_id(self, session_factory, website_id):
        record = make_record(website_id, 1).model_copy(update={"id": "audit-fixed-id"})
        async with UnitOfWork(session_factory) as uow:
            stored = await ExecutionAuditLog().append(uow.session, record)
        assert stored.id == "audit-fixed-id"

    async def test_evidence_roundtrips_as_entries(self, session_factory, website_id):
        record = AuditRecord(
            website_id=website_id,
            action_code="FIX_CANONICAL",
            action_category="tech-seo",
            trust_level_at_execution=2,
            execution_mode=ExecutionMode.ASSISTED,
            evidence=[
                "canonical pointed at staging host",
                {"kind": "crawl", "detail": "3 pages affected", "extensions": {"crawl_id": "c-42"}},
            ],
            outcome=ActionOutcome.SUCCESS
        )
        async with UnitOfWork(session_factory) as uow:
            await ExecutionAuditLog().append(uow.session, record)
        async with UnitOfWork(session_factory) as uow:
            [loaded] = await ExecutionAuditLog().query(uow.session, website_id)

        assert loaded.evidence == [
            EvidenceEntry(kind="note", detail="canonical pointed at staging host"),
            EvidenceEntry(kind="crawl", detail="3 pages affected", extensions={"crawl_id": "c-42"}),
        ]

    async def test_not_durable_without_commit(self, session_factory, website_id):
        with pytest.raises(RuntimeError):
            async with UnitOfWork(session_factory) as uow:
                await ExecutionAuditLog().append(uow.session, make_record(website_id, 1))
                raise RuntimeError("caller failed before commit")

        async with UnitOfWork(session_factory) as uow:
            assert await ExecutionAuditLog().query(uow.session, website_id) == []


class TestAuditRecordValidation:

    async def test_denied_mode_requires_denied_outcome(self, website_id):
        with pytest.raises(ValueError):
            make_record(website_id, 1, outcome=ActionOutcome.SUCCESS, mode=ExecutionMode.DENIED)

    async def test_denied_outcome_requires_denied_mode(self, website_id):
        with pytest.raises(ValueError):
            make_record(website_id, 1, outcome=ActionOutcome.DENIED, mode=ExecutionMode.ASSISTED)


class TestQuery:

    async def test_newest_first(self, session_factory, website_id):
        stored = await append_many(session_factory, website_id, 4)
        async with UnitOfWork(session_factory) as uow:
            result = await ExecutionAuditLog().query(uow.session, website_id)
        assert [r.id for r in result] == [r.id for r in reversed(stored)]

    async def test_pagination_is_restartable(self, session_factory, website_id):
        stored = await append_many(session_factory, website_id, 7)
        newest_first = [r.id for r in reversed(stored)]
        log = ExecutionAuditLog()

        pages = []
        offset = 0
        while True:
            async with UnitOfWork(session_factory) as uow:
                page = await log.query(uow.session, website_id, limit=3, offset=offset)
            if not page:
                break
            pages.extend(r.id for r in page)
            offset += len(page)

        assert pages == newest_first

        async with UnitOfWork(session_factory) as uow:
            again = await log.query(uow.session, website_id, limit=3, offset=3)
        assert [r.id for r in again] == newest_first[3:6]

    async def test_category_filter(self, session_factory, website_id):
        await append_many(session_factory, website_id, 2, category="tech-seo")
        await append_many(session_factory, website_id, 3, category="content")

        async with UnitOfWork(session_factory) as uow:
            content = await ExecutionAuditLog().query(uow.session, website_id, "content")
            everything = await ExecutionAuditLog().query(uow.session, website_id)

        assert len(content) == 3
        assert {r.action_category for r in content} == {"content"}
        assert len(everything) == 5

    async def test_other_websites_excluded(self, session_factory, website_id):
        await append_many(session_factory, website_id, 2)
        await append_many(session_factory, "site-2", 2)
        async with UnitOfWork(session_factory) as uow:
            result = await ExecutionAuditLog().query(uow.session, website_id)
        assert {r.website_id for r in result} == {website_id}

    async def test_limit_capped(self, session_factory, website_id):
        await append_many(session_factory, website_id, 5)
        async with UnitOfWork(session_factory) as uow:
            result = await ExecutionAuditLog(max_limit=2).query(uow.session, website_id, limit=100)
        assert len(result) == 2

    @pytest.mark.parametrize("limit,offset", [(0, 0), (-5, 0), (10, -1)])
    async def test_invalid_paging_rejected(self, session_factory, website_id, limit, offset):
        async with UnitOfWork(session_factory) as uow:
            with pytest.raises(ValueError):
                await ExecutionAuditLog().query(uow.session, website_id, limit=limit, offset=offset)

    async def test_recent_ids(self, session_factory, website_id):
        stored = await append_many(session_factory, website_id, 5)
        async with UnitOfWork(session_factory) as uow:
            ids = await ExecutionAuditLog().recent_ids(uow.session, website_id, "tech-seo", 3)
        assert ids == [r.id for r in reversed(stored)][:3]


class TestWriteOnce:
    """Stored audit rows cannot be modified or deleted through the ORM"""

    async def test_update_rejected(self, session_factory, website_id):
        await append_many(session_factory, website_id, 1)

        with pytest.raises(InvariantViolation):
            async with UnitOfWork(session_factory) as uow:
                row = (await uow.session.execute(select(ActionExecutionAudit))).scalar_one()
                row.outcome = "failure"
                await uow.session.flush()

        async with UnitOfWork(session_factory) as uow:
            [record] = await ExecutionAuditLog().query(uow.session, website_id)
        assert record.outcome == ActionOutcome.SUCCESS

    async def test_delete_rejected(self, session_factory, website_id):
        await append_many(session_factory, website_id, 1)

        with pytest.raises(InvariantViolation):
            async with UnitOfWork(session_factory) as uow:
                row = (await uow.session.execute(select(ActionExecutionAudit))).scalar_one()
                await uow.session.delete(row)
                await uow.session.flush()

        async with UnitOfWork(session_factory) as uow:
            assert len(await ExecutionAuditLog().query(uow.session, website_id)) == 1
