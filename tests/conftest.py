"""
Pytest Configuration and Fixtures

Every test gets its own file-backed SQLite database (aiosqlite) with the
trust schema created, so tests never need a running PostgreSQL.
"""
import os
import sys

import pytest
import pytest_asyncio

# Add services/core to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'services', 'core'))

from database import build_engine, build_session_factory, create_schema  # noqa: E402
from policy_table import PolicyTable  # noqa: E402
from trust_config import TrustThresholds  # noqa: E402
from trust_service import TrustService  # noqa: E402

WEBSITE_ID = "site-1"

TEST_POLICIES = {
    "AUDIT_TITLES": {"action_category": "tech-seo", "required_trust_level": 1, "risk_level": "low"},
    "FIX_CANONICAL": {"action_category": "tech-seo", "required_trust_level": 2, "risk_level": "low"},
    "UPDATE_ROBOTS_TXT": {"action_category": "tech-seo", "required_trust_level": 3, "risk_level": "high"},
    "REWRITE_META_DESCRIPTION": {"action_category": "content", "required_trust_level": 2},
}


def sqlite_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'trust.db'}"


@pytest.fixture
def policy_table() -> PolicyTable:
    """Small policy table covering all three required levels."""
    return PolicyTable.from_mapping(TEST_POLICIES)


@pytest.fixture
def thresholds() -> TrustThresholds:
    return TrustThresholds()


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh database per test, schema created."""
    engine = build_engine(sqlite_url(tmp_path), connect_args={"timeout": 30})
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def service(session_factory, policy_table, thresholds) -> TrustService:
    """Fully wired TrustService on the per-test database."""
    return TrustService(session_factory, policy_table, thresholds)


@pytest.fixture
def website_id() -> str:
    return WEBSITE_ID
