"""
Trust Engine API - Application Factory

Wires the TrustService into a FastAPI app:
- engine + session factory from DATABASE_URL (unless injected)
- schema creation on startup
- action policy table from TRUST_POLICY_FILE
- thresholds from TRUST_* environment variables

Run:
    DATABASE_URL=postgresql+asyncpg://... uvicorn main:app
"""
import asyncio
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from api.endpoints import trust
from api.middleware import LoggingMiddleware
from database import close_db_connections, create_schema, get_engine, get_session_factory
from logging_config import get_logger
from policy_table import PolicyTable
from trust_config import TrustThresholds
from trust_service import TrustService

logger = get_logger(__name__)

VERSION = "1.0.0"
DEFAULT_POLICY_FILE = Path(__file__).parent / "config" / "action_policies.yaml"


async def wait_for_db(engine: AsyncEngine, max_retries: int = 30, delay: float = 2.0) -> None:
    """Wait for database connection"""
    for attempt in range(1, max_retries + 1):
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("database_connected", attempt=attempt)
            return
        except Exception as e:
            logger.warning("database_not_ready", attempt=attempt, max_retries=max_retries, error=str(e))
            await asyncio.sleep(delay)

    raise RuntimeError("Failed to connect to database after maximum retries")


def create_app(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    policy_table: Optional[PolicyTable] = None,
    thresholds: Optional[TrustThresholds] = None
) -> FastAPI:
    """
    Build the API. Injected collaborators are used as-is (schema assumed ready);
    missing ones come from the environment at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_engine = session_factory is None
        factory = session_factory
        if owns_engine:
            engine = get_engine()
            await wait_for_db(engine)
            await create_schema(engine)
            factory = get_session_factory()

        policies = policy_table or PolicyTable.from_yaml(os.getenv("TRUST_POLICY_FILE", str(DEFAULT_POLICY_FILE)))
        app.state.trust_service = TrustService(factory, policies, thresholds or TrustThresholds.from_env())
        logger.info("trust_engine_online", policies=len(policies), version=VERSION)

        yield

        logger.info("trust_engine_shutdown")
        if owns_engine:
            await close_db_connections()

    app = FastAPI(
        title="Trust Engine API",
        description="Progressive trust and autonomous-action eligibility",
        version=VERSION,
        lifespan=lifespan
    )
    app.add_middleware(LoggingMiddleware)
    app.include_router(trust.router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": VERSION
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
