"""Pytest configuration and fixtures."""

import dataclasses
import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DRY_RUN"] = "true"
os.environ["PERSIST_TRANSACTIONS"] = "false"

from bridgeroute.chain.dry_run import DryRunChainClient
from bridgeroute.engine import BridgeEngine, EngineConfig
from bridgeroute.ledger.models import Base
from bridgeroute.ledger.repository import TransactionRepository
from bridgeroute.routing.aggregator import RouteAggregator
from bridgeroute.signing.dry_run import DryRunSigner

from factories import StubProvider


@pytest.fixture
def fast_config() -> EngineConfig:
    """Engine budgets short enough for tests."""
    return EngineConfig(
        read_timeout=1.0,
        signing_timeout=1.0,
        confirmation_timeout=1.0,
        delivery_timeout=2.0,
        status_poll_interval=0.01,
        auto_retry_backoff=0.01,
    )


@pytest_asyncio.fixture
async def make_engine(fast_config):
    """Factory for engines on a dry-run chain. Engines are stopped on teardown."""
    engines: list[BridgeEngine] = []

    def factory(providers=None, chain=None, signer=None, archive=None, **overrides) -> BridgeEngine:
        chain = chain or DryRunChainClient()
        signer = signer or DryRunSigner(chain)
        engine = BridgeEngine(
            aggregator=RouteAggregator(providers=providers if providers is not None else [StubProvider()]),
            chain=chain,
            signer=signer,
            config=dataclasses.replace(fast_config, **overrides),
            archive=archive,
        )
        engines.append(engine)
        return engine

    yield factory

    for engine in engines:
        await engine.stop()


@pytest_asyncio.fixture
async def engine(make_engine) -> BridgeEngine:
    """Engine with a single stub provider."""
    return make_engine()


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    session_factory = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def transaction_repo(db_session: AsyncSession) -> TransactionRepository:
    """Create transaction repository for testing."""
    return TransactionRepository(db_session)
