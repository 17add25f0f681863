"""Shared fixtures: an in-memory SQLite database, the in-process store and seeded tenants."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from replyflow.models import (
    AiConfiguration,
    Base,
    Company,
    Conversation,
    Customer,
    PlatformConnection,
)
from replyflow.services.kv_store import InMemoryKeyValueStore


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


# ── Seed data ───────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def company(db) -> Company:
    company = Company(
        name="Acme Outdoor",
        business_hours=[
            {"day": "Mon", "is_open": True, "open": "09:00", "close": "18:00"},
            {"day": "Sun", "is_open": False},
        ],
    )
    db.add(company)
    await db.flush()
    return company


@pytest_asyncio.fixture
async def ai_configuration(db, company) -> AiConfiguration:
    configuration = AiConfiguration(
        company_id=company.id,
        primary_provider="openai",
        primary_model="gpt-4o",
        auto_respond=True,
        confidence_threshold=0.7,
        response_delay_seconds=0,
    )
    db.add(configuration)
    await db.flush()
    return configuration


@pytest_asyncio.fixture
async def connection(db, company) -> PlatformConnection:
    connection = PlatformConnection(
        company_id=company.id,
        platform="telegram",
        name="Acme bot",
        credentials={"bot_token": "123:abc"},
        is_active=True,
    )
    db.add(connection)
    await db.flush()
    return connection


@pytest_asyncio.fixture
async def customer(db, company) -> Customer:
    customer = Customer(
        company_id=company.id,
        platform="telegram",
        platform_user_id="tg-42",
        name="Dana",
    )
    db.add(customer)
    await db.flush()
    return customer


@pytest_asyncio.fixture
async def conversation(db, company, customer, connection) -> Conversation:
    conversation = Conversation(
        company_id=company.id,
        customer_id=customer.id,
        platform_connection_id=connection.id,
        status="open",
        is_ai_handling=True,
    )
    db.add(conversation)
    await db.commit()
    return conversation
