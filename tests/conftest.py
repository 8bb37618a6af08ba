"""Pytest fixtures for expense engine tests."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import AsyncGenerator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from expense_engine.models import Base, Company, User, UserRole

# In-memory SQLite shared by every connection of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def engine():
    """Create a fresh test database engine per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    """Session factory configured like the application's."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Tenant fixtures
# ============================================================================


@pytest.fixture
async def company(session: AsyncSession) -> Company:
    """Create a test company."""
    company = Company(name="Acme Corp", country="United States", base_currency="USD")
    session.add(company)
    await session.flush()
    return company


UserFactory = Callable[..., Awaitable[User]]


@pytest.fixture
def make_user(session: AsyncSession, company: Company) -> UserFactory:
    """Factory for users of the test company."""

    async def factory(
        role: UserRole = UserRole.EMPLOYEE,
        manager: User | None = None,
        name: str | None = None,
        company_id: UUID | None = None,
    ) -> User:
        suffix = uuid4().hex[:8]
        user = User(
            company_id=company_id or company.id,
            name=name or f"{role.value.title()} {suffix}",
            email=f"{role.value.lower()}-{suffix}@example.com",
            role=role.value,
            manager_id=manager.id if manager else None,
        )
        session.add(user)
        await session.flush()
        return user

    return factory


@pytest.fixture
async def admin(session: AsyncSession, company: Company, make_user: UserFactory) -> User:
    """Company admin."""
    admin = await make_user(UserRole.ADMIN, name="Alice Admin")
    company.admin_user_id = admin.id
    await session.flush()
    return admin


@pytest.fixture
async def manager(make_user: UserFactory, admin: User) -> User:
    """Manager reporting to the admin."""
    return await make_user(UserRole.MANAGER, manager=admin, name="Mark Manager")


@pytest.fixture
async def employee(make_user: UserFactory, manager: User) -> User:
    """Employee reporting to the manager."""
    return await make_user(UserRole.EMPLOYEE, manager=manager, name="Erin Employee")


@pytest.fixture
async def finance(make_user: UserFactory) -> User:
    """Second approver outside the reporting line."""
    return await make_user(UserRole.MANAGER, name="Fiona Finance")


@pytest.fixture
async def cfo(make_user: UserFactory) -> User:
    """Approver typically named as a specific approver."""
    return await make_user(UserRole.ADMIN, name="Carl CFO")
