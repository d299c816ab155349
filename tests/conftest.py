"""Pytest fixtures for liquidation tracker tests."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from liquidation_tracker.api.app import create_app
from liquidation_tracker.api.dependencies import get_db_session
from liquidation_tracker.config import MEGABYTE, Settings, get_settings
from liquidation_tracker.models import HEI, Base, Liquidation, Program, Region, User
from liquidation_tracker.services.authorization import ActorContext
from liquidation_tracker.services.ledger_service import BeneficiaryInput, LedgerService
from liquidation_tracker.services.roles import Role
from liquidation_tracker.services.workflow import LiquidationInput, LiquidationService

# In-memory SQLite shared by every session of a test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@dataclass
class Directory:
    """Seeded regions, HEIs, program and one user per role."""

    region: Region
    other_region: Region
    hei: HEI
    other_hei: HEI
    program: Program
    hei_user: User
    other_hei_user: User
    rc: User
    other_rc: User
    accountant: User
    admin: User
    super_admin: User


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Test settings with uploads under a temporary directory."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        app_version="test",
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="DEBUG",
        upload_dir=str(tmp_path / "uploads"),
        bulk_import_max_bytes=10 * MEGABYTE,
        document_max_bytes=20 * MEGABYTE,
    )


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


def _user(name: str, role: Role, hei: HEI | None = None, region: Region | None = None) -> User:
    return User(
        name=name,
        email=f"{name.lower().replace(' ', '.')}@example.com",
        role=role.value,
        hei_id=hei.id if hei else None,
        region_id=region.id if region else (hei.region_id if hei else None),
        status="active",
    )


@pytest_asyncio.fixture
async def directory(session: AsyncSession) -> Directory:
    """Seed the directory tables."""
    region = Region(code="R01", name="Region I")
    other_region = Region(code="R02", name="Region II")
    session.add_all([region, other_region])
    await session.flush()

    hei = HEI(uii="HEI-001", name="Northern Luzon State College", region_id=region.id)
    other_hei = HEI(uii="HEI-002", name="Cagayan Valley Institute", region_id=other_region.id)
    program = Program(code="TES", name="Tertiary Education Subsidy")
    session.add_all([hei, other_hei, program])
    await session.flush()

    users = Directory(
        region=region,
        other_region=other_region,
        hei=hei,
        other_hei=other_hei,
        program=program,
        hei_user=_user("Hana Reyes", Role.HEI, hei=hei),
        other_hei_user=_user("Omar Cruz", Role.HEI, hei=other_hei),
        rc=_user("Rita Coordinator", Role.REGIONAL_COORDINATOR, region=region),
        other_rc=_user("Remy Coordinator", Role.REGIONAL_COORDINATOR, region=other_region),
        accountant=_user("Ana Accountant", Role.ACCOUNTANT),
        admin=_user("Adi Admin", Role.ADMIN),
        super_admin=_user("Sam Super", Role.SUPER_ADMIN),
    )
    session.add_all([
        users.hei_user,
        users.other_hei_user,
        users.rc,
        users.other_rc,
        users.accountant,
        users.admin,
        users.super_admin,
    ])
    await session.flush()
    return users


@pytest.fixture
def hei_actor(directory: Directory) -> ActorContext:
    return ActorContext(user=directory.hei_user, ip_address="10.0.0.1")


@pytest.fixture
def rc_actor(directory: Directory) -> ActorContext:
    return ActorContext(user=directory.rc)


@pytest.fixture
def other_rc_actor(directory: Directory) -> ActorContext:
    return ActorContext(user=directory.other_rc)


@pytest.fixture
def accountant_actor(directory: Directory) -> ActorContext:
    return ActorContext(user=directory.accountant)


@pytest.fixture
def admin_actor(directory: Directory) -> ActorContext:
    return ActorContext(user=directory.admin)


@pytest.fixture
def super_admin_actor(directory: Directory) -> ActorContext:
    return ActorContext(user=directory.super_admin)


MakeLiquidation = Callable[..., Awaitable[Liquidation]]


@pytest.fixture
def make_liquidation(session: AsyncSession, hei_actor: ActorContext) -> MakeLiquidation:
    """Factory for draft liquidations with beneficiaries of 10,000.00 each."""

    async def factory(
        actor: ActorContext | None = None,
        beneficiaries: int = 1,
        total: Decimal = Decimal("100000.00"),
        uii: str = "HEI-001",
        **fields,
    ) -> Liquidation:
        actor = actor or hei_actor
        service = LiquidationService(session)
        data = LiquidationInput(
            academic_year=fields.pop("academic_year", "2024-2025"),
            uii=uii,
            total_disbursements=total,
            **fields,
        )
        liquidation = await service.create(actor, data)

        ledger = LedgerService(session)
        for index in range(beneficiaries):
            await ledger.add_beneficiary(
                actor,
                liquidation.id,
                BeneficiaryInput(
                    last_name=f"Santos{index}",
                    first_name="Maria",
                    amount=Decimal("10000.00"),
                ),
            )
        return await service.load(liquidation.id)

    return factory


@pytest_asyncio.fixture
async def client(
    session: AsyncSession,
    session_factory,
    directory: Directory,
    settings: Settings,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over the app, with each request in its own session."""
    # Requests run on the shared connection, so seeded rows must be committed
    await session.commit()

    app = create_app()

    async def override_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as request_session:
            yield request_session

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_settings] = lambda: settings

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


def auth(user: User) -> dict[str, str]:
    """Request headers acting as ``user``."""
    return {"X-User-ID": str(user.id)}
