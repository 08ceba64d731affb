import sys
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from cashback_api.app import create_app  # noqa: E402
from cashback_api.db.base import Base  # noqa: E402
from cashback_api.db.session import get_session  # noqa: E402
from cashback_api.models import (  # noqa: E402
    AccumulationRuleType,
    CashbackProgram,
    Client,
    Organization,
    OrganizationMember,
    Seller,
    User,
)
from cashback_api.observability.cashback import get_cashback_store  # noqa: E402


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)

    # SAVEPOINT needs SQLAlchemy, not the driver, to emit BEGIN
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_cashback_store():
    get_cashback_store().reset()
    yield
    get_cashback_store().reset()


@dataclass
class LedgerSeed:
    organization: Organization
    seller: Seller
    operator: User
    client: Client
    program: CashbackProgram | None


async def seed_ledger(
    session: AsyncSession,
    *,
    with_program: bool = True,
    operator_password: str = "1234",
    **program_fields,
) -> LedgerSeed:
    """Create an organization with one operator, one client and (optionally) a program."""

    organization = Organization(name="Loja Centro")
    session.add(organization)
    await session.flush()

    operator = User(email=f"operator-{organization.id.hex[:8]}@example.com", display_name="Caixa 1")
    seller = Seller(organization_id=organization.id, name="Caixa 1", operator_password=operator_password)
    client = Client(organization_id=organization.id, name="Maria Souza", phone="+5511999990000")
    session.add_all([operator, seller, client])
    await session.flush()
    session.add(OrganizationMember(organization_id=organization.id, user_id=operator.id, seller_id=seller.id))

    program = None
    if with_program:
        fields = {
            "title": "Cashback Loja Centro",
            "accumulation_type": AccumulationRuleType.FIXED,
            "accumulation_value": Decimal("500"),
            "minimum_sale_value": Decimal("0"),
            "expiration_days": 30,
        }
        fields.update(program_fields)
        program = CashbackProgram(organization_id=organization.id, **fields)
        session.add(program)
    await session.flush()
    return LedgerSeed(
        organization=organization,
        seller=seller,
        operator=operator,
        client=client,
        program=program,
    )
