"""
Global Pytest Configuration and Fixtures.

Every test gets its own in-memory SQLite database (aiosqlite, one shared
connection through StaticPool) with the full schema created. API tests run
the real application through httpx's ASGITransport with get_db pointed at
that database.
"""

from typing import AsyncIterator, Callable, Dict, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from erp_directory.core.security import create_access_token
from erp_directory.db.session import build_engine, build_sessionmaker, get_db
from erp_directory.models import Base
from erp_directory.models.company import Company
from erp_directory.services.company_service import CompanyService
from erp_directory.services.schema_registry import SchemaRegistry
from erp_directory.services.tenant_binding import TenantBinding

# -----------------------------------------------------------------------------
# Database
# -----------------------------------------------------------------------------

@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = build_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return build_sessionmaker(engine)


@pytest.fixture
async def db(session_factory: async_sessionmaker) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


# -----------------------------------------------------------------------------
# Tenants
# -----------------------------------------------------------------------------

@pytest.fixture
async def company(db: AsyncSession) -> Company:
    return await CompanyService.create_company(db, "Acme")


@pytest.fixture
async def other_company(db: AsyncSession) -> Company:
    return await CompanyService.create_company(db, "Globex")


@pytest.fixture
def make_directory(db: AsyncSession) -> Callable:
    """Define a directory with fields given as name -> type tag (or (tag, relation_id))."""

    async def _make(
        name: str,
        fields: Optional[Dict[str, object]] = None,
        metadata: Optional[dict] = None,
        company_id: Optional[str] = None,
        required: tuple = (),
    ):
        directory = await SchemaRegistry.define_directory(db, name, "folder", "Company", metadata)
        created = {}
        for field_name, entry in (fields or {}).items():
            tag, relation_id = entry if isinstance(entry, tuple) else (entry, None)
            created[field_name] = await SchemaRegistry.define_field(
                db,
                directory.id,
                field_name,
                tag,
                required=field_name in required,
                relation_id=relation_id,
            )
        binding = None
        if company_id is not None:
            binding = await TenantBinding.bind(db, company_id, directory.id)
        return directory, created, binding

    return _make


# -----------------------------------------------------------------------------
# HTTP
# -----------------------------------------------------------------------------

@pytest.fixture
def app(session_factory: async_sessionmaker):
    from main import create_application

    application = create_application()

    async def override_get_db() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest.fixture
async def client(app) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
async def api_company(session_factory: async_sessionmaker) -> Company:
    """A committed company, visible to the sessions the app opens."""
    async with session_factory() as session:
        company = await CompanyService.create_company(session, "Acme API")
        await session.commit()
        return company


@pytest.fixture
def auth_headers(api_company: Company) -> Dict[str, str]:
    token = create_access_token(subject="tester", company_id=api_company.id)
    return {"Authorization": f"Bearer {token}"}
