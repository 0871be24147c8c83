# tests/conftest.py — Shared test fixtures
import os
import uuid

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test_taskledger.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"

from models import Base, User, Organization, OrganizationUser, Project
from roles import Role
from auth import AuthService
from database import get_db_session, enable_sqlite_foreign_keys
from main import app


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    enable_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def make_user(
    db_session,
    role: Role,
    organization=None,
    approved: bool = True,
    password: str = "Password123!",
    name: str = None,
) -> User:
    """Insert a user (and its membership when an organization is given)"""
    handle = name or f"{role.value}-{uuid.uuid4().hex[:8]}"
    user = User(
        id=str(uuid.uuid4()),
        email=f"{handle}@taskledger.dev",
        username=handle,
        full_name=handle.replace("-", " ").title(),
        password_hash=AuthService.hash_password(password),
        role=role,
        is_approved=approved,
        current_organization_id=organization.id if organization else None,
    )
    db_session.add(user)
    await db_session.flush()
    if organization is not None:
        db_session.add(OrganizationUser(organization_id=organization.id, user_id=user.id, role=role))
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_org(db_session):
    """Create a test organization"""
    org = Organization(id=str(uuid.uuid4()), name="Acme Studio", description="Primary test tenant")
    db_session.add(org)
    await db_session.commit()
    await db_session.refresh(org)
    return org


@pytest_asyncio.fixture
async def other_org(db_session):
    """A second tenant for cross-organization checks"""
    org = Organization(id=str(uuid.uuid4()), name="Globex", description="Other tenant")
    db_session.add(org)
    await db_session.commit()
    await db_session.refresh(org)
    return org


@pytest_asyncio.fixture
async def super_admin(db_session, test_org):
    return await make_user(db_session, Role.SUPER_ADMIN, test_org, name="root-admin")


@pytest_asyncio.fixture
async def supervisor(db_session, test_org):
    return await make_user(db_session, Role.SUPERVISOR, test_org, name="sam-supervisor")


@pytest_asyncio.fixture
async def team_lead(db_session, test_org):
    return await make_user(db_session, Role.TEAM_LEAD, test_org, name="tina-lead")


@pytest_asyncio.fixture
async def staff_user(db_session, test_org):
    return await make_user(db_session, Role.STAFF, test_org, name="stan-staff")


@pytest_asyncio.fixture
async def other_staff(db_session, test_org):
    return await make_user(db_session, Role.STAFF, test_org, name="olga-staff")


@pytest_asyncio.fixture
async def unapproved_user(db_session):
    return await make_user(db_session, Role.STAFF, None, approved=False, name="una-pending")


@pytest_asyncio.fixture
async def outside_supervisor(db_session, other_org):
    return await make_user(db_session, Role.SUPERVISOR, other_org, name="gus-globex")


@pytest_asyncio.fixture
async def test_project(db_session, test_org, supervisor):
    project = Project(
        id=str(uuid.uuid4()),
        organization_id=test_org.id,
        name="Website Redesign",
        description="Client site",
        created_by_id=supervisor.id,
    )
    db_session.add(project)
    await db_session.commit()
    await db_session.refresh(project)
    return project


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token = AuthService.create_access_token(AuthService.token_claims(user))
    return {"Authorization": f"Bearer {token}"}
