# tests/conftest.py - Shared test fixtures
import os
import tempfile

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ.setdefault("UPLOAD_ROOT", tempfile.mkdtemp(prefix="buildefect-uploads-"))

from models import Base, User, Building, Defect, DefectStatus, UserRole
from auth import AuthService
from database import get_db_session, enable_sqlite_foreign_keys
from main import app
from routers.attachments import PUBLIC_PREFIX, UPLOAD_ROOT


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


async def _make_user(db_session, login: str, password: str, role: UserRole) -> User:
    user = User(
        login=login,
        password_hash=AuthService.hash_password(password),
        name=login.capitalize(),
        lastname="Tester",
        role=role,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def engineer_user(db_session):
    """Create an engineer"""
    return await _make_user(db_session, "engineer", "EngineerPass1", UserRole.ENGINEER)


@pytest_asyncio.fixture
async def manager_user(db_session):
    """Create a manager"""
    return await _make_user(db_session, "manager", "ManagerPass1", UserRole.MANAGER)


@pytest_asyncio.fixture
async def observer_user(db_session):
    """Create an observer"""
    return await _make_user(db_session, "observer", "ObserverPass1", UserRole.OBSERVER)


@pytest_asyncio.fixture
async def test_building(db_session):
    """Create a building to attach defects to"""
    building = Building(name="Tower A", address="1 Main St", stage="foundation")
    db_session.add(building)
    await db_session.commit()
    await db_session.refresh(building)
    return building


@pytest_asyncio.fixture
async def test_defect(db_session, test_building, manager_user):
    """Create a new defect reported by the manager"""
    defect = Defect(
        building_id=test_building.id,
        created_by_person_id=manager_user.id,
        updated_by_person_id=manager_user.id,
        title="Crack in load-bearing wall",
        description="Diagonal crack on level 2",
        priority="high",
        status=DefectStatus.NEW,
    )
    db_session.add(defect)
    await db_session.commit()
    await db_session.refresh(defect)
    return defect


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token = AuthService.create_access_token(user)
    return {"Authorization": f"Bearer {token}"}


def stored_path(url: str) -> str:
    """Filesystem location behind an attachment's public /uploads url"""
    rel = url[len(PUBLIC_PREFIX) + 1:]
    return os.path.join(UPLOAD_ROOT, *rel.split("/"))


async def upload_file(client: AsyncClient, path: str, user: User,
                      name: str = "crack.jpg", body: bytes = b"jpeg-bytes"):
    """POST a multipart upload as the given user"""
    return await client.post(
        path,
        files={"file": (name, body, "image/jpeg")},
        headers=get_auth_headers(user),
    )
