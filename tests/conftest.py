"""
Test infrastructure for the Conduit store layer and API.

Strategy
--------
- SQLite in-memory via aiosqlite eliminates the need for a running Postgres
  instance in CI, keeping the suite fast and self-contained.
- StaticPool forces every session to share the same in-memory database
  connection, which is required because SQLite in-memory databases are
  connection-scoped; a new connection would see an empty database.  The
  stores open and commit their own sessions, so tests drive them one call
  at a time and seed data through the stores rather than through a
  long-lived session.
- Concurrency tests need one connection per transaction, so they use a
  file-backed database (``file_engine`` fixture) instead.
- The app's session-factory dependency is overridden so every test-time
  request builds its stores on the test session factory.
- All tables are created fresh before each test and dropped after, giving
  each test a clean isolated state.
"""
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from conduit.database import Base, get_session_factory
from conduit.main import app
from conduit.middleware import install_query_counter
from conduit.models import User
from conduit.stores import ArticleStore, UserStore

# ---------------------------------------------------------------------------
# Test database engine: SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Register the SQL statement counter on the test engine.
install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# Dependency override: stores built by the routers use the test factory
# ---------------------------------------------------------------------------

app.dependency_overrides[get_session_factory] = lambda: async_session_test


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def memory_engine():
    """The shared in-memory engine, for tests that hook engine events."""
    return engine_test


@pytest.fixture
def article_store() -> ArticleStore:
    return ArticleStore(async_session_test)


@pytest.fixture
def user_store() -> UserStore:
    return UserStore(async_session_test)


@pytest_asyncio.fixture
async def make_user(user_store: UserStore):
    """Factory fixture: ``await make_user("alice")`` persists and returns a user."""

    async def _make_user(username: str, **fields) -> User:
        fields.setdefault("email", f"{username}@example.com")
        return await user_store.create(User(username=username, **fields))

    return _make_user


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """
    Yield an engine on a file-backed SQLite database with the schema created.

    Each pooled connection runs its own transaction, so concurrent store
    calls contend on the database lock the way they would on a server.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'conduit.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    """Yield an httpx.AsyncClient wired to the FastAPI app via ASGITransport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
