import pytest
import pytest_asyncio
import fnmatch
from decimal import Decimal
from unittest.mock import MagicMock, AsyncMock
from httpx import AsyncClient, ASGITransport
from fastapi_limiter import FastAPILimiter
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from database import get_db
from models import Base, CreditPurchase, ProviderCredits, ServiceProvider, User
from security import hash_password, issue_token
from services.mercadopago import MercadoPagoClient

TEST_PASSWORD = "secreto123"


class FakeRedis:
    """In-memory stand-in for the few Redis calls the app makes (rate limiter)."""

    def __init__(self):
        self.data = {}
        self.calls = []

    async def get(self, key): return self.data.get(key)
    async def set(self, key, value, *args, **kwargs): self.data[key] = value; return True
    async def delete(self, key):
        if key in self.data: del self.data[key]
        return 1

    async def keys(self, pattern="*"):
        return [k for k in self.data.keys() if fnmatch.fnmatch(k, pattern)]

    # Rate limiter: 0 means "not limited"
    async def eval(self, *args, **kwargs): return 0
    async def evalsha(self, *args, **kwargs):
        self.calls.append(args)
        return 0
    async def script_load(self, script): return "dummy_sha"

    async def close(self): pass
    async def aclose(self): pass


class FakeSocketServer:
    """Records what the chat gateway does with a Socket.IO server."""

    def __init__(self):
        self.handlers = {}
        self.sessions = {}
        self.memberships = {}
        self.emitted = []

    def on(self, event, handler=None):
        self.handlers[event] = handler

    async def save_session(self, sid, session): self.sessions[sid] = dict(session)
    async def get_session(self, sid): return self.sessions[sid]

    async def enter_room(self, sid, room):
        self.memberships.setdefault(sid, set()).add(room)

    def rooms(self, sid):
        return list(self.memberships.get(sid, set()))

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None, **kwargs):
        self.emitted.append({"event": event, "data": data, "to": to or room, "skip_sid": skip_sid})

    def events(self, name):
        return [e for e in self.emitted if e["event"] == name]


# =============================================================================
# DATABASE
# =============================================================================

@pytest_asyncio.fixture
async def db_engine():
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
def session_factory(db_engine):
    return sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


class Factory:
    """Test data builders bound to one session."""

    def __init__(self, db):
        self.db = db

    async def user(self, email, role="customer", name="Usuario Test", is_active=True) -> User:
        user = User(
            email=email,
            name=name,
            role=role,
            password_hash=hash_password(TEST_PASSWORD),
            is_active=is_active,
        )
        self.db.add(user)
        await self.db.commit()
        return user

    async def provider(self, email="proveedor@test.com", credits=10):
        """Provider user + profile + balance row. Returns (user, profile)."""
        user = await self.user(email, role="provider", name="Plomería Test")
        profile = ServiceProvider(user_id=user.id, business_name="Plomería Test", city="Córdoba")
        self.db.add(profile)
        await self.db.flush()
        self.db.add(ProviderCredits(
            provider_id=profile.id,
            current_credits=credits,
            total_purchased=credits,
            total_used=0,
        ))
        await self.db.commit()
        return user, profile

    async def purchase(self, provider_id, package_id="basico", credits=10, status="pending") -> CreditPurchase:
        purchase = CreditPurchase(
            provider_id=provider_id,
            package_id=package_id,
            credits=credits,
            amount=Decimal("5000"),
            status=status,
        )
        self.db.add(purchase)
        await self.db.commit()
        return purchase

    @staticmethod
    def headers(user) -> dict:
        return {"Authorization": f"Bearer {issue_token(user)}"}


@pytest.fixture
def factory(db_session):
    return Factory(db_session)


# =============================================================================
# HTTP
# =============================================================================

@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def mercadopago():
    mp = MagicMock(spec=MercadoPagoClient)
    mp.create_preference = AsyncMock()
    mp.get_payment = AsyncMock()
    mp.close = AsyncMock()
    return mp


@pytest_asyncio.fixture
async def async_client(redis_client, session_factory, mercadopago):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    await FastAPILimiter.init(redis_client)

    app.state.redis = redis_client
    app.state.mercadopago = mercadopago

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}


@pytest.fixture
def sio():
    return FakeSocketServer()
