"""Shared fixtures: in-memory SQLite, keyword factory and an API client."""
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import keyscope.models  # noqa: F401  registers every table on Base.metadata
from keyscope.config import get_settings
from keyscope.database import Base, get_db
from keyscope.dependencies import get_redis
from keyscope.main import app
from keyscope.models import KeywordRecord
from keyscope.schemas import KeywordType
from keyscope.services.rate_limit import InMemoryBucketStore, TokenBucketLimiter
from keyscope.services.uploads import TYPE_FLAGS

settings = get_settings()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(bind=engine, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def make_keyword(db_session):
    """Insert one keyword row and return it."""
    def _make(keyword, search_volume=0, upload_period="2025-05", keyword_type="regular",
              is_active=True, **fields):
        is_hpk, is_rk = TYPE_FLAGS[KeywordType(keyword_type)]
        record = KeywordRecord(
            keyword=keyword,
            search_volume=search_volume,
            upload_period=upload_period,
            is_hpk=is_hpk,
            is_rk=is_rk,
            is_active=is_active,
            available_products=fields.pop("available_products", 0),
            created_at=fields.pop("created_at", datetime(2025, 6, 1, 12, 0)),
            **fields,
        )
        db_session.add(record)
        db_session.commit()
        return record
    return _make


class FakeRedis:
    """The handful of redis.asyncio calls the API makes."""

    def __init__(self):
        self.store = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value

    async def incr(self, key):
        value = int(self.store.get(key, "0")) + 1
        self.store[key] = str(value)
        return value


class AsyncSessionAdapter:
    """Just enough of AsyncSession for the routers, backed by a sync Session."""

    def __init__(self, session):
        self.session = session

    async def run_sync(self, fn, *args, **kwargs):
        return fn(self.session, *args, **kwargs)

    async def execute(self, statement):
        return self.session.execute(statement)

    async def get(self, model, ident):
        return self.session.get(model, ident)

    def add(self, instance):
        self.session.add(instance)

    async def commit(self):
        self.session.commit()

    async def close(self):
        pass


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def client(db_session, fake_redis):
    async def _get_db():
        yield AsyncSessionAdapter(db_session)

    async def _get_redis():
        return fake_redis

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_redis] = _get_redis
    app.state.rate_limiter = TokenBucketLimiter(InMemoryBucketStore())
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.rate_limiter = None


def make_token(role="admin", sub="user-1", **claims):
    return jwt.encode({"sub": sub, "role": role, **claims}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {make_token('admin', sub='admin-1')}"}


@pytest.fixture
def user_headers():
    return {"Authorization": f"Bearer {make_token('user', sub='user-7')}"}
