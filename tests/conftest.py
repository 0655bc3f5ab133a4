# link-analytics-service/tests/conftest.py
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import fakeredis
import pytest
import pytest_asyncio
from auth import issue_tokens, pwd_context
from beanie import init_beanie
from cache import get_redis_db
from httpx import ASGITransport, AsyncClient
from main import app
from models import DOCUMENT_MODELS, Link, Redirect, User, utcnow
from mongomock_motor import AsyncMongoMockClient

TEST_MONGO_DB = "test_links_db"
TEST_APP_URL = "http://short.test"
TEST_PASSWORD = "correct-horse-battery"


# Override environment variables for testing
@pytest.fixture(autouse=True)
def set_test_env_vars(monkeypatch):
    monkeypatch.setenv("MONGO_DB", TEST_MONGO_DB)
    monkeypatch.setenv("RABBITMQ_HOST", "mock_rabbitmq_host")
    monkeypatch.setenv("APP_URL", TEST_APP_URL)
    monkeypatch.setenv("APP_DEBUG", "false")
    monkeypatch.setenv("GEO_ENABLED", "true")


@pytest.fixture(autouse=True)
def publishers():
    """
    Keeps the redirect path away from RabbitMQ and the geolocation services.
    """
    with patch("recorder.publish_click_job") as publish, patch(
        "recorder.broadcast_click"
    ) as broadcast, patch(
        "recorder.lookup_country", new=AsyncMock(return_value="Local/Private")
    ) as lookup:
        yield SimpleNamespace(publish=publish, broadcast=broadcast, lookup=lookup)


# In-memory MongoDB, fresh for every test
@pytest_asyncio.fixture(scope="function")
async def db():
    client = AsyncMongoMockClient()
    database = client.get_database(TEST_MONGO_DB)
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    yield database


@pytest.fixture(scope="function")
def redis_client():
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    client.close()


@pytest_asyncio.fixture(scope="function")
async def client(db, redis_client):
    def override_get_redis_db():
        yield redis_client

    app.dependency_overrides[get_redis_db] = override_get_redis_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _create_user(name: str, email: str) -> User:
    user = User(name=name, email=email, hashed_password=pwd_context.hash(TEST_PASSWORD))
    await user.insert()
    return user


@pytest_asyncio.fixture
async def user(db):
    return await _create_user("Alice", "alice@example.com")


@pytest_asyncio.fixture
async def other_user(db):
    return await _create_user("Bob", "bob@example.com")


@pytest.fixture
def auth_headers(user, redis_client):
    access_token, _ = issue_tokens(redis_client, user.id)
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def other_auth_headers(other_user, redis_client):
    access_token, _ = issue_tokens(redis_client, other_user.id)
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def make_link(db):
    async def _make_link(owner: User, slug: str, target: str = "https://example.com/", **fields) -> Link:
        link = Link(slug=slug, target=target, user_id=owner.id, **fields)
        await link.insert()
        return link

    return _make_link


@pytest.fixture
def make_hit(db):
    async def _make_hit(link: Link, created_at=None, **fields) -> Redirect:
        hit = Redirect(link_id=link.id, created_at=created_at or utcnow(), **fields)
        await hit.insert()
        return hit

    return _make_hit


@pytest.fixture
def user_password():
    return TEST_PASSWORD
