# Shared pytest fixtures: an in-memory MongoDB and the app wired to it
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from mongomock_motor import AsyncMongoMockClient

from main import app, get_db, hash_password
from utils.store import QuestionStore, UserStore, ensure_indexes

@pytest_asyncio.fixture(scope="function")
async def db():
    """Fresh mock database with the production indexes."""
    database = AsyncMongoMockClient()["fastqa_test"]
    await ensure_indexes(database)
    yield database

@pytest.fixture
def question_store(db):
    return QuestionStore(db)

@pytest.fixture
def user_store(db):
    return UserStore(db)

@pytest_asyncio.fixture(scope="function")
async def client(db):
    """HTTP client talking to the app in-process."""
    app.dependency_overrides[get_db] = lambda: db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()

@pytest_asyncio.fixture
async def make_user(user_store):
    """Create users directly in the store, returning their documents."""
    async def _make_user(username: str, password: str = "secret"):
        return await user_store.create_user(username, f"{username}@fastqa.io", hash_password(password))
    return _make_user

@pytest_asyncio.fixture
async def register(client):
    """Register through the API, returning (auth headers, user)."""
    async def _register(username: str, password: str = "secret"):
        response = await client.post("/api/auth/register", json={
            "username": username,
            "email": f"{username}@fastqa.io",
            "password": password,
        })
        assert response.status_code == 201, response.text
        body = response.json()
        return {"Authorization": f"Bearer {body['token']}"}, body["user"]
    return _register
