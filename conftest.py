import mongomock
import pytest
from fastapi.testclient import TestClient

from database import Repositories, get_repositories


@pytest.fixture
def db():
    # Fresh in-memory database per test
    return mongomock.MongoClient().local_library


@pytest.fixture
def repos(db):
    return Repositories(db)


@pytest.fixture
def client(repos):
    from main import app

    app.dependency_overrides[get_repositories] = lambda: repos
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
