import pytest
from fastapi.testclient import TestClient

from msgboard.config import Settings
from msgboard.context import AppContext
from msgboard.main import create_app

ACCESS_KEY = "testsecret"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        ACCESS_KEY=ACCESS_KEY,
        DATABASE_URL=f"sqlite:///{tmp_path / 'messages.db'}",
    )


@pytest.fixture
def context(settings):
    return AppContext(settings)


@pytest.fixture
def app(context):
    return create_app(context)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
