import pytest
from fastapi.testclient import TestClient

from auth_service import MemoryUserDirectory
from fallback_store import FallbackStore
from main import create_app
from schemas import Profile
from tests.fakes import fake_backend, unconfigured_backend

ADMIN_KEY = "TIDE_GUARD_2024"


@pytest.fixture(autouse=True)
def admin_key(monkeypatch):
    monkeypatch.setattr("config.ADMIN_SECRET_KEY", ADMIN_KEY)
    return ADMIN_KEY


@pytest.fixture
def fallback():
    return FallbackStore(admin_profile=False)


@pytest.fixture
def backend():
    return fake_backend()


@pytest.fixture
def directory():
    return MemoryUserDirectory()


@pytest.fixture
def make_client(directory):
    def make(backend=None, fallback=None):
        app = create_app(
            backend=backend if backend is not None else unconfigured_backend(),
            fallback=fallback if fallback is not None else FallbackStore(admin_profile=False),
            directory=directory,
        )
        return TestClient(app, follow_redirects=False)
    return make


@pytest.fixture
def client(make_client, backend, fallback):
    return make_client(backend=backend, fallback=fallback)


def signup(client, email="mira@example.com", password="secret123", full_name="Mira", role="community",
           admin_secret_key=None):
    body = {"email": email, "password": password, "full_name": full_name, "role": role}
    if admin_secret_key is not None:
        body["admin_secret_key"] = admin_secret_key
    return client.post("/auth/signup", json=body)


def auth_header(response):
    return {"Authorization": f"Bearer {response.json()['session']['access_token']}"}


@pytest.fixture
def community(client):
    return auth_header(signup(client))


@pytest.fixture
def authority(client):
    return auth_header(signup(client, email="ranger@example.com", full_name="Ranger", role="authority",
                              admin_secret_key=ADMIN_KEY))


def profile(id, role="community", points=0, full_name=None):
    return Profile(id=id, role=role, points=points, full_name=full_name)
