import os

# Pas de Redis en tests: le lifespan ne tente pas d'initialiser FastAPILimiter
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

import pytest
from typing import Generator, Dict, Any
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from maroon_backend.app import app as fastapi_app
from maroon_backend.checkout.sessions import store
from maroon_backend.utils.security import require_user

# tests/ est ajouté au sys.path par pytest (conftest sans __init__.py)
from checkout_factories import TEST_CUSTOMER_ID


# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "/tests/unit/" in nodeid or nodeid.startswith("tests/unit/"):
            item.add_marker(pytest.mark.unit)
        elif "/tests/integration/" in nodeid or nodeid.startswith("tests/integration/"):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(scope="session")
def app():
    return fastapi_app


@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c


# Simuler un client authentifié pour les endpoints protégés
@pytest.fixture(autouse=True)
def _override_require_user(app):
    fake_user: Dict[str, Any] = {
        "id": TEST_CUSTOMER_ID,
        "email": "test@example.com",
        "user_metadata": {"full_name": "Test User"},
    }
    app.dependency_overrides[require_user] = lambda: fake_user
    try:
        yield
    finally:
        app.dependency_overrides.pop(require_user, None)


@pytest.fixture(autouse=True)
def _clear_sessions():
    store.clear()
    yield
    store.clear()


# Aucun test ne doit toucher une vraie base Supabase
@pytest.fixture(scope="function", autouse=True)
def mock_db_dependency(monkeypatch):
    monkeypatch.setattr("maroon_backend.infra.supabase_client.get_supabase", lambda: MagicMock())
    monkeypatch.setattr("maroon_backend.infra.supabase_client.get_service_supabase", lambda: MagicMock())
