import types
from unittest.mock import MagicMock
from fastapi import FastAPI, Depends
from fastapi.testclient import TestClient

from maroon_backend.utils import security as security_mod
from maroon_backend.utils.security import COOKIE_NAME, get_user_from_token, require_user


def _make_app():
    app = FastAPI()

    @app.get("/me")
    def me(user=Depends(require_user)):
        return user

    return app


def test_get_user_from_token_normalizes_object(monkeypatch):
    fake_user = types.SimpleNamespace(id="u1", email="a@b", user_metadata={"full_name": "A"})
    sb = MagicMock()
    sb.auth.get_user.return_value = types.SimpleNamespace(user=fake_user)
    monkeypatch.setattr("maroon_backend.infra.supabase_client.get_supabase", lambda: sb)

    user = get_user_from_token("tok-1")

    assert user == {"id": "u1", "email": "a@b", "user_metadata": {"full_name": "A"}}
    sb.auth.get_user.assert_called_once_with("tok-1")


def test_get_current_user_bearer_success(monkeypatch):
    monkeypatch.setattr(security_mod, "get_user_from_token", lambda token: {"id": "u1", "token": token})
    client = TestClient(_make_app())

    r = client.get("/me", headers={"Authorization": "Bearer tok-123"})

    assert r.status_code == 200
    assert r.json() == {"id": "u1", "token": "tok-123"}


def test_get_current_user_cookie_fallback(monkeypatch):
    monkeypatch.setattr(security_mod, "get_user_from_token", lambda token: {"id": "u1", "token": token})
    client = TestClient(_make_app())
    client.cookies.set(COOKIE_NAME, "cookie-token")

    r = client.get("/me")

    assert r.status_code == 200
    assert r.json()["token"] == "cookie-token"


def test_get_current_user_missing_token_401():
    client = TestClient(_make_app())
    r = client.get("/me")
    assert r.status_code == 401
    assert "Non authentifié" in r.text


def test_get_current_user_invalid_token_401(monkeypatch):
    def _boom(token):
        raise RuntimeError("invalid JWT")

    monkeypatch.setattr(security_mod, "get_user_from_token", _boom)
    client = TestClient(_make_app())

    r = client.get("/me", headers={"Authorization": "Bearer expired"})

    assert r.status_code == 401
    assert "Session expirée" in r.text


def test_get_current_user_missing_id_401(monkeypatch):
    monkeypatch.setattr(security_mod, "get_user_from_token", lambda token: {"email": "x@y"})
    client = TestClient(_make_app())

    r = client.get("/me", headers={"Authorization": "Bearer tok"})

    assert r.status_code == 401
    assert "Session expirée" in r.text
