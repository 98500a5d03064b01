import sys
import time
import types
from fastapi import FastAPI, Depends, Request
from fastapi.testclient import TestClient

from maroon_backend.utils.rate_limit import optional_rate_limit, rate_limit_health_info


def _make_app(times=2, seconds=60):
    app = FastAPI()

    @app.post("/sessions", dependencies=[Depends(optional_rate_limit(times, seconds))])
    def sessions():
        return {"ok": True}

    @app.post("/pay", dependencies=[Depends(optional_rate_limit(times, seconds))])
    def pay():
        return {"ok": True}

    @app.get("/rl_info")
    def rl_info(request: Request):
        return rate_limit_health_info(request)

    return app


def test_rate_limit_fallback_blocks_after_limit(monkeypatch):
    monkeypatch.setenv("LOCAL_RATE_LIMIT_FALLBACK", "1")
    client = TestClient(_make_app(times=2, seconds=60))

    assert client.post("/sessions").status_code == 200
    assert client.post("/sessions").status_code == 200
    assert client.post("/sessions").status_code == 429


def test_rate_limit_is_per_path_and_customer(monkeypatch):
    monkeypatch.setenv("LOCAL_RATE_LIMIT_FALLBACK", "1")
    app = _make_app(times=1, seconds=60)
    client = TestClient(app)

    # Bearer client A: 1 OK puis 429 sur /pay, /sessions indépendant
    headers_a = {"Authorization": "Bearer customer-a"}
    assert client.post("/pay", headers=headers_a).status_code == 200
    assert client.post("/pay", headers=headers_a).status_code == 429
    assert client.post("/sessions", headers=headers_a).status_code == 200

    # Client B (cookie) a son propre compteur
    client.cookies.set("sb_access", "customer-b")
    assert client.post("/pay").status_code == 200


def test_rate_limit_resets_after_window(monkeypatch):
    monkeypatch.setenv("LOCAL_RATE_LIMIT_FALLBACK", "1")
    client = TestClient(_make_app(times=1, seconds=1))

    assert client.post("/pay").status_code == 200
    assert client.post("/pay").status_code == 429
    time.sleep(1.1)
    assert client.post("/pay").status_code == 200


def test_rate_limit_disabled_flag_bypasses_limit(monkeypatch):
    monkeypatch.delenv("LOCAL_RATE_LIMIT_FALLBACK", raising=False)
    app = _make_app(times=1, seconds=60)
    app.state.rate_limit_enabled = False
    client = TestClient(app)

    for _ in range(3):
        assert client.post("/pay").status_code == 200


def test_rate_limit_backend_error_does_not_block(monkeypatch):
    monkeypatch.delenv("LOCAL_RATE_LIMIT_FALLBACK", raising=False)

    class BrokenLimiter:
        def __init__(self, **kwargs):
            pass

        async def __call__(self, request, response):
            raise ConnectionError("redis down")

    dummy = types.ModuleType("fastapi_limiter.depends")
    dummy.RateLimiter = BrokenLimiter
    monkeypatch.setitem(sys.modules, "fastapi_limiter.depends", dummy)

    client = TestClient(_make_app(times=1, seconds=60))
    assert client.post("/pay").status_code == 200
    assert client.post("/pay").status_code == 200


def test_rate_limit_health_info(monkeypatch):
    monkeypatch.delenv("LOCAL_RATE_LIMIT_FALLBACK", raising=False)
    app = _make_app()
    app.state.rate_limit_enabled = True
    client = TestClient(app)

    # Limiter non initialisé -> ready False, backend None
    not_ready = types.ModuleType("fastapi_limiter")

    class IdleLimiter:
        redis = None

    not_ready.FastAPILimiter = IdleLimiter
    monkeypatch.setitem(sys.modules, "fastapi_limiter", not_ready)
    info = client.get("/rl_info").json()
    assert info["enabled"] is True
    assert info["ready"] is False
    assert info["backend"] is None

    # Limiter prêt avec une URL redis
    ready = types.ModuleType("fastapi_limiter")

    class ReadyLimiter:
        redis = object()

    ready.FastAPILimiter = ReadyLimiter
    monkeypatch.setitem(sys.modules, "fastapi_limiter", ready)
    monkeypatch.setattr("maroon_backend.utils.rate_limit.config.RATE_LIMIT_REDIS_URL", "redis://localhost:6379/0")
    info2 = client.get("/rl_info").json()
    assert info2["ready"] is True
    assert info2["backend"] == "redis"
    assert info2["redis"] == {"scheme": "redis", "host": "localhost", "port": 6379}


def test_rate_limit_health_info_memory_backend(monkeypatch):
    monkeypatch.setenv("LOCAL_RATE_LIMIT_FALLBACK", "1")
    client = TestClient(_make_app())
    assert client.get("/rl_info").json()["backend"] == "memory"
