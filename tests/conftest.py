"""Shared pytest fixtures for access log tests.

Each test builds its own FastAPI app so that every middleware instance,
template and output sink is isolated from the others.
"""

import threading

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from accesslog.middleware.access_log import AccessLogMiddleware
from accesslog.services.resolver import Exchange
from accesslog.services.timestamp import stop_scheduler


class LineCollector:
    """Output sink that records every write() call separately."""

    def __init__(self):
        self.writes = []
        self._lock = threading.Lock()

    def write(self, data):
        with self._lock:
            self.writes.append(bytes(data))
        return len(data)

    @property
    def text(self) -> str:
        return b"".join(self.writes).decode("utf-8")


def build_app() -> FastAPI:
    """Small app exercising the fields the access log can show."""
    app = FastAPI()
    app.state.calls = 0

    @app.get("/ping")
    async def ping(request: Request):
        request.app.state.calls += 1
        return {"ok": True}

    @app.get("/test/{param}/suffix")
    async def parameterized(param: str):
        return {"param": param}

    @app.post("/submit")
    async def submit(request: Request):
        body = await request.body()
        return {"received": len(body)}

    @app.post("/ignore-body")
    async def ignore_body():
        return {"ok": True}

    @app.get("/fail")
    async def fail():
        raise RuntimeError("handler exploded")

    @app.get("/attached")
    async def attached(request: Request):
        request.state.error = ValueError("quota exceeded")
        return {"ok": True}

    return app


def make_scope(path="/users/42", method="GET", headers=None, query_string=b"",
               client=("10.0.0.7", 51000), http_version="1.1", scheme="http", **extra):
    """Minimal ASGI HTTP scope."""
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "raw_path": path.encode("latin-1"),
        "root_path": "",
        "query_string": query_string,
        "headers": [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in (headers or {}).items()
        ],
        "client": client,
        "server": ("testserver", 80),
        "scheme": scheme,
        "http_version": http_version,
    }
    scope.update(extra)
    return scope


@pytest.fixture(scope="session", autouse=True)
def _shutdown_scheduler():
    yield
    stop_scheduler()


@pytest.fixture
def sink():
    return LineCollector()


@pytest.fixture
def make_client(sink):
    """Factory: TestClient for ``build_app()`` wrapped in the access log."""
    def _make(raise_server_exceptions=True, **options):
        options.setdefault("output", sink)
        app = build_app()
        app.add_middleware(AccessLogMiddleware, **options)
        return TestClient(app, raise_server_exceptions=raise_server_exceptions)
    return _make


@pytest.fixture
def make_exchange():
    """Factory: Exchange around a hand-built request scope."""
    def _make(status_code=0, **scope_kwargs):
        return Exchange(Request(make_scope(**scope_kwargs)), status_code=status_code)
    return _make
