import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List

import httpx
import pytest

# Sessions stay in process memory during tests
os.environ.setdefault("REDIS_ENABLED", "false")

# Add the backend directory so `discom_dashboard` imports resolve during tests
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.append(str(BACKEND_DIR))

from discom_dashboard.core import store  # noqa: E402
from discom_dashboard.core.config import settings  # noqa: E402
from discom_dashboard.services.api_client import DashboardApiClient  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def memory_session_store(monkeypatch):
    monkeypatch.setattr(settings, "REDIS_ENABLED", False)
    store._memory_store.clear()
    yield
    store._memory_store.clear()


class FakeUpstream:
    """Canned upstream API keyed by request path; unknown paths answer 404."""

    def __init__(self) -> None:
        self.routes: Dict[str, Callable[[httpx.Request], Any]] = {}
        self.requests: List[httpx.Request] = []

    def json(self, path: str, body: Any, status_code: int = 200) -> None:
        self.routes[path] = lambda request: httpx.Response(status_code, json=body)

    def handler(self, path: str, handler: Callable[[httpx.Request], Any]) -> None:
        self.routes[path] = handler

    def paths(self) -> List[str]:
        return [request.url.path for request in self.requests]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"detail": "Not Found"})
        response = route(request)
        if not isinstance(response, httpx.Response):
            response = await response
        return response

    def client(self) -> DashboardApiClient:
        return DashboardApiClient("http://upstream.test", transport=httpx.MockTransport(self))


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()
