import os
import socket
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]

# Prefer repo sources over any installed package.
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from rvval.exceptions import ProviderUnavailable  # noqa: E402
from rvval.providers.http import HttpResult, ProviderHttpClient  # noqa: E402


@pytest.fixture(autouse=True)
def block_network(monkeypatch):
    if os.getenv("LIVE") == "1":
        return

    real_connect = socket.socket.connect

    def guarded_connect(sock, address):
        host = address[0] if isinstance(address, tuple) else address
        if host not in ("127.0.0.1", "localhost"):
            raise RuntimeError("Network access blocked in tests")
        return real_connect(sock, address)

    monkeypatch.setattr(socket.socket, "connect", guarded_connect)


@dataclass
class Route:
    url_part: str
    data: Any = None
    status: int = 200
    match: Dict[str, Any] = field(default_factory=dict)
    error: Optional[Exception] = None
    stage: Optional[str] = None

    def accepts(self, url: str, params: Dict[str, Any], stage: str) -> bool:
        if self.url_part not in url or (self.stage and self.stage != stage):
            return False
        return all(str(params.get(key)) == str(value) for key, value in self.match.items())


@dataclass
class Call:
    url: str
    params: Dict[str, Any]
    headers: Dict[str, str]
    provider: str
    stage: str


class FakeHttp(ProviderHttpClient):
    """
    In-memory transport. Routes match on a URL substring plus optional
    exact query parameters; the first matching route answers and anything
    unrouted is a 404.
    """

    def __init__(self):
        super().__init__(timeout_seconds=1.0)
        self.routes: List[Route] = []
        self.calls: List[Call] = []

    def add(
        self,
        url_part: str,
        data: Any = None,
        status: int = 200,
        error: Optional[Exception] = None,
        stage: Optional[str] = None,
        **match,
    ) -> "FakeHttp":
        self.routes.append(Route(url_part, data, status, match, error, stage))
        return self

    async def initialize(self) -> None:
        return None

    async def cleanup(self) -> None:
        return None

    async def request_json(self, url, *, params=None, headers=None, provider, stage) -> HttpResult:
        params = dict(params or {})
        self.calls.append(Call(url, params, dict(headers or {}), provider, stage))
        for route in self.routes:
            if route.accepts(url, params, stage):
                if route.error is not None:
                    raise ProviderUnavailable(provider, stage, str(route.error))
                return HttpResult(ok=200 <= route.status < 300, status=route.status, data=route.data)
        return HttpResult(ok=False, status=404)

    def stages(self) -> List[str]:
        return [call.stage for call in self.calls]

    def calls_to(self, url_part: str) -> List[Call]:
        return [call for call in self.calls if url_part in call.url]


class FakeLLM:
    """Generative model stand-in returning canned text, or raising."""

    def __init__(self, response: Any = '{"index": 0}'):
        self.response = response
        self.prompts: List[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if isinstance(self.response, Exception):
            raise self.response
        if callable(self.response):
            return self.response(prompt)
        return self.response


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MemorySettingsStore:
    """Settings store kept in a dict."""

    def __init__(self, values: Optional[Dict[str, str]] = None):
        self.values = dict(values or {})
        self.reads = 0

    async def get_value(self, key):
        self.reads += 1
        return self.values.get(key)

    async def set_value(self, key, value):
        self.values[key] = value
        return datetime(2024, 1, 1)

    async def get_updated_at(self, key):
        return datetime(2024, 1, 1) if key in self.values else None

    async def delete_value(self, key):
        return self.values.pop(key, None) is not None


@pytest.fixture
def http() -> FakeHttp:
    return FakeHttp()
