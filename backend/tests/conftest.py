"""Shared fixtures: settings, in-memory options and a scripted httpx client."""
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
import pytest

from ytfield.config import Settings
from ytfield.services.catalog_service import YouTubeCatalogService
from ytfield.services.discovery_service import VideoDiscoveryPoller
from ytfield.services.oauth_service import OAuthSessionManager
from ytfield.services.option_store import InMemoryOptionStore
from ytfield.services.token_store import TokenStore
from ytfield.services.upload_service import ResumableUploadService


@dataclass
class RecordedRequest:
    method: str
    url: str
    params: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    json: Any = None
    data: Any = None
    content: Optional[bytes] = None


class _ScriptedClient:
    def __init__(self, http: "FakeHTTP", **kwargs):
        self._http = http
        self.kwargs = kwargs

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def request(self, method: str, url: str, **kwargs):
        return self._http.dispatch(method, url, **kwargs)

    async def get(self, url: str, **kwargs):
        return self._http.dispatch("GET", url, **kwargs)

    async def post(self, url: str, **kwargs):
        return self._http.dispatch("POST", url, **kwargs)

    async def put(self, url: str, **kwargs):
        return self._http.dispatch("PUT", url, **kwargs)

    async def delete(self, url: str, **kwargs):
        return self._http.dispatch("DELETE", url, **kwargs)


class FakeHTTP:
    """Stands in for httpx.AsyncClient and replays scripted outcomes.

    Each route holds a queue of outcomes (a response, an exception to raise,
    or a callable taking the recorded request). The last outcome repeats.
    """

    def __init__(self):
        self.routes: List[tuple] = []
        self.requests: List[RecordedRequest] = []
        self.client_kwargs: List[Dict[str, Any]] = []

    def client(self, **kwargs) -> _ScriptedClient:
        self.client_kwargs.append(kwargs)
        return _ScriptedClient(self, **kwargs)

    def add(self, method: str, url: str, *outcomes) -> None:
        self.routes.append((method.upper(), url, list(outcomes)))

    @staticmethod
    def json_response(status_code: int, payload: Any = None, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        if payload is None:
            return httpx.Response(status_code, headers=headers)
        return httpx.Response(status_code, json=payload, headers=headers)

    @staticmethod
    def raw_response(status_code: int, content: bytes = b"", headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        return httpx.Response(status_code, content=content, headers=headers)

    def calls(self, method: Optional[str] = None, url: Optional[str] = None) -> List[RecordedRequest]:
        return [
            request
            for request in self.requests
            if (method is None or request.method == method.upper())
            and (url is None or request.url.split("?")[0] == url.split("?")[0])
        ]

    def dispatch(self, method: str, url: str, **kwargs) -> httpx.Response:
        request = RecordedRequest(
            method=method.upper(),
            url=str(url),
            params=kwargs.get("params"),
            headers=dict(kwargs.get("headers") or {}),
            json=kwargs.get("json"),
            data=kwargs.get("data"),
            content=kwargs.get("content"),
        )
        self.requests.append(request)

        base_url = request.url.split("?")[0]
        for route_method, route_url, outcomes in self.routes:
            if route_method != request.method or route_url.split("?")[0] != base_url:
                continue
            outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
            if isinstance(outcome, BaseException):
                raise outcome
            if callable(outcome):
                return outcome(request)
            return outcome

        raise AssertionError(f"Unexpected request: {request.method} {request.url}")


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        google_oauth_client_id="test-client-id",
        google_oauth_client_secret="test-client-secret",
        google_oauth_redirect_uri="http://localhost:8000/api/oauth/callback",
        database_url="sqlite+aiosqlite:///:memory:",
        upload_chunk_size=1024 * 1024,
        video_id_retrieval_initial_sleep=0,
        video_id_retrieval_sleep_interval=0,
    )


@pytest.fixture
def fake_http(monkeypatch):
    http = FakeHTTP()
    monkeypatch.setattr(httpx, "AsyncClient", http.client)
    return http


@pytest.fixture
def token_factory():
    def _make(**overrides) -> Dict[str, Any]:
        record = {
            "access_token": "ya29.valid-access-token",
            "token_type": "Bearer",
            "refresh_token": "1//refresh-token-value",
            "expires_in": 3599,
            "created": int(time.time()),
            "scope": "https://www.googleapis.com/auth/youtube.upload",
        }
        record.update(overrides)
        return {key: value for key, value in record.items() if value is not None}

    return _make


@pytest.fixture
def option_store():
    return InMemoryOptionStore()


@pytest.fixture
def token_store(option_store, settings):
    return TokenStore(option_store, settings.token_option_key, retry_backoff=0)


@pytest.fixture
def stored_token(option_store, settings, token_factory):
    """A valid, unexpired token already in the store."""
    record = token_factory()
    option_store.values[settings.token_option_key] = record
    return record


@pytest.fixture
def oauth(token_store, settings):
    return OAuthSessionManager(token_store, settings)


@pytest.fixture
def catalog(oauth, settings):
    return YouTubeCatalogService(oauth, settings)


@pytest.fixture
def poller(catalog):
    async def no_sleep(_seconds):
        return None

    return VideoDiscoveryPoller(catalog, max_attempts=3, initial_delay=0, interval=0, sleep=no_sleep)


@pytest.fixture
def uploads(oauth, settings, poller):
    return ResumableUploadService(oauth, settings, poller)
