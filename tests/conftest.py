"""
Pytest configuration and shared fixtures for the account portal tests.

The authorization API is replaced by ``FakeApi``: an ``httpx.MockTransport``
handler that answers from a table of canned responses and records every
request the portal makes.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import parse_qs

import httpx
import pytest
from fastapi.testclient import TestClient

from src.portal.api_client import ApiClient, build_http_client, get_api_client
from src.portal.config import PORTAL_CONFIG
from src.portal.main import app


@dataclass
class RecordedCall:
    """One request the portal sent to the API."""
    method: str
    path: str
    request: httpx.Request

    @property
    def params(self) -> Dict[str, str]:
        return dict(self.request.url.params)

    @property
    def json(self) -> Any:
        return json.loads(self.request.content) if self.request.content else None

    @property
    def form(self) -> Dict[str, str]:
        parsed = parse_qs(self.request.content.decode())
        return {key: values[0] for key, values in parsed.items()}

    @property
    def bearer(self) -> Optional[str]:
        header = self.request.headers.get("authorization", "")
        return header[len("Bearer "):] if header.startswith("Bearer ") else None


class FakeApi:
    """
    Canned authorization API.

    Unknown routes answer 404 so a missing stub shows up as a failed call.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Union[Tuple[int, Any], Exception]] = {}
        self.calls: List[RecordedCall] = []

    def add(self, method: str, path: str, status_code: int = 200, json: Any = None) -> None:
        self.routes[(method.upper(), path)] = (status_code, json)

    def fail(self, method: str, path: str) -> None:
        """Make ``path`` fail at the transport level."""
        self.routes[(method.upper(), path)] = httpx.ConnectError("connection refused")

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        prefix = PORTAL_CONFIG["api_prefix"]
        if path.startswith(prefix):
            path = path[len(prefix):]
        self.calls.append(RecordedCall(request.method, path, request))

        route = self.routes.get((request.method, path))
        if route is None:
            return httpx.Response(404, json={"detail": "Not Found"})
        if isinstance(route, Exception):
            raise route
        status_code, body = route
        if body is None:
            return httpx.Response(status_code)
        return httpx.Response(status_code, json=body)

    def called(self, method: str, path: str) -> List[RecordedCall]:
        return [call for call in self.calls if call.method == method.upper() and call.path == path]


@pytest.fixture
def fake_api():
    """Route every API call made by the app to a ``FakeApi``."""
    api = FakeApi()

    async def override_api_client():
        async with build_http_client(transport=httpx.MockTransport(api.handler)) as http:
            yield ApiClient(http)

    app.dependency_overrides[get_api_client] = override_api_client
    yield api
    app.dependency_overrides.pop(get_api_client, None)


@pytest.fixture
def client(fake_api) -> TestClient:
    """Portal test client; redirects are returned, not followed."""
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def user_payload() -> Dict[str, Any]:
    return {
        "id": "65b1c0ffee",
        "email": "alice@example.com",
        "full_name": "Alice Smith",
        "is_active": True,
        "is_superuser": False,
        "is_email_verified": True,
        "phone": "+14155550100",
        "role": "user",
    }


@pytest.fixture
def developer_payload(user_payload) -> Dict[str, Any]:
    return {**user_payload, "role": "developer"}


@pytest.fixture
def signed_in(client, fake_api, user_payload) -> TestClient:
    """A client holding a valid token for a regular user."""
    client.cookies.set("accessToken", "user-token")
    fake_api.add("GET", "/users/me", json=user_payload)
    return client


@pytest.fixture
def developer(client, fake_api, developer_payload) -> TestClient:
    """A client holding a valid token for a developer."""
    client.cookies.set("accessToken", "dev-token")
    fake_api.add("GET", "/users/me", json=developer_payload)
    return client


@pytest.fixture(autouse=True)
def disable_logging():
    """Disable logging during tests to reduce noise."""
    import logging
    logging.disable(logging.CRITICAL)
    yield
    logging.disable(logging.NOTSET)


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "security: marks tests as security-focused tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        if "security" in item.nodeid or "session" in item.nodeid:
            item.add_marker(pytest.mark.security)
        else:
            item.add_marker(pytest.mark.unit)


# Custom assertions for portal testing
def assert_redirects_to_login(response, return_to: Optional[str] = None, error: Optional[str] = None):
    """Assert a redirect to the sign-in page with the given query values."""
    assert response.status_code == 303
    location = httpx.URL(response.headers["location"])
    assert location.path == "/login"
    if return_to is not None:
        assert location.params.get("return_to") == return_to
    if error is not None:
        assert location.params.get("error") == error


def assert_token_cookie_cleared(response):
    """Assert the response deletes the ``accessToken`` cookie."""
    cookies = [h for h in response.headers.get_list("set-cookie") if h.startswith("accessToken=")]
    assert cookies, "accessToken cookie was not touched"
    assert any("max-age=0" in c.lower() for c in cookies)


def assert_secure_headers_present(response_headers):
    """Assert that security headers are present in response."""
    headers_lower = {k.lower(): v for k, v in response_headers.items()}
    for header in ("x-content-type-options", "x-frame-options", "referrer-policy"):
        assert header in headers_lower, f"{header} missing from {list(headers_lower)}"


pytest.assert_redirects_to_login = assert_redirects_to_login
pytest.assert_token_cookie_cleared = assert_token_cookie_cleared
pytest.assert_secure_headers_present = assert_secure_headers_present
