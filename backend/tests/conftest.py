"""
Gatehouse Backend: Test Configuration (conftest.py)
===================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.
When:  Environment overrides run at import, before any gatehouse module loads.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── clock:         FakeClock shared by every store of the app under test
    ├── make_settings: Settings factory with test-friendly defaults
    ├── app:           create_app(...) wired to `clock`
    ├── test_client:   HTTPX AsyncClient over ASGITransport
    ├── register:      Registers a user and returns their Session
    ├── login:         Posts credentials, returns the response
    └── as_session:    Turns a register/login response into a Session
"""

import os

# Override settings for testing BEFORE any app imports
# Why: gatehouse.main builds a module-level app, which refuses to start without a secret
os.environ["JWT_SECRET"] = "test-secret-0123456789abcdef0123456789abcdef"
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce noise during tests
os.environ["PASSWORD_HASH_ITERATIONS"] = "1000"  # Fast hashing in tests

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from gatehouse.config import Settings
from gatehouse.main import create_app
from gatehouse.middleware.csrf import CSRF_COOKIE_NAME, CSRF_HEADER_NAME

TEST_SECRET = os.environ["JWT_SECRET"]
DEFAULT_PASSWORD = "correct-horse-battery"


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class Session:
    """What a client holds after register/login."""

    token: str
    csrf_token: str
    cookie_key: str
    user: Dict[str, Any] = field(default_factory=dict)

    def headers(self, csrf: bool = True, auth: bool = True) -> Dict[str, str]:
        headers = {}
        if auth:
            headers["Authorization"] = f"Bearer {self.token}"
        if csrf:
            headers[CSRF_HEADER_NAME] = self.csrf_token
            headers["Cookie"] = f"{CSRF_COOKIE_NAME}={self.cookie_key}"
        return headers


def csrf_cookie_from(response) -> Optional[str]:
    """Value of the csrf-token Set-Cookie header, if the response set one."""
    for header in response.headers.get_list("set-cookie"):
        name, _, rest = header.partition("=")
        if name.strip() == CSRF_COOKIE_NAME:
            return rest.split(";", 1)[0]
    return None


def session_from(response) -> Session:
    body = response.json()
    return Session(
        token=body["token"],
        csrf_token=body["csrfToken"],
        cookie_key=csrf_cookie_from(response),
        user=body["user"],
    )


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures (created fresh for each test)
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_settings():
    """
    Settings factory.

    Usage:
        app = create_app(make_settings(auth_rate_limit_requests=2))
    """

    def _make(**overrides) -> Settings:
        values = {
            "environment": "test",
            "jwt_secret": TEST_SECRET,
            "password_hash_iterations": 1000,
            "log_level": "WARNING",
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def app(make_settings, clock):
    return create_app(make_settings(), clock=clock)


@pytest_asyncio.fixture
async def test_client(app):
    """
    Provides an async HTTP test client for endpoint testing.

    What:    HTTPX AsyncClient configured to talk to a fresh app.
    How:     Uses ASGITransport to route requests directly to the app.
             Requests arrive from 127.0.0.1.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def register():
    """
    Returns an async helper that registers a user and returns their Session.

    The client's cookie jar is cleared afterwards so each test decides
    explicitly which cookie it sends.
    """

    async def _register(
        client: AsyncClient,
        email: str = "alice@example.com",
        password: str = DEFAULT_PASSWORD,
        name: str = "Alice",
    ) -> Session:
        response = await client.post(
            "/api/auth/register", json={"name": name, "email": email, "password": password}
        )
        assert response.status_code == 201, response.text
        client.cookies.clear()
        return session_from(response)

    return _register


@pytest.fixture
def login():
    """Async helper: POST /api/auth/login and return the raw response (cookie jar cleared)."""

    async def _login(
        client: AsyncClient,
        email: str = "alice@example.com",
        password: str = DEFAULT_PASSWORD,
        headers: Optional[Dict[str, str]] = None,
    ):
        response = await client.post(
            "/api/auth/login", json={"email": email, "password": password}, headers=headers
        )
        client.cookies.clear()
        return response

    return _login


@pytest.fixture
def as_session():
    """Converts a successful register/login response into a Session."""
    return session_from
