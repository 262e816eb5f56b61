"""
Gatehouse Backend: Pipeline Stage Unit Tests
============================================

What:  Tests for compose(), the identity and CSRF stages, and client IP
       resolution, without going through HTTP.
How:   Stages are plain callables, so tests call them with Starlette
       Request objects built from ASGI scopes.
"""

import json
from typing import List, Optional, Tuple

import pytest
from starlette.requests import Request
from starlette.responses import Response

from gatehouse.exceptions import AuthenticationError
from gatehouse.middleware.auth import create_identity_stage, require_identity
from gatehouse.middleware.csrf import create_csrf_stage, requires_csrf_protection
from gatehouse.middleware.pipeline import (
    Continue,
    Identity,
    RequestContext,
    client_ip,
    compose,
    get_request_context,
)
from gatehouse.services.credentials import CredentialService
from gatehouse.services.csrf_store import CsrfTokenStore

SECRET = "pipeline-test-secret-cccccccccccccccccccccccccc"


def make_request(
    path: str = "/api/users",
    method: str = "GET",
    headers: Optional[List[Tuple[str, str]]] = None,
    client: Tuple[str, int] = ("10.0.0.1", 5000),
) -> Request:
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "raw_path": path.encode(),
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or [])],
        "client": client,
        "server": ("test", 80),
        "scheme": "http",
    }
    return Request(scope)


CONTEXT = RequestContext(request_id="req-1", client_ip="10.0.0.1")


class TestCompose:
    def test_runs_stages_in_order_and_returns_final_context(self):
        calls = []

        def first(request, context):
            calls.append("first")
            return Continue(context.with_identity(Identity(subject_id="u1")))

        def second(request, context):
            calls.append(("second", context.identity.subject_id))
            return Continue(context)

        result = compose(first, second)(make_request(), CONTEXT)

        assert calls == ["first", ("second", "u1")]
        assert isinstance(result, Continue)
        assert result.context.identity.subject_id == "u1"

    def test_first_response_short_circuits(self):
        calls = []

        def reject(request, context):
            calls.append("reject")
            return Response(status_code=418)

        def never(request, context):
            calls.append("never")
            return Continue(context)

        result = compose(reject, never)(make_request(), CONTEXT)

        assert result.status_code == 418
        assert calls == ["reject"]

    def test_empty_pipeline_continues(self):
        assert compose()(make_request(), CONTEXT).context is CONTEXT

    def test_context_is_not_mutated(self):
        def attach(request, context):
            return Continue(context.with_identity(Identity(subject_id="u1")))

        compose(attach)(make_request(), CONTEXT)
        assert CONTEXT.identity is None
        assert CONTEXT.is_authenticated is False


class TestIdentityStage:
    @pytest.fixture
    def credentials(self, clock):
        return CredentialService(SECRET, iterations=1000, clock=clock)

    @pytest.fixture
    def stage(self, credentials):
        return create_identity_stage(credentials)

    def test_no_header_is_anonymous(self, stage):
        result = stage(make_request(), CONTEXT)
        assert isinstance(result, Continue)
        assert result.context.identity is None

    def test_valid_bearer_attaches_identity(self, stage, credentials):
        token = credentials.issue_token({"sub": "user-1", "email": "a@example.com"})
        result = stage(make_request(headers=[("Authorization", f"Bearer {token}")]), CONTEXT)

        assert result.context.is_authenticated
        assert result.context.identity.subject_id == "user-1"
        assert result.context.identity.email == "a@example.com"

    def test_scheme_is_case_insensitive(self, stage, credentials):
        token = credentials.issue_token({"sub": "user-1"})
        result = stage(make_request(headers=[("Authorization", f"bearer {token}")]), CONTEXT)
        assert isinstance(result, Continue)

    @pytest.mark.parametrize("header", ["Bearer garbage", "Basic dXNlcjpwYXNz", "Bearer ", "token"])
    def test_invalid_header_is_401(self, stage, header):
        result = stage(make_request(headers=[("Authorization", header)]), CONTEXT)
        assert isinstance(result, Response)
        assert result.status_code == 401
        assert json.loads(result.body)["error"] == "authentication_error"

    def test_expired_token_is_401(self, stage, credentials, clock):
        token = credentials.issue_token({"sub": "user-1"}, ttl=60)
        clock.advance(60)
        result = stage(make_request(headers=[("Authorization", f"Bearer {token}")]), CONTEXT)
        assert result.status_code == 401

    def test_token_without_subject_is_401(self, stage, credentials):
        token = credentials.issue_token({"email": "a@example.com"})
        result = stage(make_request(headers=[("Authorization", f"Bearer {token}")]), CONTEXT)
        assert result.status_code == 401


class TestCsrfStage:
    @pytest.fixture
    def store(self, clock):
        return CsrfTokenStore(ttl_seconds=600, clock=clock)

    @pytest.fixture
    def stage(self, store):
        return create_csrf_stage(store)

    @staticmethod
    def with_pair(pair, token: Optional[str] = None):
        return [("X-CSRF-Token", token or pair.token), ("Cookie", f"csrf-token={pair.cookie_key}")]

    @pytest.mark.parametrize("method", ["GET", "HEAD", "OPTIONS"])
    def test_safe_methods_pass(self, stage, method):
        assert isinstance(stage(make_request(method=method), CONTEXT), Continue)

    @pytest.mark.parametrize("path", ["/api/auth/login", "/api/auth/register", "/api/health"])
    def test_exempt_paths_pass(self, stage, path):
        assert isinstance(stage(make_request(path, "POST"), CONTEXT), Continue)

    @pytest.mark.parametrize("method", ["POST", "PUT", "PATCH", "DELETE"])
    def test_mutating_without_pair_is_403(self, stage, method):
        result = stage(make_request(method=method), CONTEXT)
        assert result.status_code == 403
        assert "CSRF" in json.loads(result.body)["message"]

    def test_valid_pair_passes(self, stage, store):
        pair = store.generate()
        result = stage(make_request(method="POST", headers=self.with_pair(pair)), CONTEXT)
        assert isinstance(result, Continue)

    def test_header_without_cookie_is_403(self, stage, store):
        pair = store.generate()
        result = stage(make_request(method="POST", headers=[("X-CSRF-Token", pair.token)]), CONTEXT)
        assert result.status_code == 403

    def test_mismatched_token_is_403(self, stage, store):
        pair, other = store.generate(), store.generate()
        result = stage(make_request(method="POST", headers=self.with_pair(pair, other.token)), CONTEXT)
        assert result.status_code == 403

    def test_custom_exempt_paths(self, store):
        stage = create_csrf_stage(store, exempt_paths=["/api/webhook"])
        assert isinstance(stage(make_request("/api/webhook", "POST"), CONTEXT), Continue)
        assert stage(make_request("/api/auth/login", "POST"), CONTEXT).status_code == 403

    def test_requires_csrf_protection(self):
        assert requires_csrf_protection(make_request(method="DELETE")) is True
        assert requires_csrf_protection(make_request(method="GET")) is False


class TestClientIp:
    def test_uses_socket_peer_by_default(self):
        request = make_request(headers=[("X-Forwarded-For", "1.2.3.4")])
        assert client_ip(request) == "10.0.0.1"

    def test_trusted_forwarded_for_uses_first_hop(self):
        request = make_request(headers=[("X-Forwarded-For", "1.2.3.4, 10.0.0.2")])
        assert client_ip(request, trust_forwarded_for=True) == "1.2.3.4"

    def test_trusted_falls_back_to_real_ip(self):
        request = make_request(headers=[("X-Real-IP", "5.6.7.8")])
        assert client_ip(request, trust_forwarded_for=True) == "5.6.7.8"

    def test_trusted_without_headers_uses_peer(self):
        assert client_ip(make_request(), trust_forwarded_for=True) == "10.0.0.1"


class TestRequestContextDependency:
    def test_falls_back_to_anonymous_context(self):
        context = get_request_context(make_request())
        assert context.identity is None
        assert context.client_ip == "10.0.0.1"

    def test_reads_context_from_request_state(self):
        request = make_request()
        request.state.context = CONTEXT
        assert get_request_context(request) is CONTEXT

    def test_require_identity_rejects_anonymous(self):
        with pytest.raises(AuthenticationError):
            require_identity(CONTEXT)

    def test_require_identity_returns_identity(self):
        identity = Identity(subject_id="u1")
        assert require_identity(CONTEXT.with_identity(identity)) is identity
