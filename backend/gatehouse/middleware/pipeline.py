"""
Gatehouse Backend: Middleware Pipeline Primitives
=================================================

What:  The stage contract, the per-request context, and compose().
How:   A stage is a plain callable

           stage(request, context) -> Response | Continue

       Returning a Response short-circuits the chain. Returning Continue
       passes a (possibly new) context to the next stage. compose() folds
       any number of stages into one stage with the same contract.

Per-request context:
    RequestContext is frozen. Stages that learn something about the request
    (e.g. the caller's identity) return a new context via `replace()`
    instead of mutating the request. The security middleware hands the
    final context to route handlers through request.state.context.

Stages are synchronous: every check is an in-memory lookup, nothing here
needs to await.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Mapping, Optional, Union

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from gatehouse.exceptions import GatehouseError
from gatehouse.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Caller identity resolved from a verified bearer token."""

    subject_id: str
    email: Optional[str] = None
    claims: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RequestContext:
    request_id: str
    client_ip: str
    identity: Optional[Identity] = None

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None

    def with_identity(self, identity: Identity) -> "RequestContext":
        return replace(self, identity=identity)


@dataclass(frozen=True)
class Continue:
    """Stage result meaning "no objection, carry on with this context"."""

    context: RequestContext


StageResult = Union[Response, Continue]
Stage = Callable[[Request, RequestContext], StageResult]


def compose(*stages: Stage) -> Stage:
    """
    Chain stages into one. The first Response wins; otherwise the final
    Continue is returned and the caller invokes the route handler.
    """

    def pipeline(request: Request, context: RequestContext) -> StageResult:
        for stage in stages:
            result = stage(request, context)
            if isinstance(result, Response):
                return result
            context = result.context
        return Continue(context)

    pipeline.stages = stages  # type: ignore[attr-defined]
    return pipeline


def error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Build the standard JSON error body used by stages and exception handlers."""
    content: Dict[str, Any] = {"error": error, "message": message}
    if details:
        content["details"] = details
    content["request_id"] = request_id_var.get("")
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def exception_response(exc: GatehouseError, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    """Render an application exception without raising it (stages never raise)."""
    return error_response(exc.status_code, exc.error_code, exc.message, details=exc.context or None, headers=headers)


def client_ip(request: Request, trust_forwarded_for: bool = False) -> str:
    """
    Caller IP address.

    X-Forwarded-For is only consulted when the app sits behind a proxy that
    overwrites it; otherwise any client could pick its own rate-limit key.
    """
    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
        real_ip = request.headers.get("X-Real-IP", "").strip()
        if real_ip:
            return real_ip
    return getattr(request.client, "host", "unknown") if request.client else "unknown"


def get_request_context(request: Request) -> RequestContext:
    """
    FastAPI dependency returning the context the pipeline resolved.

    Falls back to an anonymous context for apps mounted without the
    security middleware (e.g. isolated route tests).
    """
    context = getattr(request.state, "context", None)
    if context is None:
        context = RequestContext(request_id=request_id_var.get(""), client_ip=client_ip(request))
    return context
