"""Admission middleware for the HTTP service.

Builds a RequestDescriptor from each incoming request, asks the admission
pipeline for a decision and answers rejected (400) and throttled (429)
requests itself. Admitted requests continue to the application.
"""

import math
from typing import Callable, Iterable, List, Optional, Tuple

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from admitgate.app.core.config import settings as default_settings
from admitgate.app.services.models import Decision, DecisionOutcome, RequestDescriptor
from admitgate.app.services.pipeline import AdmissionPipeline, build_pipeline

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def default_caller_id(request: Request) -> Optional[str]:
    """Caller identity set on request.state by an upstream authenticator."""
    return getattr(request.state, "caller_id", None)


def client_address(request: Request, trust_forwarded_for: bool = False) -> str:
    """Caller address, optionally taken from the first X-Forwarded-For hop."""
    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


def inspected_headers(request: Request, skip: Iterable[str]) -> List[Tuple[str, str]]:
    """Headers to scan; ``skip`` entries ending in ``*`` match a name prefix."""
    exact = set()
    prefixes = []
    for name in skip:
        name = name.lower()
        if name.endswith("*"):
            prefixes.append(name[:-1])
        else:
            exact.add(name)
    prefix_tuple = tuple(prefixes)
    return [
        (name, value) for name, value in request.headers.items()
        if name.lower() not in exact and not name.lower().startswith(prefix_tuple)
    ]


def is_form(request: Request) -> bool:
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    return content_type in FORM_CONTENT_TYPES


async def form_fields(request: Request) -> List[Tuple[str, str]]:
    """Text fields of a urlencoded or multipart body; uploaded files are skipped.

    The body is read through ``request.body()`` first so it stays cached
    for the downstream handler.
    """
    if not is_form(request):
        return []
    await request.body()
    async with request.form() as form:
        return [(name, value) for name, value in form.multi_items() if isinstance(value, str)]


async def build_descriptor(
    request: Request,
    caller_id: Optional[str],
    trust_forwarded_for: bool = False,
    skip_headers: Iterable[str] = (),
) -> RequestDescriptor:
    """Build the descriptor from the decoded path, query, form and headers."""
    fields = list(request.query_params.multi_items())
    fields.extend(await form_fields(request))
    return RequestDescriptor(
        address=client_address(request, trust_forwarded_for),
        method=request.method,
        path=request.url.path,
        caller_id=caller_id,
        fields=tuple(fields),
        headers=tuple(inspected_headers(request, skip_headers)),
    )


def decision_response(decision: Decision) -> Optional[Response]:
    """HTTP response for a refused request, None when admitted."""
    if decision.outcome is DecisionOutcome.REJECTED:
        return JSONResponse(
            status_code=400,
            content={
                "error": "request_rejected",
                "message": "Request blocked by security policy.",
                "violations": [v.to_dict() for v in decision.violations],
            },
        )
    if decision.outcome is DecisionOutcome.THROTTLED:
        retry_after = max(1, math.ceil(decision.retry_after or 0))
        return JSONResponse(
            status_code=429,
            content={
                "error": "rate_limit_exceeded",
                "message": "Rate limit exceeded. Please try again later.",
                "reason": decision.reason,
                "retry_after": retry_after,
            },
            headers={"Retry-After": str(retry_after)},
        )
    return None


class AdmissionMiddleware(BaseHTTPMiddleware):
    """Middleware enforcing admission decisions on every request.

    The caller identity is read from ``request.state.caller_id`` by default;
    pass ``caller_id_getter`` to read it from elsewhere.
    """

    def __init__(
        self,
        app,
        pipeline: Optional[AdmissionPipeline] = None,
        caller_id_getter: Callable[[Request], Optional[str]] = default_caller_id,
        trust_forwarded_for: Optional[bool] = None,
        skip_headers: Optional[Iterable[str]] = None,
    ):
        super().__init__(app)
        self.pipeline = pipeline if pipeline is not None else build_pipeline()
        self.caller_id_getter = caller_id_getter
        self.trust_forwarded_for = (
            default_settings.trust_forwarded_for if trust_forwarded_for is None else trust_forwarded_for
        )
        self.skip_headers = tuple(default_settings.skip_headers if skip_headers is None else skip_headers)

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request through the admission pipeline."""
        try:
            descriptor = await build_descriptor(
                request,
                caller_id=self.caller_id_getter(request),
                trust_forwarded_for=self.trust_forwarded_for,
                skip_headers=self.skip_headers,
            )
        except HTTPException as e:
            # Unparseable form body
            return JSONResponse(
                status_code=e.status_code,
                content={"error": "invalid_request", "message": e.detail},
            )
        decision = await self.pipeline.decide(descriptor)
        request.state.admission_decision = decision

        refusal = decision_response(decision)
        if refusal is not None:
            return refusal
        return await call_next(request)
