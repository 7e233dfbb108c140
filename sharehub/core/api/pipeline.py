"""
Request pipeline.

Each route is an ordered list of stages followed by a handler. A stage
inspects the request and either lets it through (Continue) or answers it
directly (Respond); the first Respond short-circuits the rest. Handlers
raise core exceptions, which combine() turns into error responses.
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Union

from fastapi import Request, Response

from sharehub.core.errors import ShareHubError
from sharehub.logging.setup import get_logger
from .errors import (
    authentication_error,
    error_from_exception,
    method_not_allowed,
    server_error,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class Continue:
    """Pass the request to the next stage."""


@dataclass(frozen=True)
class Respond:
    """Stop the pipeline and send this response."""
    response: Response


StageResult = Union[Continue, Respond]
Stage = Callable[[Request], Awaitable[StageResult]]
Handler = Callable[[Request], Awaitable[Response]]

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


def combine(stages: Sequence[Stage], handler: Handler) -> Handler:
    """Build a route endpoint that runs stages in order, then handler."""

    @functools.wraps(handler)
    async def endpoint(request: Request) -> Response:
        for stage in stages:
            result = await stage(request)
            if isinstance(result, Respond):
                return result.response

        try:
            return await handler(request)
        except ShareHubError as e:
            return error_from_exception(e)
        except Exception as e:
            logger.error(
                f"Unhandled error in {request.method} {request.url.path}: {e}",
                exc_info=True)
            return server_error()

    return endpoint


def method(allowed: Sequence[str]) -> Stage:
    """Reject requests whose HTTP method is not in allowed with 405."""
    allowed = [m.upper() for m in allowed]

    async def stage(request: Request) -> StageResult:
        if request.method not in allowed:
            return Respond(method_not_allowed(request.method, allowed))
        return Continue()

    return stage


def _identity_header(request: Request) -> str:
    return request.app.state.config_manager.api.identity_header


def require_identity() -> Stage:
    """
    Require the caller id set by the authenticating proxy.

    The header is trusted as-is; the proxy in front of the API is
    responsible for stripping it from client requests.
    """
    async def stage(request: Request) -> StageResult:
        caller_id = request.headers.get(_identity_header(request))
        if not caller_id:
            return Respond(authentication_error())
        request.state.caller_id = caller_id
        return Continue()

    return stage


def optional_identity() -> Stage:
    """Record the caller id if present; anonymous callers get None."""
    async def stage(request: Request) -> StageResult:
        request.state.caller_id = request.headers.get(
            _identity_header(request)) or None
        return Continue()

    return stage
