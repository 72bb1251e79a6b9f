"""HTTP middleware for the deployer server."""

from __future__ import annotations

import time

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from minibeast.lib.logging_config import get_logger
from minibeast.serve.models import ProblemDetail

logger = get_logger(__name__)

PROBLEM_CONTENT_TYPE = "application/problem+json"


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Convert uncaught exceptions into RFC 7807 problem responses."""

    def __init__(self, app: ASGIApp, debug: bool = False) -> None:
        super().__init__(app)
        self.debug = debug

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            logger.exception(
                f"Unhandled error on {request.method} {request.url.path}: {exc}"
            )
            problem = ProblemDetail(
                title="Internal Server Error",
                status=500,
                detail=str(exc) if self.debug else "An unexpected error occurred",
                instance=request.url.path,
            )
            return JSONResponse(
                status_code=500,
                content=problem.model_dump(exclude_none=True),
                media_type=PROBLEM_CONTENT_TYPE,
            )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration of every request."""

    def __init__(self, app: ASGIApp, debug: bool = False) -> None:
        super().__init__(app)
        self.debug = debug

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000

        message = (
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"({elapsed_ms:.1f}ms)"
        )
        if self.debug:
            logger.info(message)
        else:
            logger.debug(message)
        return response
