"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — browser clients of the marketplace UI

Request validation failures are answered by a dedicated exception handler
with HTTP 400 and the same error body shape.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from agent_marketplace.config import get_settings
from agent_marketplace.domain.exceptions import (
    ConflictError,
    InvalidStateTransitionError,
    LedgerUnavailableError,
    MarketplaceError,
    NotFoundError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)


def _error_body(code: str, message: str) -> dict:
    return {"error": code, "message": message}


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Use client-provided ID or generate one
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=request.url.path,
            method=request.method,
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except NotFoundError as exc:
            logger.warning("request.not_found", code=exc.code, error=exc.message)
            return JSONResponse(status_code=404, content=_error_body(exc.code, exc.message))
        except InvalidStateTransitionError as exc:
            logger.warning(
                "state_machine.invalid_transition",
                current=exc.current_state,
                attempted=exc.attempted,
            )
            return JSONResponse(status_code=409, content=_error_body(exc.code, exc.message))
        except ConflictError as exc:
            logger.warning("request.conflict", code=exc.code, error=exc.message)
            return JSONResponse(status_code=409, content=_error_body(exc.code, exc.message))
        except LedgerUnavailableError as exc:
            logger.error("ledger.unavailable", error=exc.message)
            return JSONResponse(status_code=503, content=_error_body(exc.code, exc.message))
        except MarketplaceError as exc:
            logger.warning("domain.error", error=exc.message, code=exc.code)
            return JSONResponse(status_code=400, content=_error_body(exc.code, exc.message))
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content=_error_body("INTERNAL_ERROR", "An unexpected error occurred"),
            )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed input as HTTP 400 with per-field details."""
    details = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg", ""),
        }
        for error in exc.errors()
    ]
    logger.info("request.validation_failed", errors=len(details))
    content = _error_body("VALIDATION_ERROR", "Request validation failed")
    content["details"] = details
    return JSONResponse(status_code=400, content=content)


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware and the validation handler on the application.

    Order matters — middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    origins = [o.strip() for o in get_settings().cors_origin.split(",") if o.strip()]

    # CORS (runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
