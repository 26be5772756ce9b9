"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware: injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware: domain exceptions -> structured JSON errors
    3. CORSMiddleware: browser clients of the marketplace frontend
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from marketplace_escrow.domain.exceptions import (
    EscrowFrozenError,
    ForbiddenError,
    GatewayError,
    GatewayUnavailableError,
    InvalidStateError,
    MarketplaceError,
    NothingToDisputeError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)


def _error(status_code: int, exc: MarketplaceError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": exc.message},
    )


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

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
            logger.warning("entity.not_found", entity=exc.entity, entity_id=exc.entity_id)
            return _error(404, exc)
        except ForbiddenError as exc:
            logger.warning("access.forbidden", error=exc.message)
            return _error(403, exc)
        except EscrowFrozenError as exc:
            logger.warning("escrow.frozen_rejected", request_id=exc.request_id)
            return _error(423, exc)
        except InvalidStateError as exc:
            # RefundExceedsBalanceError lands here too, with its own code.
            logger.warning(
                "state_machine.invalid_transition",
                current=exc.current_state,
                attempted=exc.attempted,
                code=exc.code,
            )
            return _error(409, exc)
        except NothingToDisputeError as exc:
            logger.warning("dispute.nothing_to_dispute", escrow_status=exc.escrow_status)
            return _error(409, exc)
        except ValidationError as exc:
            logger.info("request.rejected", error=exc.message)
            return _error(400, exc)
        except GatewayUnavailableError as exc:
            logger.error("gateway.unavailable", error=exc.message, status=exc.status_code)
            return _error(503, exc)
        except GatewayError as exc:
            logger.error("gateway.error", error=exc.message, status=exc.status_code)
            return _error(502, exc)
        except MarketplaceError as exc:
            logger.error("domain.error", error=exc.message, code=exc.code)
            return _error(400, exc)
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                },
            )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Middleware is applied bottom-up, so the last added middleware runs first.
    """
    # CORS (runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
