"""FastAPI dependencies and boundary error translation for the media API."""

from typing import Annotated

import structlog
from fastapi import FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from mediagen.models.media_generation import InvalidStateTransition
from mediagen.services.exceptions import GatewayError, NotFoundError, ServiceError
from mediagen.services.media.service import MediaService

logger = structlog.get_logger(__name__)


def require_user_id(
    x_user_id: Annotated[str | None, Header(alias="X-User-ID")] = None,
) -> str:
    """Authenticated principal, supplied by the upstream auth layer.

    Raises:
        HTTPException: 401 if the header is missing or blank
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-ID header required"
        )
    return x_user_id.strip()


def get_media_service(request: Request) -> MediaService:
    """Get the MediaService built during application lifespan."""
    return request.app.state.media_service


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map service errors to HTTP statuses.

    - NotFoundError -> 404
    - InvalidStateTransition -> 409
    - GatewayError -> 502
    - Any other ServiceError -> 500
    """

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error_response(status.HTTP_404_NOT_FOUND, exc)

    @app.exception_handler(InvalidStateTransition)
    async def conflict_handler(request: Request, exc: InvalidStateTransition):
        return _error_response(status.HTTP_409_CONFLICT, exc)

    @app.exception_handler(GatewayError)
    async def gateway_handler(request: Request, exc: GatewayError):
        logger.warning(
            "api.gateway_error",
            path=request.url.path,
            status_code=exc.status_code,
            model_type=exc.model_type,
        )
        return _error_response(status.HTTP_502_BAD_GATEWAY, exc)

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        logger.error(
            "api.service_error",
            path=request.url.path,
            error_type=type(exc).__name__,
            error_message=str(exc),
        )
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc)
