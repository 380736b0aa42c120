import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tierlist.services.errors import EditError
from tierlist.services.repository import (
    RepositoryConflictError,
    RepositoryError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)

logger = logging.getLogger(__name__)

UNREADABLE_BODY_CODE = "gen0-002-00"
USER_NOT_EQUAL_CODE = "gen0-003-00"
INVALID_FILE_CODE = "gen0-008-00"

REPOSITORY_ERRORS: tuple[tuple[type[RepositoryError], int, str], ...] = (
    (RepositoryNotFoundError, status.HTTP_404_NOT_FOUND, "gen0-004-00"),
    (RepositoryConflictError, status.HTTP_409_CONFLICT, "gen0-005-00"),
    (RepositoryUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE, "gen0-006-00"),
    (RepositoryValidationError, status.HTTP_400_BAD_REQUEST, "gen0-007-00"),
    (RepositoryForbiddenError, status.HTTP_403_FORBIDDEN, USER_NOT_EQUAL_CODE),
)


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"code": code, "message": message})


async def edit_error_handler(request: Request, exc: EditError) -> JSONResponse:
    logger.info("edit rejected path=%s code=%s message=%s", request.url.path, exc.code, exc.message)
    return error_response(status.HTTP_400_BAD_REQUEST, exc.code, exc.message)


async def repository_error_handler(request: Request, exc: RepositoryError) -> JSONResponse:
    for error_type, status_code, code in REPOSITORY_ERRORS:
        if isinstance(exc, error_type):
            return error_response(status_code, code, str(exc))
    logger.error("repository failure path=%s error=%s", request.url.path, exc)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "gen0-000-00", str(exc))


async def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    detail = errors[0].get("msg", "request body could not be read") if errors else "request body could not be read"
    return error_response(status.HTTP_400_BAD_REQUEST, UNREADABLE_BODY_CODE, str(detail))


async def http_exception_handler(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict) and "code" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": "gen0-000-00", "message": str(exc.detail)},
        headers=exc.headers,
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EditError, edit_error_handler)
    app.add_exception_handler(RepositoryError, repository_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
