import logging
import traceback
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from shopdesk.exceptions import ConflictError, ShopdeskError

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Something went very wrong!"


def _request_context(request: Request) -> str:
    user_id = getattr(request.state, "user_id", None)
    return f"{request.method} {request.url.path} user={user_id or 'Unauthenticated'}"


def register_error_handlers(app: FastAPI, development: bool = False) -> None:
    """
    Регистрирует обработчики исключений

    В режиме development ответ на непредвиденную ошибку содержит тип и стек,
    в остальных режимах - только общее сообщение.
    """

    @app.exception_handler(ShopdeskError)
    async def handle_service_error(request: Request, exc: ShopdeskError):
        if exc.status_code >= 500:
            logger.error(f"{exc.status.upper()} - {exc.message} [{_request_context(request)}]")
        else:
            logger.info(f"{exc.status_code} {exc.message} [{_request_context(request)}]")
        return JSONResponse(
            status_code=exc.status_code,
            content={"status": exc.status, "message": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        messages = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
        return JSONResponse(
            status_code=400,
            content={
                "status": "fail",
                "message": f"Invalid input data. {'. '.join(messages)}",
            },
        )

    @app.exception_handler(IntegrityError)
    async def handle_integrity_error(request: Request, exc: IntegrityError):
        conflict = ConflictError("Duplicate or conflicting value. Please use another value!")
        logger.warning(f"Конфликт данных [{_request_context(request)}]: {exc.orig!r}")
        return await handle_service_error(request, conflict)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            f"UNHANDLED ERROR - {exc!r} [{_request_context(request)}]",
            exc_info=exc,
        )
        if development:
            return JSONResponse(
                status_code=500,
                content={
                    "status": "error",
                    "error": type(exc).__name__,
                    "message": str(exc),
                    "stack": traceback.format_exception(type(exc), exc, exc.__traceback__),
                },
            )
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": GENERIC_ERROR_MESSAGE},
        )
