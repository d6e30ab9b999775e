from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from authcore.core.exceptions import AppError
from authcore.core.logging import get_logger

logger = get_logger(__name__)


async def _app_error_handler(request: Request, exc: AppError):
    """Render domain errors as ``{success, message}``."""
    if exc.status_code >= 500:
        logger.error(
            f"app_error | method={request.method} path={request.url.path} "
            f"status_code={exc.status_code} code={exc.code}",
            exc_info=exc.__cause__,
        )
    else:
        logger.warning(
            f"app_error | method={request.method} path={request.url.path} "
            f"status_code={exc.status_code} code={exc.code}"
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def _validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed input is rejected before it reaches the auth service."""
    error_messages = []
    for err in exc.errors():
        # drop the leading "body"/"header" segment
        field_path = ".".join(str(loc) for loc in err.get("loc", [])[1:])
        error_messages.append(f"{field_path}: {err.get('msg', 'Invalid input')}")

    logger.warning(
        f"validation_error | method={request.method} path={request.url.path} errors={error_messages}"
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "message": "VALIDATION_ERROR", "errors": error_messages},
    )


async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(
        f"http_exception | method={request.method} path={request.url.path} "
        f"status_code={exc.status_code} detail={exc.detail}"
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def _general_exception_handler(request: Request, exc: Exception):
    logger.error(
        f"unhandled_exception | method={request.method} path={request.url.path} "
        f"exception_type={type(exc).__name__}",
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "message": "INTERNAL_SERVER_ERROR"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _general_exception_handler)
