import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    def __init__(self, code: str, message: str, status_code: int = 400):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


class NotFoundError(AppError):
    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            code=f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} with ID {resource_id} was not found.",
            status_code=404,
        )


class ValidationError(AppError):
    def __init__(self, message: str):
        super().__init__(code="VALIDATION_ERROR", message=message, status_code=422)


class InvalidSpecificationError(AppError):
    """A recurrence rule string could not be parsed or has an out-of-domain field."""

    def __init__(self, message: str):
        super().__init__(code="INVALID_SPECIFICATION", message=message, status_code=422)


class TemplateNotRecurringError(AppError):
    def __init__(self, template_id: str):
        super().__init__(
            code="TEMPLATE_NOT_RECURRING",
            message=f"Template {template_id} is not configured for recurring generation.",
            status_code=409,
        )
        self.template_id = template_id


class HistoricalRecordImmutableError(AppError):
    def __init__(self, instance_id: str, action: str = "edit"):
        super().__init__(
            code="HISTORICAL_RECORD_IMMUTABLE",
            message=f"Cannot {action} historical instance {instance_id}.",
            status_code=409,
        )


class InvalidStatusTransitionError(AppError):
    def __init__(self, current: str, target: str):
        super().__init__(
            code="INVALID_STATUS_TRANSITION",
            message=f"Cannot move an instance from '{current}' to '{target}'.",
            status_code=409,
        )
        self.current = current
        self.target = target


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "code": exc.code,
                    "message": exc.message,
                    "details": None,
                }
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "code": "HTTP_ERROR",
                    "message": exc.detail,
                    "details": None,
                }
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": str(exc),
                    "details": None,
                }
            },
        )
