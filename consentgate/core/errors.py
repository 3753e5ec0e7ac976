import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

class AppError(Exception):
    status_code = 500
    code = "error"
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

class Unauthorized(AppError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required"

class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "Access denied"

class NotFound(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"

class InvalidState(AppError):
    status_code = 409
    code = "invalid_state"
    default_message = "Operation not allowed in the current state"

class ValidationError(AppError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid request"

_HTTP_CODES = {400: "validation_error", 401: "unauthorized", 403: "forbidden", 404: "not_found", 409: "invalid_state"}

def error_body(message: str, code: str, details=None) -> dict:
    body = {"success": False, "error": message, "code": code}
    if details is not None:
        body["details"] = details
    return body

def _validation_details(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": [str(p) for p in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.code))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content=error_body("Invalid request body", "validation_error", _validation_details(exc)),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        code = _HTTP_CODES.get(exc.status_code, "error")
        return JSONResponse(status_code=exc.status_code, content=error_body(str(exc.detail), code))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.critical(f"Unhandled exception for request {request.method} {request.url.path}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content=error_body("An internal server error occurred.", "server_error"),
        )
