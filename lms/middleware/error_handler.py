"""
Error handler registration.

Every domain exception becomes a structured JSON rejection; anything
unexpected becomes a generic 500 with a log id. No exception escapes
to crash a request.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from lms.errors import APIError, UnprocessableError, from_domain_exception, internal_error_for
from lms.exceptions import LMSException

logger = logging.getLogger(__name__)


def _request_context(request: Request) -> str:
    return f"{request.method} {request.url.path}"


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    logger.warning(f"Handled error [{exc.code}]: {exc.message} | {_request_context(request)}")
    return exc.to_response()


async def domain_error_handler(request: Request, exc: LMSException) -> JSONResponse:
    api_error = from_domain_exception(exc)
    logger.warning(
        f"Rejected [{api_error.code}]: {exc.message} | {_request_context(request)}"
    )
    return api_error.to_response()


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    api_error = UnprocessableError(
        "Invalid input data",
        details={"errors": [
            {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]},
    )
    logger.warning(f"Validation error | {_request_context(request)}")
    return api_error.to_response()


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    return internal_error_for(exc, _request_context(request)).to_response()


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(LMSException, domain_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
