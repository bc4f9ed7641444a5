"""Middleware and exception handlers for the FastAPI application.

Webhook endpoints build their own responses from the dispatch outcome; the
handlers here cover the read API and anything that escapes an endpoint.
"""

import time
import traceback
import uuid
from typing import Union

from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from billsync.core.config import settings
from billsync.core.exceptions import (
    AuthenticationError,
    BillsyncException,
    InfrastructureError,
    NotFoundException,
    unpack_validation_error,
)
from billsync.core.logging import logger

REQUEST_ID_HEADER = "X-Request-ID"

# Status codes for service exceptions; anything unmapped is a client error
EXCEPTION_STATUS_CODES = {
    AuthenticationError: 401,
    NotFoundException: 404,
    InfrastructureError: 503,
}


def _request_log(request: Request):
    return logger.with_context(request_id=getattr(request.state, "request_id", None))


async def add_request_id(request: Request, call_next: callable) -> Response:
    """Attach a request ID for tracing and echo it in the response.

    An ID set by an upstream proxy is kept, so provider delivery logs, proxy logs
    and ours can be joined on it.

    Args:
    ----
        request (Request): The incoming request.
        call_next (callable): The next middleware in the chain.

    Returns:
    -------
        Response: The response, with the `X-Request-ID` header set.

    """
    request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request.state.request_id
    return response


async def log_requests(request: Request, call_next: callable) -> Response:
    """Log every request with its status code and duration.

    Server errors are logged as warnings so they show up next to the dispatcher's
    own error records.
    """
    start_time = time.perf_counter()
    response = await call_next(request)
    duration_ms = round((time.perf_counter() - start_time) * 1000, 1)

    log = _request_log(request).with_context(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=duration_ms,
    )
    message = f"{request.method} {request.url.path} -> {response.status_code} in {duration_ms}ms"
    if response.status_code >= 500:
        log.warning(message)
    else:
        log.info(message)
    return response


async def exception_logging_middleware(request: Request, call_next: callable) -> Response:
    """Turn exceptions no handler caught into a logged 500.

    Args:
    ----
        request (Request): The incoming request.
        call_next (callable): The next middleware in the chain.

    Returns:
    -------
        Response: The response, or a 500 with the exception class name.

    """
    try:
        return await call_next(request)
    except Exception as exc:
        trace = traceback.format_exc()
        _request_log(request).with_context(error_class="unhandled").error(
            f"Unhandled exception on {request.method} {request.url.path}: {exc}\n{trace}"
        )

        content = {"detail": f"Internal Server Error: {exc.__class__.__name__}"}
        if settings.LOCAL_DEVELOPMENT or settings.DEBUG:
            content["trace"] = trace
        return JSONResponse(status_code=500, content=content)


# Exception handlers
async def validation_exception_handler(
    request: Request, exc: Union[RequestValidationError, ValidationError]
) -> JSONResponse:
    """Answer validation errors with 422 and one `{"<location>": "<message>"}` per error."""
    error_messages = unpack_validation_error(exc)
    _request_log(request).warning(f"Validation error: {error_messages}")
    return JSONResponse(status_code=422, content=error_messages)


async def not_found_exception_handler(request: Request, exc: NotFoundException) -> JSONResponse:
    """Answer NotFoundException with 404."""
    return JSONResponse(status_code=404, content={"detail": exc.message})


async def infrastructure_exception_handler(
    request: Request, exc: InfrastructureError
) -> JSONResponse:
    """Answer InfrastructureError with 503, so that callers retry."""
    _request_log(request).with_context(error_class="infrastructure").error(
        f"Infrastructure error: {exc.message}"
    )
    return JSONResponse(status_code=503, content={"detail": exc.message})


async def billsync_exception_handler(request: Request, exc: BillsyncException) -> JSONResponse:
    """Answer any other service exception, by the closest mapped class.

    Args:
    ----
        request (Request): The incoming request that triggered the exception.
        exc (BillsyncException): The exception object that was raised.

    Returns:
    -------
        JSONResponse: HTTP response with the mapped status code and the error message.

    """
    status_code = next(
        (
            EXCEPTION_STATUS_CODES[cls]
            for cls in type(exc).__mro__
            if cls in EXCEPTION_STATUS_CODES
        ),
        400,
    )
    return JSONResponse(status_code=status_code, content={"detail": exc.message})
