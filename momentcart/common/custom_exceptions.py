
from fastapi import FastAPI, HTTPException, Request,status
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import DBAPIError
from momentcart.common import logger
from momentcart.common.errors import CheckoutError, StoreUnavailable
from momentcart.common.retries import is_recoverable_exception
from momentcart.common.utils import build_error, json_error
from momentcart.common.constants import request_id_ctx

STORE_RETRY_AFTER_SECONDS = "3"


async def fallback_handler(request: Request, exc: Exception):

    rid = request_id_ctx.get(None)
    body = {"message": "Internal Server Error "}

    logger.error(
        "unexpected.exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "request_id": rid,
        },
        exc_info=exc,
    )

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    payload = build_error(code="SERVER_ERROR", details=body, request_id=rid)
    return json_error(payload, status_code=status_code)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    rid = request_id_ctx.get(None)
    logger.warning(
        "request.validation_failed",
        extra={
            "errors": exc.errors(),
            "path": request.url.path,
            "request_id": rid,
        },
    )

    payload = build_error(code="UNPROCESSABLE_ENTITY", details={"message":"invalid request"}, request_id=rid)
    return json_error(payload, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


async def http_exception_handler(request: Request, exc: HTTPException):

    rid = request_id_ctx.get(None)

    payload = build_error(code=f"HTTP_{exc.status_code}", details={"message":exc.detail}, request_id=rid)
    return json_error(payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def checkout_error_handler(request: Request, exc: CheckoutError):
    rid = request_id_ctx.get(None)
    logger.info(
        "checkout.request_rejected",
        extra={"error_code": exc.code.value, "path": request.url.path},
    )

    headers = None
    if isinstance(exc, StoreUnavailable):
        headers = {"Retry-After": STORE_RETRY_AFTER_SECONDS}

    payload = build_error(code=exc.code.value, details=exc.to_dict(), request_id=rid)
    return json_error(payload, status_code=exc.status_code, headers=headers)


async def db_exception_handler(request: Request, exc: DBAPIError):
    # store errors that escaped the retry wrapper
    if not is_recoverable_exception(exc):
        return await fallback_handler(request, exc)

    logger.error("store.unavailable", extra={"path": request.url.path}, exc_info=exc)
    return await checkout_error_handler(request, StoreUnavailable())


def register_all_exceptions(app: FastAPI):

    app.add_exception_handler(
        Exception, # catch all unidentified/unhandled exceptions
        fallback_handler
    )

    app.add_exception_handler(
        RequestValidationError,
        validation_exception_handler
    )

    app.add_exception_handler(
        HTTPException,
        http_exception_handler
    )

    app.add_exception_handler(
        CheckoutError,
        checkout_error_handler
    )

    app.add_exception_handler(
        DBAPIError,
        db_exception_handler
    )
