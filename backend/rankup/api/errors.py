"""
Exception handlers.
Renders every domain error as {"error": {code, category, message, retryable, details}}.
"""

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from rankup.core.errors import RankUpError
from rankup.core.logging import get_logger

logger = get_logger(__name__)


def _error_response(status_code: int, body: dict, request: Request) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        body["request_id"] = request_id
    return JSONResponse(status_code=status_code, content={"error": jsonable_encoder(body)})


async def rankup_exception_handler(request: Request, exc: RankUpError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "request_error",
        code=exc.code,
        category=exc.category,
        status_code=exc.status_code,
        details=exc.details,
    )
    return _error_response(exc.status_code, exc.to_dict(), request)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    logger.warning("request_validation_failed", errors=errors)
    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        {
            "code": "request_validation_error",
            "category": "invalid_request",
            "message": "Request body or parameters are malformed",
            "retryable": False,
            "details": {"errors": errors},
        },
        request,
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RankUpError, rankup_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
