# safetrip/Controller/errors.py
"""
Maps core failures to HTTP responses.

Body: {"kind": ..., "message": ..., "context": {...}}
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder

from safetrip.Core.errors import (
    ConsentRequired, Forbidden, InvalidEscalation, InvalidState,
    InvalidTransition, NotFound, SafeTripError, ValidationError
)

# Most specific first: PreconditionFailed / ConcurrentModification are InvalidState
STATUS_CODES = (
    (ValidationError, 422),
    (Forbidden, 403),
    (ConsentRequired, 403),
    (NotFound, 404),
    (InvalidTransition, 409),
    (InvalidEscalation, 409),
    (InvalidState, 409),
)


def status_code_for(error: SafeTripError) -> int:
    for error_type, status_code in STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 400


async def safetrip_error_handler(request: Request, exc: SafeTripError) -> JSONResponse:
    status_code = status_code_for(exc)
    print(f"[HTTP] {request.method} {request.url.path} -> {status_code} {exc.kind}: {exc.message}")
    return JSONResponse(status_code=status_code, content=jsonable_encoder(exc.to_dict()))


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SafeTripError, safetrip_error_handler)
