"""Global exception handlers — map SDK exceptions to HTTP status codes.

The SDK raises a small taxonomy of ``FlowEngineError`` subclasses.  Rather
than catching these in every route, we install global handlers keyed by
exception class.  This keeps route handlers clean and focused on the happy
path.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from surveyor_flows.errors import (
    EvaluationError,
    FlowEngineError,
    FlowNotFoundError,
    InvalidDefinitionError,
    InvalidRunStateError,
    PersistenceError,
    RunBusyError,
    RunNotFoundError,
    UnsupportedVersionError,
)

logger = logging.getLogger(__name__)

# --- Exception classes and their HTTP status codes ---
# Checked in order; first isinstance match wins.
_ERROR_STATUS: list[tuple[type[Exception], int]] = [
    (UnsupportedVersionError, 422),
    (InvalidDefinitionError, 422),
    (FlowNotFoundError, 404),
    (RunNotFoundError, 404),
    (RunBusyError, 409),
    (InvalidRunStateError, 409),
    (EvaluationError, 422),
    (PersistenceError, 503),
]


# --- Client-safe messages keyed by HTTP status code ---
# Internal details (paths, SQL, expression sources) stay in the server log.
_SAFE_MESSAGES: dict[int, str] = {
    404: "Resource not found",
    409: "Run is busy or not in a valid state for this operation",
    422: "Flow cannot be executed",
    503: "Storage unavailable",
}


def status_for(exc: Exception) -> int:
    for cls, code in _ERROR_STATUS:
        if isinstance(exc, cls):
            return code
    return 500


async def flow_error_handler(request: Request, exc: FlowEngineError) -> JSONResponse:
    """Map an SDK error to its HTTP status.

    Definition errors carry the list of problems found; these describe the
    synced flow, not the device, so they are returned to the caller.  Every
    other message is logged server-side only.
    """
    status = status_for(exc)
    logger.warning("%s [%d] at %s: %s", type(exc).__name__, status, request.url, exc)

    content: dict = {
        "detail": _SAFE_MESSAGES.get(status, "Internal server error"),
        "error": type(exc).__name__,
    }
    if isinstance(exc, InvalidDefinitionError):
        content["problems"] = exc.problems
    elif isinstance(exc, UnsupportedVersionError):
        content["spec_version"] = exc.spec_version
    elif isinstance(exc, EvaluationError) and exc.run_uuid is not None:
        content["run_uuid"] = exc.run_uuid
    return JSONResponse(status_code=status, content=content)


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions — log full traceback, return 500."""
    logger.exception("Unhandled exception at %s", request.url)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )
