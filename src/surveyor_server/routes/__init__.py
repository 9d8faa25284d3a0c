"""Route registration — mounts all routers under ``/api/v1``."""

from fastapi import FastAPI

from surveyor_server.routes.flows import router as flows_router
from surveyor_server.routes.runs import router as runs_router
from surveyor_server.routes.submissions import router as submissions_router

API_PREFIX = "/api/v1"


def register_routes(app: FastAPI) -> None:
    """Include all sub-routers under the versioned API prefix."""
    app.include_router(flows_router, prefix=API_PREFIX)
    app.include_router(runs_router, prefix=API_PREFIX)
    app.include_router(submissions_router, prefix=API_PREFIX)
