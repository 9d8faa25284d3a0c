"""FastAPI dependency injection — provides the engine and flow cache.

Both are built once in the application lifespan and stashed on
``app.state``.  The engine owns its store, and the store opens one database
session per operation, so routes never handle sessions directly.
"""

from fastapi import Request

from surveyor_flows.engine import FlowEngine
from surveyor_flows.flows import FlowStore


def get_engine(request: Request) -> FlowEngine:
    """Return the FlowEngine singleton from ``app.state``."""
    return request.app.state.engine


def get_flows(request: Request) -> FlowStore:
    """Return the FlowStore singleton from ``app.state``."""
    return request.app.state.flows
