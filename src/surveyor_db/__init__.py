"""surveyor_db — on-device SQLite persistence for flow runs and submissions.

This package provides the ORM models, async engine factory, repository and
the :class:`SqlRunStore` implementation of the SDK's ``RunStore``.  It is
consumed by the local FastAPI server and the async-wait expiry command.
"""

from surveyor_db.engine import create_schema, dispose_engine, get_engine, get_session_factory
from surveyor_db.models.run import RunRecord, SubmissionRecord
from surveyor_db.repository import RunRepository
from surveyor_db.store import SqlRunStore

__all__ = [
    "RunRecord",
    "SubmissionRecord",
    "RunRepository",
    "SqlRunStore",
    "create_schema",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
]
