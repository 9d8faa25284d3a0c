"""ORM models for surveyor_db."""

from surveyor_db.models.base import Base
from surveyor_db.models.run import RunRecord, SubmissionRecord

__all__ = ["Base", "RunRecord", "SubmissionRecord"]
