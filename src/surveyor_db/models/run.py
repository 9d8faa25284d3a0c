"""Run and submission ORM models — one row per run, one per finalized run.

Each ``flow_runs`` row keeps the scalar columns the device filters on
(status, flow, completion) next to a ``document`` JSON column holding the
full serialized Run.  Loading a run validates the document back into the
SDK model, so a resumed run equals the persisted one field for field.

A ``submissions`` row is written once, when the run completes, and is
deleted when the Upload layer confirms server acceptance.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from surveyor_db.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunRecord(Base):
    """Persisted state of one flow run, keyed by ``run_uuid``."""

    __tablename__ = "flow_runs"

    # --- Identity ---
    run_uuid: Mapped[str] = mapped_column(String(36), primary_key=True)
    org_uuid: Mapped[str | None] = mapped_column(String(36), nullable=True)
    flow_uuid: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    # Pins the definition revision the run executes
    flow_revision: Mapped[int] = mapped_column(Integer, nullable=False)
    parent_run_uuid: Mapped[str | None] = mapped_column(String(36), nullable=True)

    # --- Position ---
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    current_node_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    wait_expires_on: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # --- Full state ---
    # Run.model_dump(mode="json"): field values, step history, contact, extra
    document: Mapped[dict] = mapped_column(JSON, nullable=False)

    # --- Timestamps ---
    created_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    modified_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("ix_flow_runs_status_expires", "status", "wait_expires_on"),
    )

    def __repr__(self) -> str:
        return (
            f"<RunRecord(run_uuid={self.run_uuid!r}, flow={self.flow_uuid!r}, "
            f"status={self.status!r}, node={self.current_node_id!r})>"
        )


class SubmissionRecord(Base):
    """Frozen, upload-ready record of a completed run."""

    __tablename__ = "submissions"

    run_uuid: Mapped[str] = mapped_column(String(36), primary_key=True)
    org_uuid: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    flow_uuid: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    flow_revision: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    # Submission.model_dump(mode="json")
    document: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<SubmissionRecord(run_uuid={self.run_uuid!r}, flow={self.flow_uuid!r}, "
            f"completed_on={self.completed_on!r})>"
        )
