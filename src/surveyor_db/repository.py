"""Async CRUD repository for run and submission records.

All public methods accept an ``AsyncSession`` so the caller controls
transaction boundaries (the store commits once per engine transition).

The repository deliberately avoids business-logic validation — that belongs
in the SDK layer.  It maps between ORM rows and plain column values only.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from surveyor_db.models.run import RunRecord, SubmissionRecord


class RunRepository:
    """Async read/write operations on the ``flow_runs`` and ``submissions`` tables."""

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def get_run(self, db: AsyncSession, run_uuid: str) -> RunRecord | None:
        """Fetch a run row by its primary key."""
        return await db.get(RunRecord, run_uuid)

    async def upsert_run(
        self,
        db: AsyncSession,
        *,
        run_uuid: str,
        org_uuid: str | None,
        flow_uuid: str,
        flow_revision: int,
        parent_run_uuid: str | None,
        status: str,
        current_node_id: str | None,
        wait_expires_on: datetime | None,
        document: dict[str, Any],
        created_on: datetime,
        modified_on: datetime,
    ) -> RunRecord:
        """Insert or overwrite the row for ``run_uuid``.

        The caller must ``await db.commit()`` to persist.
        """
        row = await db.get(RunRecord, run_uuid)
        if row is None:
            row = RunRecord(run_uuid=run_uuid, created_on=created_on)
            db.add(row)
        row.org_uuid = org_uuid
        row.flow_uuid = flow_uuid
        row.flow_revision = flow_revision
        row.parent_run_uuid = parent_run_uuid
        row.status = status
        row.current_node_id = current_node_id
        row.wait_expires_on = wait_expires_on
        row.document = document
        row.modified_on = modified_on
        await db.flush()
        return row

    async def list_runs(
        self,
        db: AsyncSession,
        *,
        status: str | None = None,
        flow_uuid: str | None = None,
    ) -> list[RunRecord]:
        """List run rows, oldest first."""
        stmt = select(RunRecord).order_by(RunRecord.created_on, RunRecord.run_uuid)
        if status is not None:
            stmt = stmt.where(RunRecord.status == status)
        if flow_uuid is not None:
            stmt = stmt.where(RunRecord.flow_uuid == flow_uuid)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def delete_run(self, db: AsyncSession, run_uuid: str) -> int:
        """Delete a run row; returns the number of rows removed."""
        result = await db.execute(delete(RunRecord).where(RunRecord.run_uuid == run_uuid))
        return result.rowcount or 0

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    async def get_submission(
        self, db: AsyncSession, run_uuid: str
    ) -> SubmissionRecord | None:
        """Fetch a submission row by run UUID."""
        return await db.get(SubmissionRecord, run_uuid)

    async def create_submission(
        self,
        db: AsyncSession,
        *,
        run_uuid: str,
        org_uuid: str | None,
        flow_uuid: str,
        flow_revision: int,
        completed_on: datetime,
        document: dict[str, Any],
    ) -> SubmissionRecord:
        """Insert a submission row.  Rows are never updated afterwards."""
        row = SubmissionRecord(
            run_uuid=run_uuid,
            org_uuid=org_uuid,
            flow_uuid=flow_uuid,
            flow_revision=flow_revision,
            completed_on=completed_on,
            document=document,
        )
        db.add(row)
        await db.flush()
        return row

    async def list_submissions(
        self,
        db: AsyncSession,
        *,
        org_uuid: str | None = None,
        flow_uuid: str | None = None,
    ) -> list[SubmissionRecord]:
        """List submission rows ordered by completion time."""
        stmt = select(SubmissionRecord).order_by(
            SubmissionRecord.completed_on, SubmissionRecord.run_uuid
        )
        if org_uuid is not None:
            stmt = stmt.where(SubmissionRecord.org_uuid == org_uuid)
        if flow_uuid is not None:
            stmt = stmt.where(SubmissionRecord.flow_uuid == flow_uuid)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def delete_submission(self, db: AsyncSession, run_uuid: str) -> int:
        """Delete a submission row; returns the number of rows removed."""
        result = await db.execute(
            delete(SubmissionRecord).where(SubmissionRecord.run_uuid == run_uuid)
        )
        return result.rowcount or 0
