"""SqlRunStore — durable RunStore over the on-device SQLite database.

Every public method opens its own session and commits before returning, so
a transition acknowledged by the engine is on disk.  SQLAlchemy failures
are wrapped in :class:`PersistenceError`; the engine then treats the
in-flight step as not applied.

Usage::

    await create_schema()
    store = SqlRunStore(get_session_factory())
    engine = FlowEngine(flows, store)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from surveyor_flows.errors import InvalidRunStateError, PersistenceError, RunNotFoundError
from surveyor_flows.interfaces import RunStore
from surveyor_flows.models.run import Run, RunStatus
from surveyor_flows.models.submission import Submission

from surveyor_db.repository import RunRepository

logger = logging.getLogger(__name__)


class SqlRunStore(RunStore):
    """RunStore backed by the ``flow_runs`` and ``submissions`` tables.

    Args:
        session_factory: async session factory bound to the device database
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._repo = RunRepository()

    @asynccontextmanager
    async def _session(self, action: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as db:
                yield db
        except SQLAlchemyError as exc:
            logger.error("Database failure while trying to %s: %s", action, exc)
            raise PersistenceError(f"Failed to {action}: {exc}") from exc

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def persist(self, run: Run) -> None:
        async with self._session(f"persist run {run.run_uuid}") as db:
            await self._repo.upsert_run(
                db,
                run_uuid=run.run_uuid,
                org_uuid=run.org_uuid,
                flow_uuid=run.flow_uuid,
                flow_revision=run.flow_revision,
                parent_run_uuid=run.parent_run_uuid,
                status=run.status.value,
                current_node_id=run.current_node_id,
                wait_expires_on=run.wait_expires_on,
                document=run.model_dump(mode="json"),
                created_on=run.created_on,
                modified_on=run.modified_on,
            )
            await db.commit()
        logger.debug(
            "Persisted run %s (status=%s, steps=%d)",
            run.run_uuid, run.status.value, len(run.steps),
        )

    async def load(self, run_uuid: str) -> Run | None:
        async with self._session(f"load run {run_uuid}") as db:
            row = await self._repo.get_run(db, run_uuid)
            if row is None:
                return None
            return Run.model_validate(row.document)

    async def list_runs(
        self,
        *,
        status: RunStatus | None = None,
        flow_uuid: str | None = None,
    ) -> list[Run]:
        async with self._session("list runs") as db:
            rows = await self._repo.list_runs(
                db,
                status=status.value if status is not None else None,
                flow_uuid=flow_uuid,
            )
            return [Run.model_validate(row.document) for row in rows]

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    async def finalize(self, run: Run) -> Submission:
        if run.status != RunStatus.COMPLETED:
            raise InvalidRunStateError(
                f"Cannot finalize: run {run.run_uuid} status is "
                f"'{run.status.value}', expected 'completed'"
            )
        async with self._session(f"finalize run {run.run_uuid}") as db:
            existing = await self._repo.get_submission(db, run.run_uuid)
            if existing is not None:
                # Finalized submissions are immutable
                return Submission.model_validate(existing.document)

            submission = Submission.from_run(run)
            await self._repo.create_submission(
                db,
                run_uuid=submission.run_uuid,
                org_uuid=submission.org_uuid,
                flow_uuid=submission.flow_uuid,
                flow_revision=submission.flow_revision,
                completed_on=submission.completed_on or run.modified_on,
                document=submission.model_dump(mode="json"),
            )
            await db.commit()
        logger.info("Finalized submission %s", run.run_uuid)
        return submission

    async def list_pending(
        self,
        *,
        org_uuid: str | None = None,
        flow_uuid: str | None = None,
    ) -> list[Submission]:
        async with self._session("list pending submissions") as db:
            rows = await self._repo.list_submissions(
                db, org_uuid=org_uuid, flow_uuid=flow_uuid
            )
            return [Submission.model_validate(row.document) for row in rows]

    async def mark_uploaded(self, run_uuid: str) -> None:
        async with self._session(f"mark submission {run_uuid} uploaded") as db:
            removed = await self._repo.delete_submission(db, run_uuid)
            if not removed:
                await db.rollback()
                raise RunNotFoundError(f"No pending submission for run {run_uuid}")
            await self._repo.delete_run(db, run_uuid)
            await db.commit()

    async def discard(self, run_uuid: str) -> None:
        async with self._session(f"discard run {run_uuid}") as db:
            removed = await self._repo.delete_run(db, run_uuid)
            removed += await self._repo.delete_submission(db, run_uuid)
            if not removed:
                await db.rollback()
                raise RunNotFoundError(f"Run {run_uuid} not found")
            await db.commit()
