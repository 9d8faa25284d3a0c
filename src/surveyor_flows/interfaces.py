"""Abstract interface for the run/submission store.

The engine hands every run to a :class:`RunStore` on every transition and
never considers a step applied until ``persist`` has returned.  The SDK
ships the durable SQLite implementation in ``surveyor_db.store``; tests use
an in-memory implementation of the same contract.

Typical integration flow::

    store = SqlRunStore(get_session_factory())
    engine = FlowEngine(flows, store)

    run = await engine.start_run(flow_uuid, contact)
    run = await engine.advance(run.run_uuid)        # until it waits
    run = await engine.resume(run.run_uuid, "15")   # surveyor input
    ...
    for submission in await store.list_pending():
        upload(submission.payload())
        await store.mark_uploaded(submission.run_uuid)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator

from surveyor_flows.errors import RunBusyError
from surveyor_flows.models.run import Run, RunStatus
from surveyor_flows.models.submission import Submission


class RunStore(ABC):
    """Single source of truth for run durability.

    Implementations must guarantee write-then-acknowledge ordering: when
    ``persist`` returns, the run is durable.  Failures raise
    ``PersistenceError``.
    """

    def __init__(self) -> None:
        # Run UUIDs with an operation in flight
        self._claimed: set[str] = set()

    @asynccontextmanager
    async def claim(self, run_uuid: str) -> AsyncIterator[None]:
        """Hold exclusive access to a run for the duration of one operation.

        Raises:
            RunBusyError: if another operation already holds the run.
        """
        if run_uuid in self._claimed:
            raise RunBusyError(f"Run {run_uuid} already has an operation in progress")
        self._claimed.add(run_uuid)
        try:
            yield
        finally:
            self._claimed.discard(run_uuid)

    @abstractmethod
    async def persist(self, run: Run) -> None:
        """Write the full current run state, overwriting by ``run_uuid``."""
        ...

    @abstractmethod
    async def load(self, run_uuid: str) -> Run | None:
        """Reconstruct a run exactly as last persisted, or None if unknown."""
        ...

    @abstractmethod
    async def finalize(self, run: Run) -> Submission:
        """Freeze a completed run into its submission record.

        Idempotent: finalizing an already finalized run returns the stored
        submission unchanged.

        Raises:
            InvalidRunStateError: if the run is not completed.
        """
        ...

    @abstractmethod
    async def list_pending(
        self,
        *,
        org_uuid: str | None = None,
        flow_uuid: str | None = None,
    ) -> list[Submission]:
        """Completed, not yet uploaded submissions, oldest completion first."""
        ...

    @abstractmethod
    async def list_runs(
        self,
        *,
        status: RunStatus | None = None,
        flow_uuid: str | None = None,
    ) -> list[Run]:
        """Persisted runs, optionally filtered, oldest first."""
        ...

    @abstractmethod
    async def mark_uploaded(self, run_uuid: str) -> None:
        """Delete a submission (and its run) once the server accepted it.

        Raises:
            RunNotFoundError: if there is no finalized submission.
        """
        ...

    @abstractmethod
    async def discard(self, run_uuid: str) -> None:
        """Delete a run and any submission at the user's request.

        Raises:
            RunNotFoundError: if the run does not exist.
        """
        ...
