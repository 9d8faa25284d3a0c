"""FlowEngine — the run state machine.

Stateless engine pattern: each call loads the run from the store, computes
one transition, persists the run, and returns it.  No run is held in memory
between calls and there is no notion of a "current" run; every operation
carries an explicit ``run_uuid``.

Run lifecycle::

    start_run()  -> run at the entry node (active, or waiting if the entry
                    is a waiting ruleset)
    step()       -> execute the current node, move to its destination
    advance()    -> step() until the run waits or terminates
    resume()     -> deliver surveyor input to a waiting_for_input run
    resume_async()  deliver an async result (or failure) to a
                    waiting_for_async run
    cancel()     -> abandon a non-terminal run

Every transition appends exactly one Step, including failed and cancelled
ones, and the run is persisted before the call returns.  A PersistenceError
propagates and the in-memory run is dropped; the caller retries from the
persisted state.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from surveyor_flows.constants import ASYNC_RESULT_TIMEOUT, MAX_STEPS_PER_ADVANCE
from surveyor_flows.errors import (
    AsyncTimeoutError,
    EvaluationError,
    FlowEngineError,
    FlowNotFoundError,
    InvalidRunStateError,
    RunBusyError,
    RunNotFoundError,
    UnsupportedVersionError,
)
from surveyor_flows.expressions import (
    EvaluationContext,
    evaluate,
    evaluate_template,
    normalize_key,
    render,
)
from surveyor_flows.flows import FlowStore
from surveyor_flows.interfaces import RunStore
from surveyor_flows.legacy import LegacySubmissionReader
from surveyor_flows.matcher import RuleMatcher, localize, resolve_category
from surveyor_flows.models.action import (
    SaveToFieldAction,
    SendMessageAction,
    SetLanguageAction,
    StartFlowAction,
)
from surveyor_flows.models.flow import ActionSet, FlowDefinition, RuleSet
from surveyor_flows.models.run import Run, RunStatus, Step, StepOutcome, WaitInfo
from surveyor_flows.models.submission import Submission
from surveyor_flows.models.value import MISSING, Value, text

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class OrgContext:
    """Read-only organization settings supplied by the Sync & Cache layer.

    ``constants`` are readable from expressions as ``org.<key>``; the locale
    settings drive number and date coercion.
    """

    constants: Mapping[str, Any] = field(default_factory=dict)
    date_style: str = "day_first"
    decimal_separator: str = "."


class FlowEngine:
    """Advances runs of cached flow definitions, one node at a time.

    Args:
        flows: the flow definition cache
        store: durable run/submission store
        org: organization constants and locale settings
        legacy: optional reader for pre-engine submissions, included in
            :meth:`count_pending`
        async_timeout: seconds a run may wait for an async result
        max_steps: bound on the steps taken by one :meth:`advance` call
        clock: returns the current aware datetime (overridable in tests)
    """

    def __init__(
        self,
        flows: FlowStore,
        store: RunStore,
        *,
        org: OrgContext | None = None,
        legacy: LegacySubmissionReader | None = None,
        async_timeout: int = ASYNC_RESULT_TIMEOUT,
        max_steps: int = MAX_STEPS_PER_ADVANCE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._flows = flows
        self._store = store
        self._org = org or OrgContext()
        self._legacy = legacy
        self._async_timeout = timedelta(seconds=async_timeout)
        self._max_steps = max_steps
        self._clock = clock or _utcnow
        self._matcher = RuleMatcher()

    # ==================================================================
    # Run lifecycle
    # ==================================================================

    async def start_run(
        self,
        flow_uuid: str,
        contact: Mapping[str, Any] | None = None,
        *,
        org_uuid: str | None = None,
        revision: int | None = None,
        language: str | None = None,
        parent_run_uuid: str | None = None,
    ) -> Run:
        """Create and persist a new run positioned at the flow's entry node.

        The entry node is not executed; call :meth:`step` or
        :meth:`advance`.  A run whose entry is a waiting ruleset starts in
        the corresponding waiting status.

        Raises:
            FlowNotFoundError: if the flow (revision) is not cached.
        """
        flow = self._flows.get(flow_uuid, revision)
        now = self._clock()
        run = Run(
            run_uuid=str(uuid.uuid4()),
            org_uuid=org_uuid,
            flow_uuid=flow.uuid,
            flow_revision=flow.revision,
            parent_run_uuid=parent_run_uuid,
            contact=dict(contact or {}),
            language=language or flow.base_language,
            current_node_id=flow.entry,
            created_on=now,
            modified_on=now,
        )
        self._enter(run, flow, flow.entry, now)
        await self._store.persist(run)
        logger.info(
            "Started run %s of flow %s revision %d (status=%s)",
            run.run_uuid, flow.uuid, flow.revision, run.status.value,
        )
        return run

    async def get_run(self, run_uuid: str) -> Run:
        """Load a run exactly as last persisted.

        Raises:
            RunNotFoundError: if the run does not exist.
        """
        return await self._load(run_uuid)

    async def get_wait(self, run_uuid: str) -> WaitInfo:
        """Describe what the run's current node expects.

        For non-waiting runs only ``run_uuid`` and ``status`` are set.
        """
        run = await self._load(run_uuid)
        info = WaitInfo(
            run_uuid=run.run_uuid,
            status=run.status,
            node_id=run.current_node_id,
            wait_expires_on=run.wait_expires_on,
        )
        if not run.is_waiting or run.current_node_id is None:
            return info

        flow = self._flow_for(run)
        node = flow.get_node(run.current_node_id)
        if not isinstance(node, RuleSet):
            return info

        info.ruleset_type = node.ruleset_type
        info.label = node.label
        info.config = dict(node.config)
        info.categories = [
            resolve_category(rule, flow, run.language)
            for rule in node.rules
            if not rule.is_catch_all
        ]
        if run.steps:
            info.messages = list(run.steps[-1].messages)
        return info

    # ==================================================================
    # Stepping
    # ==================================================================

    async def step(self, run_uuid: str) -> Run:
        """Execute the run's current node and move to its destination.

        Runs that are not active are returned unchanged, except a run whose
        async wait has expired: that run is resumed with a missing result.
        A completed run is finalized again, which recreates a submission
        lost to a failed finalize and is a no-op otherwise.

        Raises:
            RunNotFoundError, RunBusyError, EvaluationError, PersistenceError
        """
        async with self._store.claim(run_uuid):
            run = await self._load(run_uuid)
            if self._async_expired(run):
                return await self._apply_async(run, None, reason="timed out")
            if run.status == RunStatus.COMPLETED:
                # Idempotent; retries a finalize that failed after persist
                await self._store.finalize(run)
            if run.status != RunStatus.ACTIVE:
                return run
            return await self._step(run, self._flow_for(run))

    async def advance(self, run_uuid: str) -> Run:
        """Step the run until it waits, completes or is abandoned.

        A run still active after ``max_steps`` steps is abandoned; flows may
        loop and a device must never spin on one.
        """
        async with self._store.claim(run_uuid):
            run = await self._load(run_uuid)
            if self._async_expired(run):
                run = await self._apply_async(run, None, reason="timed out")
            if run.status == RunStatus.COMPLETED:
                await self._store.finalize(run)
            flow = self._flow_for(run)

            taken = 0
            while run.status == RunStatus.ACTIVE:
                if taken >= self._max_steps:
                    return await self._abandon(
                        run,
                        flow,
                        StepOutcome.ERROR,
                        error=f"Step limit of {self._max_steps} exceeded",
                    )
                run = await self._step(run, flow)
                taken += 1
            return run

    async def resume(self, run_uuid: str, value: str) -> Run:
        """Deliver surveyor input to a run waiting for input.

        The ruleset's operand is evaluated with the input as ``step.value``,
        the result is matched against its rules, and the run moves to the
        chosen destination.  The next node is not executed.

        Raises:
            InvalidRunStateError: if the run is not waiting for input.
            EvaluationError: if the operand cannot be evaluated (the run is
                abandoned).
        """
        async with self._store.claim(run_uuid):
            run = await self._load(run_uuid)
            if run.status != RunStatus.WAITING_FOR_INPUT:
                raise InvalidRunStateError(
                    f"Cannot resume: run {run_uuid} status is '{run.status.value}', "
                    f"expected 'waiting_for_input'"
                )
            flow = self._flow_for(run)
            ruleset = self._current_ruleset(run, flow)
            received = text(value)
            operand = await self._wait_operand(run, flow, ruleset, received, value)
            return await self._route(run, flow, ruleset, operand, raw=value, received=received)

    async def resume_async(
        self,
        run_uuid: str,
        result: Any,
        *,
        failed: bool = False,
    ) -> Run:
        """Deliver the result of an asynchronous lookup.

        A mapping result is merged into ``run.extra`` (readable as
        ``extra.<key>``).  A ``None`` result, ``failed=True``, or a result
        arriving after the wait deadline is treated as missing and the run
        proceeds through the ruleset's catch-all.

        Raises:
            InvalidRunStateError: if the run is not waiting for an async result.
        """
        async with self._store.claim(run_uuid):
            run = await self._load(run_uuid)
            if run.status != RunStatus.WAITING_FOR_ASYNC:
                raise InvalidRunStateError(
                    f"Cannot resume: run {run_uuid} status is '{run.status.value}', "
                    f"expected 'waiting_for_async'"
                )
            if self._async_expired(run):
                return await self._apply_async(run, None, reason="timed out")
            if failed or result is None:
                return await self._apply_async(run, None, reason="failed")
            return await self._apply_async(run, result)

    async def cancel(self, run_uuid: str) -> Run:
        """Abandon a run and persist it immediately.

        Cancelling an abandoned run is a no-op.

        Raises:
            InvalidRunStateError: if the run is already completed.
            RunBusyError: if another operation is in progress for the run.
        """
        async with self._store.claim(run_uuid):
            run = await self._load(run_uuid)
            if run.status == RunStatus.COMPLETED:
                raise InvalidRunStateError(f"Cannot cancel: run {run_uuid} is completed")
            if run.status == RunStatus.ABANDONED:
                return run
            run = await self._abandon(run, self._flow_for(run), StepOutcome.CANCELLED)
            logger.info("Cancelled run %s", run_uuid)
            return run

    async def expire_async_waits(self) -> list[Run]:
        """Resume every run whose async wait deadline has passed.

        Runs currently held by another operation are skipped and picked up
        by the next sweep.
        """
        expired = []
        for candidate in await self._store.list_runs(status=RunStatus.WAITING_FOR_ASYNC):
            if not self._async_expired(candidate):
                continue
            try:
                async with self._store.claim(candidate.run_uuid):
                    run = await self._load(candidate.run_uuid)
                    if not self._async_expired(run):
                        continue
                    expired.append(await self._apply_async(run, None, reason="timed out"))
            except RunBusyError:
                logger.info("Run %s is busy, skipping expiry", candidate.run_uuid)
        if expired:
            logger.info("Expired %d async waits", len(expired))
        return expired

    # ==================================================================
    # Submissions
    # ==================================================================

    async def list_pending(
        self,
        *,
        org_uuid: str | None = None,
        flow_uuid: str | None = None,
        include_legacy: bool = False,
    ) -> list[Submission]:
        """Submissions ready for upload, ordered by completion time."""
        pending = await self._store.list_pending(org_uuid=org_uuid, flow_uuid=flow_uuid)
        if include_legacy and self._legacy is not None:
            pending.extend(self._legacy.list_completed(org_uuid=org_uuid, flow_uuid=flow_uuid))
            pending.sort(key=lambda s: s.completed_on or s.started_on)
        return pending

    async def count_pending(
        self,
        *,
        org_uuid: str | None = None,
        flow_uuid: str | None = None,
    ) -> int:
        """Number of submissions awaiting upload, legacy ones included."""
        count = len(await self._store.list_pending(org_uuid=org_uuid, flow_uuid=flow_uuid))
        if self._legacy is not None:
            count += self._legacy.count_completed(org_uuid=org_uuid, flow_uuid=flow_uuid)
        return count

    async def mark_uploaded(self, run_uuid: str) -> None:
        """Drop a submission once the server has accepted it."""
        await self._store.mark_uploaded(run_uuid)
        logger.info("Submission %s uploaded", run_uuid)

    async def discard(self, run_uuid: str) -> None:
        """Delete a run and any submission at the user's request."""
        async with self._store.claim(run_uuid):
            await self._store.discard(run_uuid)
        logger.info("Discarded run %s", run_uuid)

    # ==================================================================
    # Transitions
    # ==================================================================

    async def _step(self, run: Run, flow: FlowDefinition) -> Run:
        node = flow.get_node(run.current_node_id)
        if isinstance(node, ActionSet):
            return await self._execute_actions(run, flow, node)
        if isinstance(node, RuleSet):
            if node.waits_for_input or node.waits_for_async:
                # Reached only by runs persisted before the wait was entered
                self._enter(run, flow, node.id, self._clock())
                await self._persist(run)
                return run
            ctx = self._context(run)
            try:
                operand = evaluate(node.operand.lstrip("@"), ctx)
            except EvaluationError as exc:
                await self._fail(run, flow, node, exc)
                raise
            return await self._route(run, flow, node, operand)
        raise FlowEngineError(f"Unsupported node type: {type(node).__name__}")

    async def _execute_actions(self, run: Run, flow: FlowDefinition, node: ActionSet) -> Run:
        step = Step(
            node_id=node.id,
            node_type="action_set",
            arrived_on=self._arrived_on(run),
        )
        try:
            for action in node.actions:
                await self._execute_action(run, flow, action, step)
        except EvaluationError as exc:
            await self._fail(run, flow, node, exc, step=step)
            raise

        now = self._clock()
        step.left_on = now
        run.steps.append(step)
        self._enter(run, flow, node.destination, now)
        step.outcome = self._outcome(run)
        return await self._commit(run)

    async def _execute_action(
        self,
        run: Run,
        flow: FlowDefinition,
        action: Any,
        step: Step,
    ) -> None:
        if isinstance(action, SendMessageAction):
            template = localize(action.msg, language=run.language, flow=flow)
            step.messages.append(render(template, self._context(run)))
            return

        if isinstance(action, SaveToFieldAction):
            key = normalize_key(action.field)
            if not key:
                raise EvaluationError(f"Cannot save to empty field name {action.field!r}")
            run.field_values[key] = evaluate_template(action.value, self._context(run))
            return

        if isinstance(action, StartFlowAction):
            child = await self._start_child(run, action.flow.uuid)
            step.spawned_runs.append(child.run_uuid)
            return

        if isinstance(action, SetLanguageAction):
            run.language = action.lang
            return

        raise EvaluationError(f"Unsupported action: {type(action).__name__}")

    async def _start_child(self, run: Run, flow_uuid: str) -> Run:
        """Start an independent run of another flow for the same contact."""
        try:
            return await self.start_run(
                flow_uuid,
                run.contact,
                org_uuid=run.org_uuid,
                parent_run_uuid=run.run_uuid,
            )
        except (FlowNotFoundError, UnsupportedVersionError) as exc:
            raise EvaluationError(f"Cannot start flow {flow_uuid}: {exc}") from exc

    async def _route(
        self,
        run: Run,
        flow: FlowDefinition,
        ruleset: RuleSet,
        operand: Value,
        *,
        raw: str | None = None,
        received: Value | None = None,
        outcome: StepOutcome | None = None,
        error: str | None = None,
    ) -> Run:
        """Match ``operand`` against ``ruleset`` and move to the chosen rule's destination.

        ``received`` is the input delivered to a waiting ruleset; rule
        arguments read it as ``step.value``.  It defaults to the operand.
        """
        step = Step(
            node_id=ruleset.id,
            node_type="rule_set",
            arrived_on=self._arrived_on(run),
            value=raw if raw is not None else (operand.as_text() or None),
            error=error,
        )
        ctx = self._context(run).with_input(received if received is not None else operand)
        try:
            rule = self._matcher.match(ruleset, operand, ctx, flow=flow, language=run.language)
        except EvaluationError as exc:
            await self._fail(run, flow, ruleset, exc, step=step)
            raise

        now = self._clock()
        step.rule_uuid = rule.uuid
        step.category = resolve_category(rule, flow, run.language)
        step.left_on = now
        run.steps.append(step)
        run.wait_expires_on = None
        self._enter(run, flow, rule.destination, now)
        step.outcome = outcome or self._outcome(run)
        return await self._commit(run)

    async def _apply_async(self, run: Run, result: Any, *, reason: str | None = None) -> Run:
        """Resume a waiting_for_async run with ``result``, or as missing when ``reason`` is set."""
        flow = self._flow_for(run)
        ruleset = self._current_ruleset(run, flow)

        if reason is not None:
            timeout = AsyncTimeoutError(f"Async result {reason} at node {ruleset.id}")
            logger.warning("Run %s: %s", run.run_uuid, timeout)
            return await self._route(
                run, flow, ruleset, MISSING,
                outcome=StepOutcome.TIMED_OUT,
                error=str(timeout),
            )

        if isinstance(result, Mapping):
            run.extra.update(result)
            raw = json.dumps(result, sort_keys=True, default=str)
        else:
            raw = str(result)
        received = text(raw)
        operand = await self._wait_operand(run, flow, ruleset, received, raw)
        return await self._route(run, flow, ruleset, operand, raw=raw, received=received)

    async def _wait_operand(
        self,
        run: Run,
        flow: FlowDefinition,
        ruleset: RuleSet,
        received: Value,
        raw: str,
    ) -> Value:
        """Evaluate a waiting ruleset's operand with ``received`` as ``step.value``."""
        ctx = self._context(run).with_input(received)
        try:
            return evaluate(ruleset.operand.lstrip("@"), ctx)
        except EvaluationError as exc:
            step = Step(
                node_id=ruleset.id,
                node_type="rule_set",
                arrived_on=self._arrived_on(run),
                value=raw,
            )
            await self._fail(run, flow, ruleset, exc, step=step)
            raise

    async def _abandon(
        self,
        run: Run,
        flow: FlowDefinition,
        outcome: StepOutcome,
        *,
        error: str | None = None,
    ) -> Run:
        now = self._clock()
        node_id = run.current_node_id or flow.entry
        node = flow.get_node(node_id)
        run.steps.append(Step(
            node_id=node_id,
            node_type="action_set" if isinstance(node, ActionSet) else "rule_set",
            arrived_on=self._arrived_on(run),
            left_on=now,
            outcome=outcome,
            error=error,
        ))
        self._close(run, RunStatus.ABANDONED, now)
        await self._persist(run)
        return run

    async def _fail(
        self,
        run: Run,
        flow: FlowDefinition,
        node: ActionSet | RuleSet,
        exc: EvaluationError,
        *,
        step: Step | None = None,
    ) -> None:
        """Record an evaluation failure on the run and abandon it."""
        now = self._clock()
        if step is None:
            step = Step(
                node_id=node.id,
                node_type="action_set" if isinstance(node, ActionSet) else "rule_set",
                arrived_on=self._arrived_on(run),
            )
        step.left_on = now
        step.outcome = StepOutcome.ERROR
        step.error = str(exc)
        run.steps.append(step)
        self._close(run, RunStatus.ABANDONED, now)
        await self._persist(run)
        exc.run_uuid = run.run_uuid
        logger.warning("Run %s abandoned at node %s: %s", run.run_uuid, node.id, exc)

    def _enter(
        self,
        run: Run,
        flow: FlowDefinition,
        node_id: str | None,
        now: datetime,
    ) -> None:
        """Position the run at ``node_id`` and derive its status."""
        run.modified_on = now
        if node_id is None:
            self._close(run, RunStatus.COMPLETED, now)
            return

        run.current_node_id = node_id
        node = flow.get_node(node_id)
        if isinstance(node, RuleSet) and node.waits_for_input:
            run.status = RunStatus.WAITING_FOR_INPUT
        elif isinstance(node, RuleSet) and node.waits_for_async:
            run.status = RunStatus.WAITING_FOR_ASYNC
            run.wait_expires_on = now + self._async_timeout
        else:
            run.status = RunStatus.ACTIVE

    @staticmethod
    def _close(run: Run, status: RunStatus, now: datetime) -> None:
        run.status = status
        run.current_node_id = None
        run.wait_expires_on = None
        run.modified_on = now
        run.exited_on = now

    async def _commit(self, run: Run) -> Run:
        """Persist after a successful transition; finalize completed runs."""
        await self._persist(run)
        if run.status == RunStatus.COMPLETED:
            await self._store.finalize(run)
            logger.info("Run %s completed with %d steps", run.run_uuid, len(run.steps))
        return run

    async def _persist(self, run: Run) -> None:
        await self._store.persist(run)

    # ==================================================================
    # Helpers
    # ==================================================================

    async def _load(self, run_uuid: str) -> Run:
        run = await self._store.load(run_uuid)
        if run is None:
            raise RunNotFoundError(f"Run {run_uuid} not found")
        return run

    def _flow_for(self, run: Run) -> FlowDefinition:
        """The definition revision the run was started with."""
        return self._flows.get(run.flow_uuid, run.flow_revision)

    def _current_ruleset(self, run: Run, flow: FlowDefinition) -> RuleSet:
        node = flow.get_node(run.current_node_id) if run.current_node_id else None
        if not isinstance(node, RuleSet):
            raise InvalidRunStateError(
                f"Run {run.run_uuid} is not positioned at a rule set"
            )
        return node

    def _async_expired(self, run: Run) -> bool:
        return (
            run.status == RunStatus.WAITING_FOR_ASYNC
            and run.wait_expires_on is not None
            and self._clock() >= run.wait_expires_on
        )

    def _context(self, run: Run) -> EvaluationContext:
        last = run.last_value()
        return EvaluationContext(
            fields=run.field_values,
            contact=run.contact,
            org=self._org.constants,
            extra=run.extra,
            input=text(last) if last is not None else None,
            date_style=self._org.date_style,
            decimal_separator=self._org.decimal_separator,
        )

    @staticmethod
    def _arrived_on(run: Run) -> datetime:
        if run.steps and run.steps[-1].left_on is not None:
            return run.steps[-1].left_on
        return run.created_on

    @staticmethod
    def _outcome(run: Run) -> StepOutcome:
        if run.status == RunStatus.COMPLETED:
            return StepOutcome.COMPLETED
        if run.is_waiting:
            return StepOutcome.WAITING
        return StepOutcome.ADVANCED
