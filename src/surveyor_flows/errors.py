"""Exception taxonomy for the flow engine.

Definition-time errors (version, structure) are raised before any run
exists.  Step-time errors are recorded in the run's step history before
they are raised, so abandoned runs carry a diagnosable trail.
"""

from __future__ import annotations


class FlowEngineError(Exception):
    """Base class for all engine errors."""


class UnsupportedVersionError(FlowEngineError):
    """The flow declares a spec version outside the supported major range."""

    def __init__(self, spec_version: str | None, message: str | None = None) -> None:
        self.spec_version = spec_version
        super().__init__(message or f"Unsupported flow spec version: {spec_version!r}")


class InvalidDefinitionError(FlowEngineError):
    """The flow definition has one or more structural defects.

    ``problems`` lists every defect found, not only the first one.
    """

    def __init__(self, problems: list[str], flow_uuid: str | None = None) -> None:
        self.problems = list(problems)
        self.flow_uuid = flow_uuid
        summary = "; ".join(self.problems) if self.problems else "invalid definition"
        label = f"Invalid flow definition {flow_uuid}" if flow_uuid else "Invalid flow definition"
        super().__init__(f"{label}: {summary}")


class UnsupportedFlowTypeError(InvalidDefinitionError):
    """The flow is structurally fine but is not a survey flow."""


class EvaluationError(FlowEngineError):
    """An expression or rule test could not be evaluated."""

    def __init__(self, message: str, *, expression: str | None = None) -> None:
        self.expression = expression
        # Set by the engine once the failure has been recorded on a run
        self.run_uuid: str | None = None
        super().__init__(message)


class AsyncTimeoutError(FlowEngineError):
    """An asynchronous result did not arrive before the wait deadline.

    Non-fatal: the engine records it on the step and proceeds with a
    missing value.
    """


class PersistenceError(FlowEngineError):
    """Writing to or reading from the run store failed.

    The in-flight step must not be treated as applied.
    """


class FlowNotFoundError(FlowEngineError, KeyError):
    """No cached definition exists for the requested flow/revision."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Flow not found"


class RunNotFoundError(FlowEngineError, KeyError):
    """No persisted run exists for the requested run UUID."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Run not found"


class RunBusyError(FlowEngineError):
    """Another operation is already in progress for this run."""


class InvalidRunStateError(FlowEngineError):
    """The requested operation is not valid in the run's current status."""
