"""Lifecycle of one payroll batch run.

    idle -> previewing -> previewed -> processing -> completed
                 |                          |
                 +--------> error <---------+

The state is a single tagged value; `reduce` is the only way to move between
states and raises `IllegalTransitionError` for anything not in the table.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from app.core.errors import IllegalTransitionError, PayrollWorkflowError
from app.schemas.payroll import BatchApprovalResult, PreviewResult


class RunStatus(str, Enum):
    IDLE = "idle"
    PREVIEWING = "previewing"
    PREVIEWED = "previewed"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class FailedStep(str, Enum):
    PREVIEW = "preview"
    PROCESSING = "processing"


class _State(BaseModel):
    model_config = ConfigDict(frozen=True)


class Idle(_State):
    status: Literal["idle"] = "idle"


class Previewing(_State):
    status: Literal["previewing"] = "previewing"
    attempt_id: str
    started_at: Optional[datetime] = None


class Previewed(_State):
    status: Literal["previewed"] = "previewed"
    preview: PreviewResult
    employee_ids: List[str]


class Processing(_State):
    status: Literal["processing"] = "processing"
    attempt_id: str
    started_at: Optional[datetime] = None
    preview: PreviewResult
    employee_ids: List[str]


class Completed(_State):
    status: Literal["completed"] = "completed"
    preview: PreviewResult
    employee_ids: List[str]
    result: BatchApprovalResult


class Failed(_State):
    status: Literal["error"] = "error"
    failed_step: FailedStep
    message: str
    error_code: str
    retryable: bool = True
    # Kept after a failed submission so a retry resubmits the same preview.
    preview: Optional[PreviewResult] = None
    employee_ids: List[str] = Field(default_factory=list)


WorkflowState = Annotated[
    Union[Idle, Previewing, Previewed, Processing, Completed, Failed],
    Field(discriminator="status"),
]

_state_adapter = TypeAdapter(WorkflowState)


def dump_state(state: WorkflowState) -> dict:
    return _state_adapter.dump_python(state, mode="json")


def load_state(data: dict) -> WorkflowState:
    return _state_adapter.validate_python(data)


# --- events ---------------------------------------------------------------


@dataclass(frozen=True)
class PreviewRequested:
    attempt_id: str
    started_at: Optional[datetime] = None


@dataclass(frozen=True)
class PreviewAborted:
    attempt_id: str


@dataclass(frozen=True)
class PreviewSucceeded:
    attempt_id: str
    preview: PreviewResult
    employee_ids: List[str]


@dataclass(frozen=True)
class PreviewFailed:
    attempt_id: str
    error: PayrollWorkflowError


@dataclass(frozen=True)
class SubmitRequested:
    attempt_id: str
    started_at: Optional[datetime] = None


@dataclass(frozen=True)
class SubmitSucceeded:
    attempt_id: str
    result: BatchApprovalResult


@dataclass(frozen=True)
class SubmitFailed:
    attempt_id: str
    error: PayrollWorkflowError


@dataclass(frozen=True)
class Acknowledged:
    pass


@dataclass(frozen=True)
class Reset:
    pass


WorkflowEvent = Union[
    PreviewRequested,
    PreviewAborted,
    PreviewSucceeded,
    PreviewFailed,
    SubmitRequested,
    SubmitSucceeded,
    SubmitFailed,
    Acknowledged,
    Reset,
]

_ACTIONS = {
    PreviewRequested: "request a preview",
    PreviewAborted: "abort a preview",
    PreviewSucceeded: "apply a preview result",
    PreviewFailed: "record a preview failure",
    SubmitRequested: "submit for approval",
    SubmitSucceeded: "apply an approval result",
    SubmitFailed: "record a submission failure",
    Acknowledged: "acknowledge an error",
    Reset: "reset",
}


def is_in_flight(state: WorkflowState) -> bool:
    return state.status in (RunStatus.PREVIEWING, RunStatus.PROCESSING)


def attempt_expired(state: WorkflowState, now: datetime, max_age_seconds: float) -> bool:
    """True for an in-flight state whose call has outlived `max_age_seconds`.

    An in-flight state without a start time is treated as expired.
    """
    if not is_in_flight(state):
        return False
    if state.started_at is None:
        return True
    return now - state.started_at >= timedelta(seconds=max_age_seconds)


def _illegal(state: WorkflowState, event: WorkflowEvent) -> IllegalTransitionError:
    return IllegalTransitionError(state.status, _ACTIONS[type(event)])


def _same_attempt(state: WorkflowState, event: WorkflowEvent) -> bool:
    return getattr(state, "attempt_id", None) == event.attempt_id


def reduce(state: WorkflowState, event: WorkflowEvent) -> WorkflowState:
    if isinstance(event, PreviewRequested):
        if isinstance(state, (Idle, Failed)):
            return Previewing(attempt_id=event.attempt_id, started_at=event.started_at)
        raise _illegal(state, event)

    if isinstance(event, (PreviewAborted, PreviewSucceeded, PreviewFailed)):
        if not (isinstance(state, Previewing) and _same_attempt(state, event)):
            raise _illegal(state, event)
        if isinstance(event, PreviewAborted):
            return Idle()
        if isinstance(event, PreviewSucceeded):
            return Previewed(preview=event.preview, employee_ids=list(event.employee_ids))
        return Failed(
            failed_step=FailedStep.PREVIEW,
            message=event.error.message,
            error_code=event.error.code,
            retryable=event.error.retryable,
        )

    if isinstance(event, SubmitRequested):
        if isinstance(state, Previewed) or (
            isinstance(state, Failed) and state.failed_step == FailedStep.PROCESSING and state.preview is not None
        ):
            return Processing(
                attempt_id=event.attempt_id,
                started_at=event.started_at,
                preview=state.preview,
                employee_ids=list(state.employee_ids),
            )
        raise _illegal(state, event)

    if isinstance(event, (SubmitSucceeded, SubmitFailed)):
        if not (isinstance(state, Processing) and _same_attempt(state, event)):
            raise _illegal(state, event)
        if isinstance(event, SubmitSucceeded):
            return Completed(preview=state.preview, employee_ids=list(state.employee_ids), result=event.result)
        return Failed(
            failed_step=FailedStep.PROCESSING,
            message=event.error.message,
            error_code=event.error.code,
            retryable=event.error.retryable,
            preview=state.preview,
            employee_ids=list(state.employee_ids),
        )

    if isinstance(event, Acknowledged):
        if isinstance(state, Failed):
            return Idle()
        raise _illegal(state, event)

    if isinstance(event, Reset):
        if is_in_flight(state):
            raise _illegal(state, event)
        return Idle()

    raise TypeError(f"Unknown workflow event: {event!r}")
